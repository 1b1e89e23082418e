"""Identity collaborator: password sign-in and identity change notifications."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, List, Optional, Protocol

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .config import Settings, get_settings
from .db.session import session_scope
from .errors import InvalidCredentials, PersistenceError
from .passwords import check_password
from .repositories import AccountRepository

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IdentityChange(str, Enum):
    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"
    SESSION_EXPIRED = "session_expired"


class Identity(BaseModel):
    user_id: str
    email: str
    issued_at: datetime
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or _utcnow()) >= self.expires_at


IdentityListener = Callable[[IdentityChange, Optional[Identity]], None]


class IdentityProvider(Protocol):
    async def sign_in(self, email: str, password: str) -> Identity:
        """Authenticate; raises ``InvalidCredentials`` on a bad email/password pair."""
        ...

    async def sign_out(self) -> None: ...

    async def get_session(self) -> Optional[Identity]: ...

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]: ...


class ListenerRegistry:
    """Synchronous fan-out of identity changes."""

    def __init__(self) -> None:
        self._listeners: List[IdentityListener] = []

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def notify(self, change: IdentityChange, identity: Optional[Identity]) -> None:
        for listener in list(self._listeners):
            try:
                listener(change, identity)
            except Exception:  # noqa: BLE001
                logger.exception("Identity listener failed for %s", change.value)


class DatabaseIdentityProvider:
    """Checks passwords against ``account_credentials`` and keeps one identity in memory."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        session_factory: Optional[sessionmaker[Session]] = None,
        clock: Clock = _utcnow,
    ) -> None:
        self._settings = settings or get_settings()
        self._session_factory = session_factory
        self._clock = clock
        self._accounts = AccountRepository()
        self._identity: Optional[Identity] = None
        self._registry = ListenerRegistry()

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        return self._registry.subscribe(listener)

    async def sign_in(self, email: str, password: str) -> Identity:
        if not email or not email.strip() or not password:
            raise InvalidCredentials("Email and password are required.")

        def _verify() -> Optional[dict[str, str]]:
            with session_scope(commit=False, factory=self._session_factory) as session:
                credential = self._accounts.get_credential(session, email)
            if credential is None or not check_password(password, credential["password_hash"]):
                return None
            return credential

        try:
            credential = await asyncio.to_thread(_verify)
        except SQLAlchemyError as exc:
            raise PersistenceError("credential lookup failed", cause=exc) from exc
        if credential is None:
            raise InvalidCredentials("Invalid email or password.")

        issued = self._clock()
        identity = Identity(
            user_id=credential["account_id"],
            email=credential["email"],
            issued_at=issued,
            expires_at=issued + timedelta(minutes=self._settings.identity_session_minutes),
        )
        self._identity = identity
        self._registry.notify(IdentityChange.SIGNED_IN, identity)
        return identity

    async def sign_out(self) -> None:
        if self._identity is None:
            return
        self._identity = None
        self._registry.notify(IdentityChange.SIGNED_OUT, None)

    async def get_session(self) -> Optional[Identity]:
        identity = self._identity
        if identity is not None and identity.is_expired(self._clock()):
            self.expire_session()
            return None
        return identity

    def expire_session(self) -> None:
        if self._identity is None:
            return
        logger.info("Identity session expired for user_id=%s", self._identity.user_id)
        self._identity = None
        self._registry.notify(IdentityChange.SESSION_EXPIRED, None)


__all__ = [
    "DatabaseIdentityProvider",
    "Identity",
    "IdentityChange",
    "IdentityListener",
    "IdentityProvider",
    "ListenerRegistry",
]
