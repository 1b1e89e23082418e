"""Session Store: who is signed in, and the Account that identity resolves to."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Optional

from .datasource import DataSource
from .errors import (
    AccountLookupFailed,
    OperationResult,
    PersistenceError,
    PortalError,
    SessionExpired,
    StaleRequest,
)
from .events import ACCOUNT_CHANGED, SESSION_CHANGED, EventBus
from .identity import Identity, IdentityChange, IdentityProvider
from .models import Account
from .scheduling import BackgroundTasks
from .telemetry import emit_event

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


class SessionStore:
    """Owns the signed-in identity and its Account.

    ``authenticated`` is only ever entered together with a resolved Account.
    Identity resolutions are fenced by a generation counter so a sign-out (or a
    newer sign-in) issued while a lookup is in flight wins over the late result.
    """

    def __init__(
        self,
        identity: IdentityProvider,
        data_source: DataSource,
        bus: EventBus,
        tasks: BackgroundTasks,
    ) -> None:
        self._provider = identity
        self._data = data_source
        self._bus = bus
        self._tasks = tasks
        self._status = SessionStatus.UNINITIALIZED
        self._identity: Optional[Identity] = None
        self._account: Optional[Account] = None
        self._generation = 0
        self._signing_in = False
        self._pending_user_id: Optional[str] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.last_error: Optional[PortalError] = None

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def current_account(self) -> Optional[Account]:
        return self._account

    def get_current_account(self) -> Optional[Account]:
        return self._account

    async def init(self) -> None:
        if self._status is not SessionStatus.UNINITIALIZED:
            return
        self._unsubscribe = self._provider.subscribe(self._on_identity_change)
        generation = self._begin()
        try:
            identity = await self._provider.get_session()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not restore identity session: %s", exc)
            identity = None
        if generation != self._generation:
            return
        if identity is None:
            self._apply(SessionStatus.UNAUTHENTICATED, None)
            return
        await self._resolve(identity, generation)

    def dispose(self) -> None:
        self._generation += 1
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def sign_in(self, email: str, password: str) -> OperationResult[Account]:
        generation = self._begin()
        self._signing_in = True
        try:
            identity = await self._provider.sign_in(email, password)
        except PortalError as exc:
            return self._sign_in_failed(generation, exc)
        except Exception as exc:  # noqa: BLE001
            return self._sign_in_failed(generation, PersistenceError("sign-in failed", cause=exc))
        finally:
            self._signing_in = False
        return await self._resolve(identity, generation)

    async def sign_out(self) -> OperationResult[None]:
        """Clear local state first; a failing remote sign-out is only logged."""
        self._generation += 1
        self._pending_user_id = None
        self._identity = None
        self._apply(SessionStatus.UNAUTHENTICATED, None)
        try:
            await self._provider.sign_out()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Remote sign-out failed; local session already cleared: %s", exc)
        return OperationResult.success()

    def _begin(self) -> int:
        self._generation += 1
        self._pending_user_id = None
        self.last_error = None
        self._apply(SessionStatus.LOADING, None)
        return self._generation

    def _sign_in_failed(self, generation: int, error: PortalError) -> OperationResult[Account]:
        logger.info("Sign-in rejected: %s", error.message)
        emit_event("portal_sign_in", outcome="rejected", error=error.code)
        if generation == self._generation:
            self.last_error = error
            self._apply(SessionStatus.UNAUTHENTICATED, None)
        return OperationResult.failure(error)

    async def _resolve(self, identity: Identity, generation: int) -> OperationResult[Account]:
        self._pending_user_id = identity.user_id
        error: Optional[AccountLookupFailed] = None
        account: Optional[Account] = None
        try:
            account = await self._data.get_account(identity.user_id)
        except Exception as exc:  # noqa: BLE001
            error = AccountLookupFailed(f"Account lookup failed for {identity.user_id}", cause=exc)
        else:
            if account is None:
                error = AccountLookupFailed(f"No account row for authenticated identity {identity.user_id}")

        if generation != self._generation:
            emit_event("portal_stale_response_discarded", kind="account", user_id=identity.user_id)
            return OperationResult.failure(StaleRequest("account resolution superseded"))

        self._pending_user_id = None
        if error is not None:
            await self._force_sign_out(error)
            return OperationResult.failure(error)

        assert account is not None
        self._identity = identity
        self._apply(SessionStatus.AUTHENTICATED, account)
        emit_event("portal_sign_in", outcome="authenticated", account_id=account.account_id)
        return OperationResult.success(account)

    async def _force_sign_out(self, error: PortalError) -> None:
        logger.error("Forcing sign-out: %s", error.message)
        emit_event("portal_forced_sign_out", error=error.code, reason=error.message)
        self._generation += 1
        self._identity = None
        self.last_error = error
        self._apply(SessionStatus.UNAUTHENTICATED, None)
        try:
            await self._provider.sign_out()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Remote sign-out after lookup failure also failed: %s", exc)

    def _on_identity_change(self, change: IdentityChange, identity: Optional[Identity]) -> None:
        if identity is None:
            if self._status is SessionStatus.UNAUTHENTICATED and self._identity is None:
                return
            self._generation += 1
            self._pending_user_id = None
            self._identity = None
            if change is IdentityChange.SESSION_EXPIRED:
                self.last_error = SessionExpired("Your session has expired. Please sign in again.")
            self._apply(SessionStatus.UNAUTHENTICATED, None)
            return

        if self._signing_in:
            return
        if self._account is not None and self._account.account_id == identity.user_id:
            return
        if self._pending_user_id == identity.user_id:
            return
        generation = self._begin()
        self._tasks.spawn(self._resolve(identity, generation), name=f"resolve-account-{identity.user_id}")

    def _apply(self, status: SessionStatus, account: Optional[Account]) -> None:
        previous_status = self._status
        previous_account_id = self._account.account_id if self._account else None
        self._status = status
        self._account = account
        next_account_id = account.account_id if account else None

        if previous_account_id != next_account_id:
            self._bus.publish(ACCOUNT_CHANGED, account)
        if previous_status is not status or previous_account_id != next_account_id:
            self._bus.publish(SESSION_CHANGED, status)


__all__ = ["SessionStatus", "SessionStore"]
