"""REST endpoints exposing one member portal per signed-in client.

A successful sign-in issues an unguessable client token, returned in the body
and in the ``X-Portal-Client`` response header. Every later request carries it
in that header. Sign-out and idle expiry drop the token and dispose its portal.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, Field, ValidationError

from .config import Settings
from .datasource import DataSource, SqlDataSource
from .errors import (
    AccountLookupFailed,
    InvalidCredentials,
    NoActiveAccount,
    OperationResult,
    PortalError,
    ProfileNotFound,
    ProfileValidationError,
    SessionExpired,
    StaleRequest,
)
from .identity import DatabaseIdentityProvider, IdentityProvider
from .models import TrainingProgressUpdate
from .orchestrator import MemberPortal
from .selection import SelectionStore, build_selection_store

router = APIRouter(prefix="/api/portal", tags=["portal"])
logger = logging.getLogger(__name__)

CLIENT_HEADER = "X-Portal-Client"
HTTP_UNPROCESSABLE = 422

_STATUS_FOR_ERROR: Dict[type, int] = {
    InvalidCredentials: status.HTTP_401_UNAUTHORIZED,
    SessionExpired: status.HTTP_401_UNAUTHORIZED,
    AccountLookupFailed: status.HTTP_403_FORBIDDEN,
    ProfileNotFound: status.HTTP_404_NOT_FOUND,
    NoActiveAccount: status.HTTP_409_CONFLICT,
    StaleRequest: status.HTTP_409_CONFLICT,
    ProfileValidationError: HTTP_UNPROCESSABLE,
}


@dataclass
class ClientSession:
    portal: MemberPortal
    last_seen: float


class PortalRegistry:
    """Signed-in portals keyed by issued client token.

    Portals are built and initialized before they are registered, so no
    lookup ever waits on another client's identity or row-store calls.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        data_source: Optional[DataSource] = None,
        selection_store: Optional[SelectionStore] = None,
        identity_factory: Optional[Callable[[], IdentityProvider]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._data = data_source or SqlDataSource(settings)
        self._selection = selection_store or build_selection_store(settings.selection_store_path)
        self._identity_factory = identity_factory or (lambda: DatabaseIdentityProvider(settings))
        self._clock = clock
        self._idle_seconds = settings.client_idle_minutes * 60
        self._sessions: Dict[str, ClientSession] = {}

    @property
    def client_ids(self) -> List[str]:
        return sorted(self._sessions)

    async def open_portal(self) -> MemberPortal:
        """Build and initialize a portal that is not yet reachable by any token."""
        portal = MemberPortal(self._identity_factory(), self._data, self._selection, self._settings)
        await portal.init()
        return portal

    def register(self, portal: MemberPortal) -> str:
        client_id = secrets.token_urlsafe(32)
        self._sessions[client_id] = ClientSession(portal=portal, last_seen=self._clock())
        logger.info("Registered member portal session (%d active)", len(self._sessions))
        return client_id

    async def get(self, client_id: str) -> Optional[MemberPortal]:
        await self.evict_idle()
        session = self._sessions.get(client_id)
        if session is None:
            return None
        session.last_seen = self._clock()
        return session.portal

    async def close(self, client_id: str) -> bool:
        session = self._sessions.pop(client_id, None)
        if session is None:
            return False
        await session.portal.dispose()
        return True

    async def evict_idle(self) -> int:
        cutoff = self._clock() - self._idle_seconds
        expired = [client_id for client_id, session in self._sessions.items() if session.last_seen < cutoff]
        for client_id in expired:
            await self._sessions.pop(client_id).portal.dispose()
        if expired:
            logger.info("Evicted %d idle member portal session(s)", len(expired))
        return len(expired)

    async def dispose_all(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.portal.dispose()


class SignInRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class RecentActivityRequest(BaseModel):
    resource_name: str = Field(..., min_length=1)
    resource_type: str = Field(..., min_length=1)
    resource_id: Optional[str] = None


def get_registry(request: Request) -> PortalRegistry:
    registry = getattr(request.app.state, "portal_registry", None)
    if registry is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Portal is not ready.")
    return registry


def get_client_id(client_id: Optional[str] = Header(None, alias=CLIENT_HEADER)) -> str:
    if client_id is None or not client_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "missing_client", "message": f"Sign in first and send the {CLIENT_HEADER} header."},
        )
    return client_id.strip()


async def get_portal(
    client_id: str = Depends(get_client_id),
    registry: PortalRegistry = Depends(get_registry),
) -> MemberPortal:
    portal = await registry.get(client_id)
    if portal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "unknown_client", "message": "Client session is unknown or has expired."},
        )
    await portal.wait_until_idle()
    return portal


def _error_detail(error: PortalError) -> Dict[str, Any]:
    detail: Dict[str, Any] = {"code": error.code, "message": error.message}
    if isinstance(error, ProfileValidationError):
        detail["fields"] = error.fields
    return detail


def _unwrap(result: OperationResult[Any]) -> Any:
    if result.ok:
        return result.value
    error = result.error
    assert error is not None
    code = status.HTTP_502_BAD_GATEWAY
    for error_type, mapped in _STATUS_FOR_ERROR.items():
        if isinstance(error, error_type):
            code = mapped
            break
    raise HTTPException(status_code=code, detail=_error_detail(error))


async def _settled(portal: MemberPortal, **extra: Any) -> Dict[str, Any]:
    await portal.wait_until_idle()
    return {**extra, "state": portal.snapshot()}


@router.get("/state")
async def read_state(
    client_id: Optional[str] = Header(None, alias=CLIENT_HEADER),
    registry: PortalRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    """State of the caller's session; callers without a live session see a signed-out portal."""
    portal = await registry.get(client_id.strip()) if client_id and client_id.strip() else None
    if portal is not None:
        return await _settled(portal)
    anonymous = await registry.open_portal()
    try:
        return await _settled(anonymous)
    finally:
        await anonymous.dispose()


@router.post("/sign-in")
async def sign_in(
    body: SignInRequest,
    response: Response,
    client_id: Optional[str] = Header(None, alias=CLIENT_HEADER),
    registry: PortalRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    if client_id and client_id.strip():
        await registry.close(client_id.strip())
    portal = await registry.open_portal()
    result = await portal.sign_in(body.email, body.password)
    if not result.ok:
        await portal.dispose()
    account = _unwrap(result)
    issued = registry.register(portal)
    response.headers[CLIENT_HEADER] = issued
    return await _settled(portal, account_id=account.account_id, client_id=issued)


@router.post("/sign-out")
async def sign_out(
    client_id: str = Depends(get_client_id),
    portal: MemberPortal = Depends(get_portal),
    registry: PortalRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    _unwrap(await portal.sign_out())
    payload = await _settled(portal)
    await registry.close(client_id)
    return payload


@router.post("/profiles", status_code=status.HTTP_201_CREATED)
async def create_profile(
    payload: Dict[str, Any] = Body(...),
    portal: MemberPortal = Depends(get_portal),
) -> Dict[str, Any]:
    profile = _unwrap(await portal.create_profile(payload))
    return await _settled(portal, profile=profile.model_dump(mode="json"))


@router.post("/profiles/refresh")
async def refresh_profiles(portal: MemberPortal = Depends(get_portal)) -> Dict[str, Any]:
    _unwrap(await portal.fetch_profiles())
    return await _settled(portal)


@router.patch("/profiles/{profile_id}")
async def update_profile(
    profile_id: str,
    payload: Dict[str, Any] = Body(...),
    portal: MemberPortal = Depends(get_portal),
) -> Dict[str, Any]:
    profile = _unwrap(await portal.update_profile(profile_id, payload))
    return await _settled(portal, profile=profile.model_dump(mode="json"))


@router.delete("/profiles/{profile_id}")
async def remove_profile(
    profile_id: str,
    hard: Optional[bool] = Query(default=None),
    portal: MemberPortal = Depends(get_portal),
) -> Dict[str, Any]:
    _unwrap(await portal.remove_profile(profile_id, hard=hard))
    return await _settled(portal, removed=profile_id)


@router.post("/profiles/{profile_id}/select")
async def select_profile(profile_id: str, portal: MemberPortal = Depends(get_portal)) -> Dict[str, Any]:
    if not portal.select_profile(profile_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": ProfileNotFound.code, "message": f"Profile {profile_id} is not in this account."},
        )
    return await _settled(portal)


@router.post("/bookmarks/{resource_id}/toggle")
async def toggle_bookmark(resource_id: str, portal: MemberPortal = Depends(get_portal)) -> Dict[str, Any]:
    bookmarked = _unwrap(await portal.toggle_bookmark(resource_id))
    return await _settled(portal, resource_id=resource_id, bookmarked=bookmarked)


@router.delete("/bookmarks")
async def clear_bookmarks(portal: MemberPortal = Depends(get_portal)) -> Dict[str, Any]:
    _unwrap(await portal.clear_bookmarks())
    return await _settled(portal)


@router.put("/training-progress/{module_id}")
async def upsert_training_progress(
    module_id: str,
    payload: Dict[str, Any] = Body(...),
    portal: MemberPortal = Depends(get_portal),
) -> Dict[str, Any]:
    try:
        update = TrainingProgressUpdate.model_validate({**payload, "training_module_id": module_id})
    except ValidationError as exc:
        raise HTTPException(
            status_code=HTTP_UNPROCESSABLE,
            detail={"code": "invalid_training_progress", "message": str(exc)},
        ) from exc
    record = _unwrap(await portal.upsert_training_progress(update))
    return await _settled(portal, progress=record.model_dump(mode="json"))


@router.post("/recent-activity", status_code=status.HTTP_201_CREATED)
async def record_recent_activity(
    body: RecentActivityRequest,
    portal: MemberPortal = Depends(get_portal),
) -> Dict[str, Any]:
    entry = _unwrap(
        await portal.record_recent_activity(body.resource_name, body.resource_type, body.resource_id)
    )
    return await _settled(portal, entry=entry.model_dump(mode="json"))


__all__ = ["CLIENT_HEADER", "ClientSession", "PortalRegistry", "get_client_id", "get_portal", "get_registry", "router"]
