"""Profile Directory: the active Account's profiles and the active selection."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, List, Mapping, Optional, Union

from pydantic import ValidationError

from .config import Settings
from .datasource import DataSource
from .errors import (
    NoActiveAccount,
    OperationResult,
    PortalError,
    ProfileNotFound,
    ProfileValidationError,
    StaleRequest,
    as_portal_error,
)
from .events import ACCOUNT_CHANGED, ACTIVE_PROFILE_CHANGED, PROFILES_CHANGED, EventBus
from .models import Account, Profile, ProfileDraft, ProfileRole, ProfileUpdate
from .scheduling import BackgroundTasks
from .selection import SelectionStore
from .telemetry import emit_event

logger = logging.getLogger(__name__)


class DirectoryStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


def _validation_fields(exc: ValidationError) -> List[str]:
    fields: List[str] = []
    for error in exc.errors():
        name = ".".join(str(part) for part in error.get("loc", ())) or "payload"
        if name not in fields:
            fields.append(name)
    return fields


class ProfileDirectory:
    """Loads and mutates the profiles of the current Account.

    The directory follows ``ACCOUNT_CHANGED`` on the bus: a new Account clears
    the collection synchronously and starts a fenced fetch; a cleared Account
    drops everything back to ``idle``.
    """

    def __init__(
        self,
        data_source: DataSource,
        selection_store: SelectionStore,
        bus: EventBus,
        tasks: BackgroundTasks,
        settings: Settings,
    ) -> None:
        self._data = data_source
        self._selection = selection_store
        self._bus = bus
        self._tasks = tasks
        self._settings = settings
        self._default_role = ProfileRole(settings.default_profile_role)
        self._account: Optional[Account] = None
        self._profiles: List[Profile] = []
        self._active: Optional[Profile] = None
        self._status = DirectoryStatus.IDLE
        self._generation = 0
        self._auto_provision_attempted = False
        self.last_error: Optional[PortalError] = None
        self._unsubscribe = bus.subscribe(ACCOUNT_CHANGED, self._on_account_changed)

    @property
    def status(self) -> DirectoryStatus:
        return self._status

    @property
    def account(self) -> Optional[Account]:
        return self._account

    @property
    def profiles(self) -> List[Profile]:
        return list(self._profiles)

    @property
    def active_profile(self) -> Optional[Profile]:
        return self._active

    @property
    def active_profile_id(self) -> Optional[str]:
        return self._active.profile_id if self._active else None

    def dispose(self) -> None:
        self._generation += 1
        self._unsubscribe()

    # -- account tracking -------------------------------------------------

    def _on_account_changed(self, account: Optional[Account]) -> None:
        self._generation += 1
        self._account = account
        self._auto_provision_attempted = False
        self._profiles = []
        self.last_error = None
        self._set_active(None, persist=False)
        if account is None:
            self._status = DirectoryStatus.IDLE
            self._bus.publish(PROFILES_CHANGED, self.profiles)
            return
        self._status = DirectoryStatus.LOADING
        self._bus.publish(PROFILES_CHANGED, self.profiles)
        self._tasks.spawn(self.fetch_profiles(), name=f"fetch-profiles-{account.account_id}")

    def _is_current(self, generation: int, account: Account) -> bool:
        return generation == self._generation and self._account is account

    # -- loading ------------------------------------------------------------

    async def fetch_profiles(self) -> OperationResult[List[Profile]]:
        account = self._account
        if account is None:
            return OperationResult.failure(NoActiveAccount("No account is signed in."))

        self._generation += 1
        generation = self._generation
        if self._status is not DirectoryStatus.LOADING:
            self._status = DirectoryStatus.LOADING
            self._bus.publish(PROFILES_CHANGED, self.profiles)

        try:
            rows = await self._data.list_active_profiles(account.account_id)
        except Exception as exc:  # noqa: BLE001
            if not self._is_current(generation, account):
                return self._stale("profiles", account.account_id)
            error = as_portal_error(exc)
            logger.warning("Profile fetch failed for account_id=%s: %s", account.account_id, error.message)
            self.last_error = error
            self._profiles = []
            self._set_active(None, persist=False)
            self._status = DirectoryStatus.ERROR
            self._bus.publish(PROFILES_CHANGED, self.profiles)
            return OperationResult.failure(error)

        if not self._is_current(generation, account):
            return self._stale("profiles", account.account_id)

        profiles = [p for p in rows if p.is_active and p.account_id == account.account_id]
        self.last_error = None
        if not profiles:
            profiles = await self._auto_provision(account)
            if not self._is_current(generation, account):
                return self._stale("profiles", account.account_id)

        self._profiles = profiles
        self._restore_selection(account)
        self._status = DirectoryStatus.LOADED
        self._bus.publish(PROFILES_CHANGED, self.profiles)
        return OperationResult.success(self.profiles)

    async def _auto_provision(self, account: Account) -> List[Profile]:
        """Create the organization-level profile once per account session."""
        if not self._settings.auto_provision_default_profile or self._auto_provision_attempted:
            return []
        organization = account.organization_name
        if not organization:
            return []
        self._auto_provision_attempted = True
        draft = ProfileDraft(
            role=self._default_role,
            first_name=organization,
            last_name=self._settings.default_profile_last_name,
        )
        try:
            profile = await self._data.insert_profile(account.account_id, draft)
        except Exception as exc:  # noqa: BLE001
            error = as_portal_error(exc)
            logger.warning("Default profile provisioning failed for account_id=%s: %s", account.account_id, error.message)
            emit_event("profile_auto_provisioned", account_id=account.account_id, outcome="failed", error=error.code)
            self.last_error = error
            return []
        emit_event(
            "profile_auto_provisioned",
            account_id=account.account_id,
            profile_id=profile.profile_id,
            outcome="created",
        )
        return [profile]

    def _restore_selection(self, account: Account) -> None:
        try:
            persisted = self._selection.get(account.account_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not read persisted selection for account_id=%s: %s", account.account_id, exc)
            persisted = None
        match = self._find(persisted) if persisted else None
        if match is not None:
            self._set_active(match, persist=False)
        elif self._profiles:
            self._set_active(self._profiles[0], persist=True)
        else:
            self._set_active(None, persist=persisted is not None)

    # -- mutations ----------------------------------------------------------

    async def create_profile(self, data: Union[ProfileDraft, Mapping[str, Any]]) -> OperationResult[Profile]:
        account = self._account
        if account is None:
            return OperationResult.failure(NoActiveAccount("Sign in before creating a profile."))
        try:
            draft = data if isinstance(data, ProfileDraft) else ProfileDraft.model_validate(dict(data))
        except ValidationError as exc:
            fields = _validation_fields(exc)
            return OperationResult.failure(
                ProfileValidationError(f"Missing or invalid fields: {', '.join(fields)}", fields=fields)
            )

        try:
            profile = await self._data.insert_profile(account.account_id, draft)
        except Exception as exc:  # noqa: BLE001
            error = as_portal_error(exc)
            logger.warning("Profile creation failed for account_id=%s: %s", account.account_id, error.message)
            self.last_error = error
            return OperationResult.failure(error)
        if self._account is not account:
            return self._stale("create_profile", account.account_id)

        self._profiles.append(profile)
        self._bus.publish(PROFILES_CHANGED, self.profiles)
        self.select_profile(profile.profile_id)
        emit_event("profile_created", account_id=account.account_id, profile_id=profile.profile_id, role=profile.role)
        return OperationResult.success(profile)

    async def update_profile(
        self,
        profile_id: str,
        changes: Union[ProfileUpdate, Mapping[str, Any]],
    ) -> OperationResult[Profile]:
        account = self._account
        current = self._find(profile_id)
        if account is None or current is None:
            return OperationResult.failure(ProfileNotFound(f"Profile {profile_id} is not in this account."))
        try:
            update = changes if isinstance(changes, ProfileUpdate) else ProfileUpdate.model_validate(dict(changes))
        except ValidationError as exc:
            fields = _validation_fields(exc)
            return OperationResult.failure(
                ProfileValidationError(f"Invalid profile changes: {', '.join(fields)}", fields=fields)
            )
        payload = update.changes()
        if not payload:
            return OperationResult.success(current)

        try:
            stored = await self._data.update_profile(profile_id, payload)
        except Exception as exc:  # noqa: BLE001
            error = as_portal_error(exc)
            logger.warning("Profile update failed for profile_id=%s: %s", profile_id, error.message)
            self.last_error = error
            return OperationResult.failure(error)
        if self._account is not account:
            return self._stale("update_profile", account.account_id)

        latest = self._find(profile_id)
        if latest is None:
            return OperationResult.success(stored)
        patched = latest.model_copy(update={**payload, "updated_at": stored.updated_at})
        self._profiles = [patched if p.profile_id == profile_id else p for p in self._profiles]
        if self._active is not None and self._active.profile_id == profile_id:
            self._active = patched
        self._bus.publish(PROFILES_CHANGED, self.profiles)
        return OperationResult.success(patched)

    async def remove_profile(self, profile_id: str, *, hard: Optional[bool] = None) -> OperationResult[None]:
        account = self._account
        if account is None or self._find(profile_id) is None:
            return OperationResult.failure(ProfileNotFound(f"Profile {profile_id} is not in this account."))
        if hard is None:
            hard = self._settings.profile_removal_policy == "hard"

        try:
            if hard:
                await self._data.delete_profile(profile_id)
            else:
                await self._data.deactivate_profile(profile_id)
        except Exception as exc:  # noqa: BLE001
            error = as_portal_error(exc)
            logger.warning("Profile removal failed for profile_id=%s: %s", profile_id, error.message)
            self.last_error = error
            return OperationResult.failure(error)
        if self._account is not account:
            return self._stale("remove_profile", account.account_id)

        self._profiles = [p for p in self._profiles if p.profile_id != profile_id]
        if self.active_profile_id == profile_id:
            self._set_active(None, persist=True)
            if self._profiles:
                self._set_active(self._profiles[0], persist=True)
        self._bus.publish(PROFILES_CHANGED, self.profiles)
        emit_event("profile_removed", account_id=account.account_id, profile_id=profile_id, hard=hard)
        return OperationResult.success()

    def select_profile(self, profile_id: str) -> bool:
        """Make ``profile_id`` active; ids outside the collection are ignored."""
        match = self._find(profile_id)
        if match is None:
            logger.debug("Ignoring selection of unknown profile_id=%s", profile_id)
            return False
        self._set_active(match, persist=True)
        return True

    # -- helpers ------------------------------------------------------------

    def _find(self, profile_id: Optional[str]) -> Optional[Profile]:
        for profile in self._profiles:
            if profile.profile_id == profile_id:
                return profile
        return None

    def _set_active(self, profile: Optional[Profile], *, persist: bool) -> None:
        previous_id = self.active_profile_id
        self._active = profile
        if persist and self._account is not None:
            self._persist_selection(self._account.account_id, profile)
        if previous_id != self.active_profile_id:
            self._bus.publish(ACTIVE_PROFILE_CHANGED, profile)

    def _persist_selection(self, account_id: str, profile: Optional[Profile]) -> None:
        try:
            if profile is None:
                self._selection.clear(account_id)
            else:
                self._selection.set(account_id, profile.profile_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not persist profile selection for account_id=%s: %s", account_id, exc)

    def _stale(self, kind: str, account_id: str) -> OperationResult[Any]:
        emit_event("portal_stale_response_discarded", kind=kind, account_id=account_id)
        return OperationResult.failure(StaleRequest(f"{kind} result arrived for a superseded account"))


__all__ = ["DirectoryStatus", "ProfileDirectory"]
