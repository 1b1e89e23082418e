"""Composed member portal: session, directory, gate and personalization on one bus."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Union

from .config import Settings, get_settings
from .datasource import DataSource
from .errors import OperationResult
from .events import (
    ACCOUNT_CHANGED,
    ACTIVE_PROFILE_CHANGED,
    GATE_CHANGED,
    PERSONALIZATION_CHANGED,
    PROFILES_CHANGED,
    SESSION_CHANGED,
    EventBus,
)
from .gate import GATE_TREATMENTS, GateState, compute_gate_state
from .identity import IdentityProvider
from .models import (
    Account,
    Profile,
    ProfileDraft,
    ProfileUpdate,
    RecentActivity,
    TrainingProgress,
    TrainingProgressUpdate,
)
from .personalization import PersonalizationStore
from .profile_directory import ProfileDirectory
from .scheduling import BackgroundTasks
from .selection import SelectionStore
from .session_store import SessionStore

logger = logging.getLogger(__name__)

_STATE_TOPICS = (
    SESSION_CHANGED,
    ACCOUNT_CHANGED,
    PROFILES_CHANGED,
    ACTIVE_PROFILE_CHANGED,
    PERSONALIZATION_CHANGED,
)


class MemberPortal:
    """One signed-in client's view of the portal.

    Construction wires the components in dependency order: the directory
    follows account changes, personalization follows the active profile, and
    the gate is recomputed after every state change.
    """

    def __init__(
        self,
        identity: IdentityProvider,
        data_source: DataSource,
        selection_store: SelectionStore,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.bus = EventBus()
        self.tasks = BackgroundTasks()
        self.session = SessionStore(identity, data_source, self.bus, self.tasks)
        self.directory = ProfileDirectory(data_source, selection_store, self.bus, self.tasks, self.settings)
        self.personalization = PersonalizationStore(data_source, self.bus, self.tasks, self.settings)
        self._gate_state = self._compute_gate()
        self._initialized = False
        self._disposed = False
        for topic in _STATE_TOPICS:
            self.bus.subscribe(topic, self._on_state_changed)

    # -- lifecycle ----------------------------------------------------------

    async def init(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        self.tasks.reopen()
        await self.session.init()
        await self.tasks.wait_idle()

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        await self.tasks.cancel_all()
        self.session.dispose()
        self.directory.dispose()
        self.personalization.dispose()
        self.bus.clear()

    async def wait_until_idle(self) -> None:
        await self.tasks.wait_idle()

    def subscribe(self, topic: str, handler: Callable[[Any], None]) -> Callable[[], None]:
        return self.bus.subscribe(topic, handler)

    # -- reads --------------------------------------------------------------

    @property
    def current_account(self) -> Optional[Account]:
        return self.session.current_account

    @property
    def current_profile(self) -> Optional[Profile]:
        return self.directory.active_profile

    @property
    def gate_state(self) -> GateState:
        return self._gate_state

    @property
    def profiles(self) -> List[Profile]:
        return self.directory.profiles

    @property
    def bookmarked_resource_ids(self) -> FrozenSet[str]:
        return self.personalization.bookmarked_resource_ids

    @property
    def training_progress(self) -> List[TrainingProgress]:
        return self.personalization.training_progress

    @property
    def recent_activity(self) -> List[RecentActivity]:
        return self.personalization.recent_activity

    def snapshot(self) -> Dict[str, Any]:
        account = self.current_account
        profile = self.current_profile
        session_error = self.session.last_error
        directory_error = self.directory.last_error
        personalization_error = self.personalization.last_error
        return {
            "gate_state": self._gate_state.value,
            "gate_treatment": GATE_TREATMENTS[self._gate_state].value,
            "session_status": self.session.status.value,
            "directory_status": self.directory.status.value,
            "account": account.model_dump(mode="json") if account else None,
            "current_profile": profile.model_dump(mode="json") if profile else None,
            "profiles": [p.model_dump(mode="json") for p in self.profiles],
            "bookmarked_resource_ids": sorted(self.bookmarked_resource_ids),
            "training_progress": [r.model_dump(mode="json") for r in self.training_progress],
            "recent_activity": [r.model_dump(mode="json") for r in self.recent_activity],
            "personalization_status": {
                "bookmarks": self.personalization.bookmarks_status.value,
                "training_progress": self.personalization.training_progress_status.value,
                "recent_activity": self.personalization.recent_activity_status.value,
            },
            "errors": {
                "session": session_error.code if session_error else None,
                "directory": directory_error.code if directory_error else None,
                "personalization": personalization_error.code if personalization_error else None,
            },
        }

    # -- session ------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> OperationResult[Account]:
        return await self.session.sign_in(email, password)

    async def sign_out(self) -> OperationResult[None]:
        return await self.session.sign_out()

    # -- directory ----------------------------------------------------------

    async def fetch_profiles(self) -> OperationResult[List[Profile]]:
        return await self.directory.fetch_profiles()

    async def create_profile(self, data: Union[ProfileDraft, Mapping[str, Any]]) -> OperationResult[Profile]:
        return await self.directory.create_profile(data)

    async def update_profile(
        self, profile_id: str, changes: Union[ProfileUpdate, Mapping[str, Any]]
    ) -> OperationResult[Profile]:
        return await self.directory.update_profile(profile_id, changes)

    async def remove_profile(self, profile_id: str, *, hard: Optional[bool] = None) -> OperationResult[None]:
        return await self.directory.remove_profile(profile_id, hard=hard)

    def select_profile(self, profile_id: str) -> bool:
        return self.directory.select_profile(profile_id)

    # -- personalization ----------------------------------------------------

    async def toggle_bookmark(self, resource_id: str, profile_id: Optional[str] = None) -> OperationResult[bool]:
        return await self.personalization.toggle_bookmark(resource_id, profile_id)

    async def clear_bookmarks(self) -> OperationResult[None]:
        return await self.personalization.clear_bookmarks()

    async def upsert_training_progress(
        self, update: Union[TrainingProgressUpdate, Mapping[str, Any]]
    ) -> OperationResult[TrainingProgress]:
        return await self.personalization.upsert_training_progress(update)

    async def record_recent_activity(
        self, resource_name: str, resource_type: str, resource_id: Optional[str] = None
    ) -> OperationResult[RecentActivity]:
        return await self.personalization.record_recent_activity(resource_name, resource_type, resource_id)

    def is_bookmarked(self, resource_id: str) -> bool:
        return self.personalization.is_bookmarked(resource_id)

    # -- gate ---------------------------------------------------------------

    def _compute_gate(self) -> GateState:
        return compute_gate_state(
            self.session.status,
            self.directory.status,
            len(self.directory.profiles),
            self.directory.active_profile is not None,
        )

    def _on_state_changed(self, _payload: Any) -> None:
        state = self._compute_gate()
        if state is self._gate_state:
            return
        logger.debug("Gate %s -> %s", self._gate_state.value, state.value)
        self._gate_state = state
        self.bus.publish(GATE_CHANGED, state)


__all__ = ["MemberPortal"]
