"""Personalization Store: bookmarks, training progress and recent activity of the active profile."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Mapping, Optional, Set, Tuple, Union

from pydantic import ValidationError

from .config import Settings
from .datasource import DataSource
from .errors import (
    OperationResult,
    PersonalizationError,
    PortalError,
    StaleRequest,
    as_portal_error,
)
from .events import ACTIVE_PROFILE_CHANGED, PERSONALIZATION_CHANGED, EventBus
from .models import (
    Profile,
    RecentActivity,
    TrainingProgress,
    TrainingProgressUpdate,
    merge_training_progress,
)
from .optimistic import optimistic_mutation
from .scheduling import BackgroundTasks
from .telemetry import emit_event

logger = logging.getLogger(__name__)

BOOKMARKS = "bookmarks"
TRAINING_PROGRESS = "training_progress"
RECENT_ACTIVITY = "recent_activity"


class CollectionStatus(str, Enum):
    """Load state of one collection.

    ``clear()`` puts every collection in ``loading`` for the next profile.
    ``idle`` is used only when there is no active profile at all, before the
    first selection and after sign-out.
    """

    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


class PersonalizationStore:
    """Per-profile collections with optimistic writes.

    Every load and write captures the generation and profile id it was issued
    for. ``clear()`` bumps the generation, so results that arrive after a
    profile switch are dropped instead of repopulating the new profile's view.

    Bookmark writes also record the membership they leave behind in an
    overlay that is replayed over any bookmark list fetched while writes or
    loads were in flight, so a load that read the rows before a toggle landed
    cannot undo it locally.
    """

    def __init__(
        self,
        data_source: DataSource,
        bus: EventBus,
        tasks: BackgroundTasks,
        settings: Settings,
    ) -> None:
        self._data = data_source
        self._bus = bus
        self._tasks = tasks
        self._recent_limit = settings.recent_activity_limit
        self._profile_id: Optional[str] = None
        self._generation = 0
        self._bookmarks: Set[str] = set()
        self._progress: Dict[str, TrainingProgress] = {}
        self._recent: List[RecentActivity] = []
        self._statuses: Dict[str, CollectionStatus] = {
            BOOKMARKS: CollectionStatus.IDLE,
            TRAINING_PROGRESS: CollectionStatus.IDLE,
            RECENT_ACTIVITY: CollectionStatus.IDLE,
        }
        self._toggle_locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._bookmark_overlay: Dict[str, bool] = {}
        self._bookmarks_reset = False
        self._bookmark_inflight = 0
        self.last_error: Optional[PortalError] = None
        self._unsubscribe = bus.subscribe(ACTIVE_PROFILE_CHANGED, self._on_active_profile_changed)

    # -- reads --------------------------------------------------------------

    @property
    def profile_id(self) -> Optional[str]:
        return self._profile_id

    @property
    def bookmarked_resource_ids(self) -> FrozenSet[str]:
        return frozenset(self._bookmarks)

    @property
    def training_progress(self) -> List[TrainingProgress]:
        return sorted(self._progress.values(), key=lambda record: record.training_module_id)

    @property
    def recent_activity(self) -> List[RecentActivity]:
        return list(self._recent)

    @property
    def bookmarks_status(self) -> CollectionStatus:
        return self._statuses[BOOKMARKS]

    @property
    def training_progress_status(self) -> CollectionStatus:
        return self._statuses[TRAINING_PROGRESS]

    @property
    def recent_activity_status(self) -> CollectionStatus:
        return self._statuses[RECENT_ACTIVITY]

    def is_bookmarked(self, resource_id: str) -> bool:
        return resource_id in self._bookmarks

    def progress_for(self, training_module_id: str) -> Optional[TrainingProgress]:
        return self._progress.get(training_module_id)

    # -- lifecycle ----------------------------------------------------------

    def dispose(self) -> None:
        self._generation += 1
        self._unsubscribe()

    def _on_active_profile_changed(self, profile: Optional[Profile]) -> None:
        if profile is None:
            self.clear()
            self._profile_id = None
            for kind in self._statuses:
                self._statuses[kind] = CollectionStatus.IDLE
            self._notify()
            return
        self.activate(profile.profile_id)

    def activate(self, profile_id: str) -> None:
        """Empty every collection, then schedule the loads for ``profile_id``."""
        self.clear()
        self._profile_id = profile_id
        self._tasks.spawn(self.load_bookmarks(profile_id), name=f"load-bookmarks-{profile_id}")
        self._tasks.spawn(self.load_training_progress(profile_id), name=f"load-progress-{profile_id}")
        self._tasks.spawn(self.load_recent_activity(profile_id), name=f"load-recent-{profile_id}")

    def clear(self) -> None:
        self._generation += 1
        self._bookmarks = set()
        self._progress = {}
        self._recent = []
        self._toggle_locks.clear()
        self._bookmark_overlay = {}
        self._bookmarks_reset = False
        self.last_error = None
        for kind in self._statuses:
            self._statuses[kind] = CollectionStatus.LOADING
        self._notify()

    # -- loads --------------------------------------------------------------

    async def load_bookmarks(self, profile_id: Optional[str] = None) -> OperationResult[FrozenSet[str]]:
        def _store(resource_ids: List[str]) -> None:
            loaded = set() if self._bookmarks_reset else set(resource_ids)
            for resource_id, present in self._bookmark_overlay.items():
                if present:
                    loaded.add(resource_id)
                else:
                    loaded.discard(resource_id)
            self._bookmarks = loaded

        self._bookmark_inflight += 1
        try:
            result = await self._load(BOOKMARKS, profile_id, self._data.list_bookmarks, _store)
        finally:
            self._release_bookmark_tracking()
        return self._map(result, lambda _: self.bookmarked_resource_ids)

    async def load_training_progress(
        self, profile_id: Optional[str] = None
    ) -> OperationResult[List[TrainingProgress]]:
        def _store(records: List[TrainingProgress]) -> None:
            self._progress = {record.training_module_id: record for record in records}

        result = await self._load(TRAINING_PROGRESS, profile_id, self._data.list_training_progress, _store)
        return self._map(result, lambda _: self.training_progress)

    async def load_recent_activity(
        self, profile_id: Optional[str] = None
    ) -> OperationResult[List[RecentActivity]]:
        limit = self._recent_limit

        def _fetch(pid: str) -> Awaitable[List[RecentActivity]]:
            return self._data.list_recent_activity(pid, limit)

        def _store(entries: List[RecentActivity]) -> None:
            self._recent = list(entries)[:limit]

        result = await self._load(RECENT_ACTIVITY, profile_id, _fetch, _store)
        return self._map(result, lambda _: self.recent_activity)

    async def _load(
        self,
        kind: str,
        profile_id: Optional[str],
        fetch: Callable[[str], Awaitable[Any]],
        store: Callable[[Any], None],
    ) -> OperationResult[Any]:
        target = profile_id or self._profile_id
        if target is None:
            return OperationResult.failure(PersonalizationError("No active profile."))
        if target != self._profile_id:
            return self._stale(kind, target)

        generation = self._generation
        if self._statuses[kind] is not CollectionStatus.LOADING:
            self._statuses[kind] = CollectionStatus.LOADING
            self._notify()
        try:
            rows = await fetch(target)
        except Exception as exc:  # noqa: BLE001
            if not self._is_current(generation, target):
                return self._stale(kind, target)
            error = as_portal_error(exc, default=PersonalizationError)
            logger.warning("Loading %s failed for profile_id=%s: %s", kind, target, error.message)
            self._statuses[kind] = CollectionStatus.ERROR
            self.last_error = error
            self._notify()
            return OperationResult.failure(error)

        if not self._is_current(generation, target):
            return self._stale(kind, target)
        store(rows)
        self._statuses[kind] = CollectionStatus.LOADED
        self._notify()
        return OperationResult.success(rows)

    # -- writes -------------------------------------------------------------

    async def toggle_bookmark(self, resource_id: str, profile_id: Optional[str] = None) -> OperationResult[bool]:
        """Flip membership of ``resource_id``; the result value is the new membership."""
        target = profile_id or self._profile_id
        if target is None:
            return OperationResult.failure(PersonalizationError("No active profile."))
        if target != self._profile_id:
            return self._stale(BOOKMARKS, target)

        lock = self._toggle_locks.setdefault((target, resource_id), asyncio.Lock())
        async with lock:
            if not self._is_current(self._generation, target):
                return self._stale(BOOKMARKS, target)
            generation = self._generation
            was_bookmarked = resource_id in self._bookmarks

            def _apply() -> None:
                self._set_membership(resource_id, not was_bookmarked)

            def _revert() -> None:
                # Only undo our own flip, and only for the profile it was made on.
                if self._is_current(generation, target):
                    self._set_membership(resource_id, was_bookmarked)

            async def _remote() -> None:
                if was_bookmarked:
                    await self._data.remove_bookmark(target, resource_id)
                else:
                    await self._data.add_bookmark(target, resource_id)

            self._bookmark_inflight += 1
            try:
                result = await optimistic_mutation(_apply, _revert, _remote, label="toggle_bookmark")
            finally:
                self._release_bookmark_tracking()

        if not result.ok:
            return self._record_failure(result.error, generation, target)
        emit_event(
            "bookmark_toggled",
            profile_id=target,
            resource_id=resource_id,
            bookmarked=not was_bookmarked,
        )
        return OperationResult.success(not was_bookmarked)

    async def clear_bookmarks(self, profile_id: Optional[str] = None) -> OperationResult[None]:
        target = profile_id or self._profile_id
        if target is None:
            return OperationResult.failure(PersonalizationError("No active profile."))
        if target != self._profile_id:
            return self._stale(BOOKMARKS, target)

        generation = self._generation
        previous = set(self._bookmarks)

        def _apply() -> None:
            self._bookmarks = set()
            self._bookmark_overlay = {}
            self._bookmarks_reset = True
            self._notify()

        def _revert() -> None:
            if self._is_current(generation, target):
                self._bookmarks_reset = False
                self._bookmarks |= previous
                self._bookmark_overlay.update({resource_id: True for resource_id in previous})
                self._notify()

        self._bookmark_inflight += 1
        try:
            result = await optimistic_mutation(
                _apply,
                _revert,
                lambda: self._data.clear_bookmarks(target),
                label="clear_bookmarks",
            )
        finally:
            self._release_bookmark_tracking()
        if not result.ok:
            return self._record_failure(result.error, generation, target)
        return OperationResult.success()

    async def upsert_training_progress(
        self,
        update: Union[TrainingProgressUpdate, Mapping[str, Any]],
        profile_id: Optional[str] = None,
    ) -> OperationResult[TrainingProgress]:
        """Best-effort progress write: the local merge is kept even if the remote upsert fails."""
        target = profile_id or self._profile_id
        if target is None:
            return OperationResult.failure(PersonalizationError("No active profile."))
        if target != self._profile_id:
            return self._stale(TRAINING_PROGRESS, target)
        try:
            if isinstance(update, TrainingProgressUpdate):
                payload = update.model_dump()
            else:
                payload = TrainingProgressUpdate.model_validate(dict(update)).model_dump()
            record = TrainingProgress(**payload, profile_id=target)
        except ValidationError as exc:
            return OperationResult.failure(PersonalizationError(f"Invalid training progress: {exc}"))

        generation = self._generation
        module_id = record.training_module_id

        def _apply() -> None:
            self._progress[module_id] = merge_training_progress(self._progress.get(module_id), record)
            self._notify()

        def _confirm(stored: TrainingProgress) -> None:
            if self._is_current(generation, target):
                self._progress[module_id] = merge_training_progress(self._progress.get(module_id), stored)
                self._notify()

        result = await optimistic_mutation(
            _apply,
            lambda: None,
            lambda: self._data.upsert_training_progress(record),
            rollback=False,
            label="upsert_training_progress",
            on_success=_confirm,
        )
        if not result.ok:
            return self._record_failure(result.error, generation, target)
        if self._is_current(generation, target) and module_id in self._progress:
            return OperationResult.success(self._progress[module_id])
        return OperationResult.success(result.value)

    async def record_recent_activity(
        self,
        resource_name: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        profile_id: Optional[str] = None,
    ) -> OperationResult[RecentActivity]:
        target = profile_id or self._profile_id
        if target is None:
            return OperationResult.failure(PersonalizationError("No active profile."))
        if target != self._profile_id:
            return self._stale(RECENT_ACTIVITY, target)
        try:
            entry = RecentActivity(
                profile_id=target,
                resource_id=resource_id,
                resource_name=resource_name,
                resource_type=resource_type,
            )
        except ValidationError as exc:
            return OperationResult.failure(PersonalizationError(f"Invalid activity entry: {exc}"))

        generation = self._generation

        def _apply() -> None:
            self._recent = [entry, *self._recent][: self._recent_limit]
            self._notify()

        def _confirm(stored: RecentActivity) -> None:
            if self._is_current(generation, target):
                self._recent = [stored if item is entry else item for item in self._recent]
                self._notify()

        result = await optimistic_mutation(
            _apply,
            lambda: None,
            lambda: self._data.record_recent_activity(entry),
            rollback=False,
            label="record_recent_activity",
            on_success=_confirm,
        )
        if not result.ok:
            return self._record_failure(result.error, generation, target)
        return result

    # -- helpers ------------------------------------------------------------

    def _is_current(self, generation: int, profile_id: str) -> bool:
        return generation == self._generation and profile_id == self._profile_id

    def _set_membership(self, resource_id: str, present: bool) -> None:
        if present:
            self._bookmarks.add(resource_id)
        else:
            self._bookmarks.discard(resource_id)
        self._bookmark_overlay[resource_id] = present
        self._notify()

    def _release_bookmark_tracking(self) -> None:
        self._bookmark_inflight -= 1
        if self._bookmark_inflight == 0:
            self._bookmark_overlay = {}
            self._bookmarks_reset = False

    def _record_failure(self, error: Optional[PortalError], generation: int, profile_id: str) -> OperationResult[Any]:
        failure = error or PersonalizationError("personalization write failed")
        if self._is_current(generation, profile_id):
            self.last_error = failure
            self._notify()
        return OperationResult.failure(failure)

    def _stale(self, kind: str, profile_id: str) -> OperationResult[Any]:
        emit_event("portal_stale_response_discarded", kind=kind, profile_id=profile_id)
        return OperationResult.failure(StaleRequest(f"{kind} request for profile {profile_id} is no longer current"))

    @staticmethod
    def _map(result: OperationResult[Any], convert: Callable[[Any], Any]) -> OperationResult[Any]:
        if not result.ok:
            return result
        return OperationResult.success(convert(result.value))

    def _notify(self) -> None:
        self._bus.publish(PERSONALIZATION_CHANGED, self._profile_id)


__all__ = ["CollectionStatus", "PersonalizationStore"]
