"""Row-store collaborator consumed by the portal core.

``DataSource`` is the async contract the session, directory and personalization
components call. ``SqlDataSource`` fulfils it with the SQLAlchemy repositories,
running each unit of work on a worker thread inside its own transaction.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .config import Settings, get_settings
from .db.session import session_scope
from .errors import PersistenceError, ProfileNotFound
from .models import Account, Profile, ProfileDraft, RecentActivity, TrainingProgress
from .repositories import (
    AccountRepository,
    BookmarkRepository,
    MemberProfileRepository,
    RecentActivityRepository,
    TrainingProgressRepository,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DataSource(Protocol):
    async def get_account(self, account_id: str) -> Optional[Account]: ...

    async def list_active_profiles(self, account_id: str) -> List[Profile]: ...

    async def insert_profile(self, account_id: str, draft: ProfileDraft) -> Profile: ...

    async def update_profile(self, profile_id: str, changes: Dict[str, Any]) -> Profile: ...

    async def deactivate_profile(self, profile_id: str) -> None: ...

    async def delete_profile(self, profile_id: str) -> None: ...

    async def list_bookmarks(self, profile_id: str) -> List[str]: ...

    async def add_bookmark(self, profile_id: str, resource_id: str) -> None: ...

    async def remove_bookmark(self, profile_id: str, resource_id: str) -> None: ...

    async def clear_bookmarks(self, profile_id: str) -> None: ...

    async def list_training_progress(self, profile_id: str) -> List[TrainingProgress]: ...

    async def upsert_training_progress(self, record: TrainingProgress) -> TrainingProgress: ...

    async def list_recent_activity(self, profile_id: str, limit: int) -> List[RecentActivity]: ...

    async def record_recent_activity(self, entry: RecentActivity) -> RecentActivity: ...


class SqlDataSource:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        session_factory: Optional[sessionmaker[Session]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._session_factory = session_factory
        self._accounts = AccountRepository()
        self._profiles = MemberProfileRepository()
        self._bookmarks = BookmarkRepository()
        self._progress = TrainingProgressRepository()
        self._recent = RecentActivityRepository(retention=self._settings.recent_activity_retention)

    async def _run(self, operation: str, work: Callable[[Session], T]) -> T:
        def _unit() -> T:
            with session_scope(factory=self._session_factory) as session:
                return work(session)

        try:
            return await asyncio.to_thread(_unit)
        except LookupError as exc:
            raise ProfileNotFound(str(exc), cause=exc) from exc
        except SQLAlchemyError as exc:
            logger.warning("Row store %s failed: %s", operation, exc)
            raise PersistenceError(f"{operation} failed", cause=exc) from exc

    async def get_account(self, account_id: str) -> Optional[Account]:
        return await self._run("get_account", lambda s: self._accounts.get(s, account_id))

    async def list_active_profiles(self, account_id: str) -> List[Profile]:
        return await self._run("list_active_profiles", lambda s: self._profiles.list_active(s, account_id))

    async def insert_profile(self, account_id: str, draft: ProfileDraft) -> Profile:
        return await self._run("insert_profile", lambda s: self._profiles.insert(s, account_id, draft))

    async def update_profile(self, profile_id: str, changes: Dict[str, Any]) -> Profile:
        return await self._run("update_profile", lambda s: self._profiles.update(s, profile_id, changes))

    async def deactivate_profile(self, profile_id: str) -> None:
        await self._run("deactivate_profile", lambda s: self._profiles.deactivate(s, profile_id))

    async def delete_profile(self, profile_id: str) -> None:
        await self._run("delete_profile", lambda s: self._profiles.delete(s, profile_id))

    async def list_bookmarks(self, profile_id: str) -> List[str]:
        return await self._run("list_bookmarks", lambda s: self._bookmarks.list_resource_ids(s, profile_id))

    async def add_bookmark(self, profile_id: str, resource_id: str) -> None:
        await self._run("add_bookmark", lambda s: self._bookmarks.add(s, profile_id, resource_id))

    async def remove_bookmark(self, profile_id: str, resource_id: str) -> None:
        await self._run("remove_bookmark", lambda s: self._bookmarks.remove(s, profile_id, resource_id))

    async def clear_bookmarks(self, profile_id: str) -> None:
        await self._run("clear_bookmarks", lambda s: self._bookmarks.clear(s, profile_id))

    async def list_training_progress(self, profile_id: str) -> List[TrainingProgress]:
        return await self._run("list_training_progress", lambda s: self._progress.list_for_profile(s, profile_id))

    async def upsert_training_progress(self, record: TrainingProgress) -> TrainingProgress:
        return await self._run("upsert_training_progress", lambda s: self._progress.upsert(s, record))

    async def list_recent_activity(self, profile_id: str, limit: int) -> List[RecentActivity]:
        return await self._run("list_recent_activity", lambda s: self._recent.list_recent(s, profile_id, limit))

    async def record_recent_activity(self, entry: RecentActivity) -> RecentActivity:
        return await self._run("record_recent_activity", lambda s: self._recent.record(s, entry))


__all__ = ["DataSource", "SqlDataSource"]
