from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from portal.config import Settings
from portal.errors import InvalidCredentials, ProfileNotFound
from portal.identity import Identity, IdentityChange, ListenerRegistry
from portal.models import (
    Account,
    Profile,
    ProfileDraft,
    ProfileRole,
    RecentActivity,
    TrainingProgress,
    merge_training_progress,
)
from portal.orchestrator import MemberPortal
from portal.selection import InMemorySelectionStore
from portal.telemetry import clear_listeners, register_listener

BASE_TIME = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)


class FakeIdentityProvider:
    """Password table in memory; notifies listeners the way a real provider does."""

    def __init__(self) -> None:
        self.users: Dict[str, Tuple[str, str]] = {}
        self.identity: Optional[Identity] = None
        self.sign_out_calls = 0
        self.fail_sign_out = False
        self._registry = ListenerRegistry()

    def add_user(self, email: str, password: str, user_id: str) -> None:
        self.users[email] = (password, user_id)

    def subscribe(self, listener):
        return self._registry.subscribe(listener)

    async def sign_in(self, email: str, password: str) -> Identity:
        await asyncio.sleep(0)
        entry = self.users.get(email)
        if entry is None or entry[0] != password:
            raise InvalidCredentials("Invalid email or password.")
        self.identity = Identity(user_id=entry[1], email=email, issued_at=BASE_TIME)
        self._registry.notify(IdentityChange.SIGNED_IN, self.identity)
        return self.identity

    async def sign_out(self) -> None:
        self.sign_out_calls += 1
        if self.fail_sign_out:
            raise RuntimeError("identity service unreachable")
        if self.identity is not None:
            self.identity = None
            self._registry.notify(IdentityChange.SIGNED_OUT, None)

    async def get_session(self) -> Optional[Identity]:
        return self.identity

    def restore(self, user_id: str, email: str) -> None:
        """Pretend a session survived from an earlier page load."""
        self.identity = Identity(user_id=user_id, email=email, issued_at=BASE_TIME)

    def sign_in_elsewhere(self, user_id: str, email: str) -> None:
        self.identity = Identity(user_id=user_id, email=email, issued_at=BASE_TIME)
        self._registry.notify(IdentityChange.SIGNED_IN, self.identity)

    def expire(self) -> None:
        self.identity = None
        self._registry.notify(IdentityChange.SESSION_EXPIRED, None)


class FakeDataSource:
    """In-memory row store with failure injection and per-call latency gates.

    ``fail`` holds operation names that raise on their next calls; ``gates`` maps
    ``(operation, key)`` to an ``asyncio.Event`` the call waits on, where ``key``
    is the account or profile id the call is scoped to (``None`` matches any).
    """

    def __init__(self) -> None:
        self.accounts: Dict[str, Account] = {}
        self.profiles: List[Profile] = []
        self.bookmarks: Dict[str, List[str]] = {}
        self.progress: Dict[Tuple[str, str], TrainingProgress] = {}
        self.recent: Dict[str, List[RecentActivity]] = {}
        self.fail: set[str] = set()
        self.gates: Dict[Tuple[str, Optional[str]], asyncio.Event] = {}
        self.calls: List[Tuple[str, Optional[str]]] = []
        self._tick = 0

    # seeding helpers
    def add_account(self, account_id: str, email: str, pharmacy_name: Optional[str] = "Main Street Pharmacy") -> Account:
        account = Account(account_id=account_id, email=email, subscription_status="active", pharmacy_name=pharmacy_name)
        self.accounts[account_id] = account
        return account

    def add_profile(self, account_id: str, profile_id: str, first_name: str, role: ProfileRole = ProfileRole.PHARMACIST) -> Profile:
        profile = Profile(
            profile_id=profile_id,
            account_id=account_id,
            role=role,
            first_name=first_name,
            last_name="Tester",
            created_at=self._next_time(),
        )
        self.profiles.append(profile)
        return profile

    def gate(self, operation: str, key: Optional[str] = None) -> asyncio.Event:
        event = asyncio.Event()
        self.gates[(operation, key)] = event
        return event

    def _next_time(self) -> datetime:
        self._tick += 1
        return BASE_TIME + timedelta(minutes=self._tick)

    async def _enter(self, operation: str, key: Optional[str]) -> None:
        self.calls.append((operation, key))
        await asyncio.sleep(0)
        event = self.gates.get((operation, key)) or self.gates.get((operation, None))
        if event is not None:
            await event.wait()
        if operation in self.fail:
            raise RuntimeError(f"{operation}: network unavailable")

    # DataSource
    async def get_account(self, account_id: str) -> Optional[Account]:
        await self._enter("get_account", account_id)
        return self.accounts.get(account_id)

    async def list_active_profiles(self, account_id: str) -> List[Profile]:
        await self._enter("list_active_profiles", account_id)
        rows = [p for p in self.profiles if p.account_id == account_id and p.is_active]
        return sorted(rows, key=lambda p: p.created_at)

    async def insert_profile(self, account_id: str, draft: ProfileDraft) -> Profile:
        await self._enter("insert_profile", account_id)
        profile = Profile(
            profile_id=f"pr-{uuid.uuid4().hex[:8]}",
            account_id=account_id,
            created_at=self._next_time(),
            **draft.model_dump(),
        )
        self.profiles.append(profile)
        return profile

    async def update_profile(self, profile_id: str, changes: Dict[str, Any]) -> Profile:
        await self._enter("update_profile", profile_id)
        for index, profile in enumerate(self.profiles):
            if profile.profile_id == profile_id and profile.is_active:
                updated = profile.model_copy(update={**changes, "updated_at": self._next_time()})
                self.profiles[index] = updated
                return updated
        raise ProfileNotFound(f"Profile {profile_id} does not exist.")

    async def deactivate_profile(self, profile_id: str) -> None:
        await self._enter("deactivate_profile", profile_id)
        self.profiles = [
            p.model_copy(update={"is_active": False}) if p.profile_id == profile_id else p for p in self.profiles
        ]

    async def delete_profile(self, profile_id: str) -> None:
        await self._enter("delete_profile", profile_id)
        self.profiles = [p for p in self.profiles if p.profile_id != profile_id]
        self.bookmarks.pop(profile_id, None)

    async def list_bookmarks(self, profile_id: str) -> List[str]:
        await self._enter("list_bookmarks", profile_id)
        return list(self.bookmarks.get(profile_id, []))

    async def add_bookmark(self, profile_id: str, resource_id: str) -> None:
        await self._enter("add_bookmark", profile_id)
        rows = self.bookmarks.setdefault(profile_id, [])
        if resource_id not in rows:
            rows.append(resource_id)

    async def remove_bookmark(self, profile_id: str, resource_id: str) -> None:
        await self._enter("remove_bookmark", profile_id)
        rows = self.bookmarks.get(profile_id, [])
        if resource_id in rows:
            rows.remove(resource_id)

    async def clear_bookmarks(self, profile_id: str) -> None:
        await self._enter("clear_bookmarks", profile_id)
        self.bookmarks[profile_id] = []

    async def list_training_progress(self, profile_id: str) -> List[TrainingProgress]:
        await self._enter("list_training_progress", profile_id)
        return [record for (pid, _), record in self.progress.items() if pid == profile_id]

    async def upsert_training_progress(self, record: TrainingProgress) -> TrainingProgress:
        await self._enter("upsert_training_progress", record.profile_id)
        key = (record.profile_id, record.training_module_id)
        merged = merge_training_progress(self.progress.get(key), record)
        self.progress[key] = merged
        return merged

    async def list_recent_activity(self, profile_id: str, limit: int) -> List[RecentActivity]:
        await self._enter("list_recent_activity", profile_id)
        rows = sorted(self.recent.get(profile_id, []), key=lambda e: e.accessed_at, reverse=True)
        return rows[:limit]

    async def record_recent_activity(self, entry: RecentActivity) -> RecentActivity:
        await self._enter("record_recent_activity", entry.profile_id)
        stored = entry.model_copy(update={"id": uuid.uuid4().hex})
        self.recent.setdefault(entry.profile_id, []).append(stored)
        return stored


@pytest.fixture
def settings() -> Settings:
    return Settings().model_copy(
        update={
            "database_url": "sqlite://",
            "selection_store_path": None,
            "auto_provision_default_profile": True,
            "default_profile_role": "Pharmacy",
            "default_profile_last_name": "Pharmacy",
            "profile_removal_policy": "soft",
            "recent_activity_limit": 5,
        }
    )


@pytest.fixture
def identity() -> FakeIdentityProvider:
    provider = FakeIdentityProvider()
    provider.add_user("owner@mainstreet.test", "correct-horse", "acct-1")
    provider.add_user("other@elm.test", "battery-staple", "acct-2")
    return provider


@pytest.fixture
def data() -> FakeDataSource:
    source = FakeDataSource()
    source.add_account("acct-1", "owner@mainstreet.test")
    source.add_account("acct-2", "other@elm.test", pharmacy_name="Elm Pharmacy")
    return source


@pytest.fixture
def selection() -> InMemorySelectionStore:
    return InMemorySelectionStore()


@pytest.fixture
def make_portal(identity, data, selection, settings):
    def _make(**overrides: Any) -> MemberPortal:
        return MemberPortal(
            overrides.get("identity", identity),
            overrides.get("data", data),
            overrides.get("selection", selection),
            overrides.get("settings", settings),
        )

    return _make


@pytest.fixture
def telemetry_events():
    events: List[Any] = []
    remove = register_listener(events.append)
    yield events
    remove()
    clear_listeners()


async def _spin_until(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition was not reached while spinning the event loop")


@pytest.fixture
def spin_until():
    return _spin_until
