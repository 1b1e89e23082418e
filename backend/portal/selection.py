"""Durable active-profile pointer, namespaced per account."""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

logger = logging.getLogger(__name__)

KEY_PREFIX = "activeProfile::"


def selection_key(account_id: str) -> str:
    normalized = account_id.strip()
    if not normalized:
        raise ValueError("Account id cannot be empty when persisting a profile selection.")
    return f"{KEY_PREFIX}{normalized}"


class SelectionStore(Protocol):
    def get(self, account_id: str) -> Optional[str]: ...

    def set(self, account_id: str, profile_id: str) -> None: ...

    def clear(self, account_id: str) -> None: ...


class InMemorySelectionStore:
    def __init__(self) -> None:
        self._entries: Dict[str, str] = {}

    def get(self, account_id: str) -> Optional[str]:
        return self._entries.get(selection_key(account_id))

    def set(self, account_id: str, profile_id: str) -> None:
        self._entries[selection_key(account_id)] = profile_id

    def clear(self, account_id: str) -> None:
        self._entries.pop(selection_key(account_id), None)

    def keys(self) -> list[str]:
        return sorted(self._entries)


class JsonFileSelectionStore:
    """Single JSON document shared by every client on this host."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load_unlocked(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open(encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable selection store at %s: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            return {}
        return {str(key): str(value) for key, value in payload.items() if isinstance(value, str)}

    def _write_unlocked(self, entries: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(entries, handle, indent=2, sort_keys=True)
        os.replace(tmp_path, self._path)

    def get(self, account_id: str) -> Optional[str]:
        key = selection_key(account_id)
        with self._lock:
            return self._load_unlocked().get(key)

    def set(self, account_id: str, profile_id: str) -> None:
        key = selection_key(account_id)
        with self._lock:
            entries = self._load_unlocked()
            entries[key] = profile_id
            self._write_unlocked(entries)

    def clear(self, account_id: str) -> None:
        key = selection_key(account_id)
        with self._lock:
            entries = self._load_unlocked()
            if entries.pop(key, None) is not None:
                self._write_unlocked(entries)


def build_selection_store(path: Optional[str]) -> SelectionStore:
    if path:
        return JsonFileSelectionStore(path)
    return InMemorySelectionStore()


__all__ = [
    "InMemorySelectionStore",
    "JsonFileSelectionStore",
    "KEY_PREFIX",
    "SelectionStore",
    "build_selection_store",
    "selection_key",
]
