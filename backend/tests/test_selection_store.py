from __future__ import annotations

import json

import pytest

from portal.selection import (
    InMemorySelectionStore,
    JsonFileSelectionStore,
    build_selection_store,
    selection_key,
)


def test_keys_are_namespaced_by_account() -> None:
    assert selection_key("acct-9") == "activeProfile::acct-9"
    with pytest.raises(ValueError):
        selection_key("  ")


def test_json_store_survives_new_instances(tmp_path) -> None:
    path = tmp_path / "state" / "selection.json"
    JsonFileSelectionStore(path).set("acct-1", "pr-1")
    JsonFileSelectionStore(path).set("acct-2", "pr-7")

    reopened = JsonFileSelectionStore(path)
    assert reopened.get("acct-1") == "pr-1"
    assert reopened.get("acct-2") == "pr-7"
    assert json.loads(path.read_text(encoding="utf-8")) == {
        "activeProfile::acct-1": "pr-1",
        "activeProfile::acct-2": "pr-7",
    }

    reopened.clear("acct-1")
    assert JsonFileSelectionStore(path).get("acct-1") is None
    assert JsonFileSelectionStore(path).get("acct-2") == "pr-7"


def test_unreadable_json_is_treated_as_empty(tmp_path) -> None:
    path = tmp_path / "selection.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileSelectionStore(path)

    assert store.get("acct-1") is None
    store.set("acct-1", "pr-1")
    assert store.get("acct-1") == "pr-1"


def test_build_selection_store_picks_backend(tmp_path) -> None:
    assert isinstance(build_selection_store(None), InMemorySelectionStore)
    store = build_selection_store(str(tmp_path / "sel.json"))
    assert isinstance(store, JsonFileSelectionStore)
