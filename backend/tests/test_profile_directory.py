from __future__ import annotations

import asyncio
import random

from portal.errors import NoActiveAccount, ProfileNotFound, ProfileValidationError, StaleRequest
from portal.gate import GateState
from portal.models import ProfileRole
from portal.profile_directory import DirectoryStatus


async def _signed_in(make_portal, email="owner@mainstreet.test", password="correct-horse", **overrides):
    portal = make_portal(**overrides)
    await portal.init()
    await portal.sign_in(email, password)
    await portal.wait_until_idle()
    return portal


def test_empty_account_gets_default_pharmacy_profile(make_portal, data, selection, telemetry_events) -> None:
    portal = asyncio.run(_signed_in(make_portal))

    assert len(portal.profiles) == 1
    profile = portal.profiles[0]
    assert profile.role is ProfileRole.PHARMACY
    assert profile.first_name == "Main Street Pharmacy"
    assert profile.last_name == "Pharmacy"
    assert portal.current_profile == profile
    assert selection.get("acct-1") == profile.profile_id
    assert portal.gate_state is GateState.READY
    assert [e.payload["outcome"] for e in telemetry_events if e.name == "profile_auto_provisioned"] == ["created"]


def test_oldest_profile_selected_without_persisted_choice(make_portal, data, selection) -> None:
    data.add_profile("acct-1", "pr-old", "Olive")
    data.add_profile("acct-1", "pr-new", "Nina")

    portal = asyncio.run(_signed_in(make_portal))

    assert [p.profile_id for p in portal.profiles] == ["pr-old", "pr-new"]
    assert portal.current_profile.profile_id == "pr-old"
    assert selection.get("acct-1") == "pr-old"
    assert portal.gate_state is GateState.READY
    assert ("insert_profile", "acct-1") not in data.calls


def test_persisted_selection_is_restored(make_portal, data, selection) -> None:
    data.add_profile("acct-1", "pr-old", "Olive")
    data.add_profile("acct-1", "pr-new", "Nina")
    selection.set("acct-1", "pr-new")

    portal = asyncio.run(_signed_in(make_portal))

    assert portal.current_profile.profile_id == "pr-new"


def test_persisted_selection_for_missing_profile_falls_back(make_portal, data, selection) -> None:
    data.add_profile("acct-1", "pr-old", "Olive")
    selection.set("acct-1", "pr-deleted")

    portal = asyncio.run(_signed_in(make_portal))

    assert portal.current_profile.profile_id == "pr-old"
    assert selection.get("acct-1") == "pr-old"


def test_selection_keys_are_scoped_per_account(make_portal, data, selection) -> None:
    data.add_profile("acct-1", "pr-main", "Mia")
    data.add_profile("acct-2", "pr-elm", "Eli")

    async def scenario():
        portal = await _signed_in(make_portal)
        await portal.sign_out()
        await portal.sign_in("other@elm.test", "battery-staple")
        await portal.wait_until_idle()
        return portal

    portal = asyncio.run(scenario())
    assert portal.current_profile.profile_id == "pr-elm"
    assert selection.keys() == ["activeProfile::acct-1", "activeProfile::acct-2"]
    assert selection.get("acct-1") == "pr-main"


def test_created_profile_becomes_active_and_is_appended(make_portal, data, selection) -> None:
    data.add_profile("acct-1", "pr-1", "Olive")

    async def scenario():
        portal = await _signed_in(make_portal)
        assert portal.current_profile.profile_id == "pr-1"
        result = await portal.create_profile({"role": "Pharmacist", "first_name": "Jane", "last_name": "Doe"})
        await portal.wait_until_idle()
        return portal, result

    portal, result = asyncio.run(scenario())
    assert result.ok
    assert portal.profiles[-1] == result.value
    assert portal.current_profile.profile_id == result.value.profile_id
    assert portal.current_profile.display_name == "Jane Doe"
    assert selection.get("acct-1") == result.value.profile_id


def test_create_profile_reports_missing_fields(make_portal, data) -> None:
    data.add_profile("acct-1", "pr-1", "Olive")

    async def scenario():
        portal = await _signed_in(make_portal)
        return portal, await portal.create_profile({"role": "Pharmacist", "first_name": "  "})

    portal, result = asyncio.run(scenario())
    assert isinstance(result.error, ProfileValidationError)
    assert set(result.error.fields) == {"first_name", "last_name"}
    assert [p.profile_id for p in portal.profiles] == ["pr-1"]
    assert ("insert_profile", "acct-1") not in data.calls


def test_create_profile_rejects_unknown_role(make_portal, data) -> None:
    data.add_profile("acct-1", "pr-1", "Olive")

    async def scenario():
        portal = await _signed_in(make_portal)
        return await portal.create_profile({"role": "Wizard", "first_name": "Jane", "last_name": "Doe"})

    result = asyncio.run(scenario())
    assert isinstance(result.error, ProfileValidationError)
    assert result.error.fields == ["role"]


def test_create_profile_requires_account(make_portal) -> None:
    async def scenario():
        portal = make_portal()
        await portal.init()
        return await portal.create_profile({"role": "Intern", "first_name": "Sam", "last_name": "Lee"})

    result = asyncio.run(scenario())
    assert isinstance(result.error, NoActiveAccount)


def test_fetch_failure_reports_error_and_retry_recovers(make_portal, data) -> None:
    data.add_profile("acct-1", "pr-1", "Olive")
    data.fail.add("list_active_profiles")

    async def scenario():
        portal = await _signed_in(make_portal)
        states = [portal.gate_state, portal.session.status]
        data.fail.clear()
        result = await portal.fetch_profiles()
        await portal.wait_until_idle()
        return portal, states, result

    portal, states, result = asyncio.run(scenario())
    assert states[0] is GateState.PROFILES_ERROR
    assert states[1].value == "authenticated"
    assert result.ok
    assert portal.directory.status is DirectoryStatus.LOADED
    assert portal.directory.last_error is None
    assert portal.gate_state is GateState.READY


def test_failed_auto_provision_shows_no_profiles_and_is_not_repeated(make_portal, data) -> None:
    data.fail.add("insert_profile")

    async def scenario():
        portal = await _signed_in(make_portal)
        gate_after_sign_in = portal.gate_state
        error_after_sign_in = portal.directory.last_error
        await portal.fetch_profiles()
        await portal.wait_until_idle()
        return portal, gate_after_sign_in, error_after_sign_in

    portal, gate_after_sign_in, error_after_sign_in = asyncio.run(scenario())
    assert gate_after_sign_in is GateState.NO_PROFILES
    assert error_after_sign_in is not None
    assert portal.gate_state is GateState.NO_PROFILES
    assert data.calls.count(("insert_profile", "acct-1")) == 1


def test_account_without_organization_name_is_not_provisioned(make_portal, data) -> None:
    data.add_account("acct-1", "owner@mainstreet.test", pharmacy_name="   ")

    portal = asyncio.run(_signed_in(make_portal))

    assert portal.profiles == []
    assert portal.gate_state is GateState.NO_PROFILES
    assert ("insert_profile", "acct-1") not in data.calls


def test_auto_provision_can_be_disabled(make_portal, settings, data) -> None:
    disabled = settings.model_copy(update={"auto_provision_default_profile": False})

    portal = asyncio.run(_signed_in(make_portal, settings=disabled))

    assert portal.gate_state is GateState.NO_PROFILES


def test_removing_active_profile_reselects_oldest_remaining(make_portal, data, selection) -> None:
    data.add_profile("acct-1", "pr-a", "Ann")
    data.add_profile("acct-1", "pr-b", "Ben")
    data.add_profile("acct-1", "pr-c", "Cal")
    selection.set("acct-1", "pr-b")

    async def scenario():
        portal = await _signed_in(make_portal)
        result = await portal.remove_profile("pr-b")
        await portal.wait_until_idle()
        return portal, result

    portal, result = asyncio.run(scenario())
    assert result.ok
    assert [p.profile_id for p in portal.profiles] == ["pr-a", "pr-c"]
    assert portal.current_profile.profile_id == "pr-a"
    assert selection.get("acct-1") == "pr-a"
    removed = next(p for p in data.profiles if p.profile_id == "pr-b")
    assert removed.is_active is False


def test_hard_removal_deletes_the_row(make_portal, data) -> None:
    data.add_profile("acct-1", "pr-a", "Ann")
    data.add_profile("acct-1", "pr-b", "Ben")

    async def scenario():
        portal = await _signed_in(make_portal)
        return portal, await portal.remove_profile("pr-b", hard=True)

    portal, result = asyncio.run(scenario())
    assert result.ok
    assert all(p.profile_id != "pr-b" for p in data.profiles)
    assert portal.current_profile.profile_id == "pr-a"


def test_removing_last_profile_clears_selection(make_portal, data, selection) -> None:
    data.add_profile("acct-1", "pr-a", "Ann")

    async def scenario():
        portal = await _signed_in(make_portal)
        await portal.remove_profile("pr-a")
        await portal.wait_until_idle()
        return portal

    portal = asyncio.run(scenario())
    assert portal.current_profile is None
    assert selection.get("acct-1") is None
    assert portal.gate_state is GateState.NO_PROFILES


def test_remove_unknown_profile_is_not_found(make_portal, data) -> None:
    data.add_profile("acct-1", "pr-a", "Ann")

    async def scenario():
        portal = await _signed_in(make_portal)
        return await portal.remove_profile("pr-elsewhere")

    assert isinstance(asyncio.run(scenario()).error, ProfileNotFound)


def test_update_patches_active_profile_without_reloading_personalization(make_portal, data) -> None:
    data.add_profile("acct-1", "pr-a", "Ann")

    async def scenario():
        portal = await _signed_in(make_portal)
        loads_before = data.calls.count(("list_bookmarks", "pr-a"))
        result = await portal.update_profile("pr-a", {"first_name": "Annie", "license_number": " RPH-42 "})
        await portal.wait_until_idle()
        return portal, result, loads_before

    portal, result, loads_before = asyncio.run(scenario())
    assert result.ok
    assert portal.current_profile.first_name == "Annie"
    assert portal.current_profile.license_number == "RPH-42"
    assert portal.current_profile.last_name == "Tester"
    assert data.calls.count(("list_bookmarks", "pr-a")) == loads_before


def test_update_rejects_clearing_required_fields(make_portal, data) -> None:
    data.add_profile("acct-1", "pr-a", "Ann")

    async def scenario():
        portal = await _signed_in(make_portal)
        return await portal.update_profile("pr-a", {"role": None, "last_name": ""})

    result = asyncio.run(scenario())
    assert isinstance(result.error, ProfileValidationError)
    assert set(result.error.fields) == {"role", "last_name"}


def test_update_failure_leaves_collection_unchanged(make_portal, data) -> None:
    data.add_profile("acct-1", "pr-a", "Ann")
    data.fail.add("update_profile")

    async def scenario():
        portal = await _signed_in(make_portal)
        return portal, await portal.update_profile("pr-a", {"first_name": "Annie"})

    portal, result = asyncio.run(scenario())
    assert not result.ok
    assert portal.current_profile.first_name == "Ann"
    assert portal.gate_state is GateState.READY


def test_selecting_unknown_profile_is_ignored(make_portal, data, selection) -> None:
    data.add_profile("acct-1", "pr-a", "Ann")

    async def scenario():
        portal = await _signed_in(make_portal)
        return portal, portal.select_profile("pr-other-account")

    portal, selected = asyncio.run(scenario())
    assert selected is False
    assert portal.current_profile.profile_id == "pr-a"
    assert selection.get("acct-1") == "pr-a"


def test_profiles_from_previous_account_are_discarded(make_portal, data, spin_until) -> None:
    data.add_profile("acct-1", "pr-main", "Mia")
    data.add_profile("acct-2", "pr-elm", "Eli")

    async def scenario():
        portal = make_portal()
        await portal.init()
        gate = data.gate("list_active_profiles", "acct-1")
        await portal.sign_in("owner@mainstreet.test", "correct-horse")
        await spin_until(lambda: ("list_active_profiles", "acct-1") in data.calls)
        assert portal.gate_state is GateState.PROFILES_LOADING
        await portal.sign_out()
        await portal.sign_in("other@elm.test", "battery-staple")
        gate.set()
        await portal.wait_until_idle()
        return portal

    portal = asyncio.run(scenario())
    assert [p.profile_id for p in portal.profiles] == ["pr-elm"]
    assert portal.current_profile.profile_id == "pr-elm"


def test_fetch_without_account_fails(make_portal) -> None:
    async def scenario():
        portal = make_portal()
        await portal.init()
        return await portal.fetch_profiles()

    assert isinstance(asyncio.run(scenario()).error, NoActiveAccount)


def test_active_selection_always_belongs_to_current_profiles(make_portal, data) -> None:
    data.add_profile("acct-1", "pr-seed", "Seed")
    rng = random.Random(20261018)

    async def scenario():
        portal = await _signed_in(make_portal)
        violations = []
        for step in range(40):
            action = rng.choice(["create", "remove", "fetch", "select"])
            ids = [p.profile_id for p in portal.profiles]
            if action == "create":
                await portal.create_profile({"role": "Intern", "first_name": f"Step{step}", "last_name": "Lee"})
            elif action == "remove" and ids:
                await portal.remove_profile(rng.choice(ids), hard=rng.random() < 0.3)
            elif action == "fetch":
                await portal.fetch_profiles()
            elif action == "select" and ids:
                portal.select_profile(rng.choice(ids))
            await portal.wait_until_idle()

            current = portal.current_profile
            ids = [p.profile_id for p in portal.profiles]
            if current is None and ids:
                violations.append((step, action, "unset with profiles"))
            if current is not None and (current.profile_id not in ids or current.account_id != "acct-1"):
                violations.append((step, action, current.profile_id))
        return violations

    assert asyncio.run(scenario()) == []


def test_stale_create_after_account_switch_is_not_applied(make_portal, data, spin_until) -> None:
    data.add_profile("acct-1", "pr-main", "Mia")
    data.add_profile("acct-2", "pr-elm", "Eli")

    async def scenario():
        portal = await _signed_in(make_portal)
        gate = data.gate("insert_profile", "acct-1")
        pending = asyncio.create_task(
            portal.create_profile({"role": "Admin", "first_name": "Late", "last_name": "Arrival"})
        )
        await spin_until(lambda: ("insert_profile", "acct-1") in data.calls)
        await portal.sign_out()
        await portal.sign_in("other@elm.test", "battery-staple")
        await portal.wait_until_idle()
        gate.set()
        result = await pending
        return portal, result

    portal, result = asyncio.run(scenario())
    assert isinstance(result.error, StaleRequest)
    assert [p.profile_id for p in portal.profiles] == ["pr-elm"]
