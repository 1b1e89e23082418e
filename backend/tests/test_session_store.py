from __future__ import annotations

import asyncio

from portal.errors import AccountLookupFailed, InvalidCredentials, SessionExpired, StaleRequest
from portal.gate import GateState
from portal.session_store import SessionStatus


def test_gate_reports_initializing_before_init(make_portal) -> None:
    portal = make_portal()
    assert portal.session.status is SessionStatus.UNINITIALIZED
    assert portal.gate_state is GateState.INITIALIZING


def test_init_without_session_settles_signed_out(make_portal) -> None:
    async def scenario():
        portal = make_portal()
        await portal.init()
        return portal

    portal = asyncio.run(scenario())
    assert portal.session.status is SessionStatus.UNAUTHENTICATED
    assert portal.current_account is None
    assert portal.gate_state is GateState.SIGNED_OUT


def test_init_restores_existing_session(make_portal, identity, data) -> None:
    data.add_profile("acct-1", "pr-1", "Ada")
    identity.restore("acct-1", "owner@mainstreet.test")

    async def scenario():
        portal = make_portal()
        await portal.init()
        return portal

    portal = asyncio.run(scenario())
    assert portal.session.status is SessionStatus.AUTHENTICATED
    assert portal.current_account.account_id == "acct-1"
    assert portal.gate_state is GateState.READY


def test_sign_in_resolves_account(make_portal, telemetry_events) -> None:
    async def scenario():
        portal = make_portal()
        await portal.init()
        result = await portal.sign_in("owner@mainstreet.test", "correct-horse")
        await portal.wait_until_idle()
        return portal, result

    portal, result = asyncio.run(scenario())
    assert result.ok
    assert result.value.account_id == "acct-1"
    assert portal.session.status is SessionStatus.AUTHENTICATED
    assert portal.session.get_current_account() == result.value
    assert any(e.name == "portal_sign_in" and e.payload["outcome"] == "authenticated" for e in telemetry_events)


def test_invalid_credentials_surface_without_signing_in(make_portal) -> None:
    async def scenario():
        portal = make_portal()
        await portal.init()
        result = await portal.sign_in("owner@mainstreet.test", "wrong")
        return portal, result

    portal, result = asyncio.run(scenario())
    assert not result.ok
    assert isinstance(result.error, InvalidCredentials)
    assert isinstance(portal.session.last_error, InvalidCredentials)
    assert portal.session.status is SessionStatus.UNAUTHENTICATED
    assert portal.gate_state is GateState.SIGNED_OUT


def test_identity_without_account_row_forces_sign_out(make_portal, identity, telemetry_events) -> None:
    identity.add_user("ghost@nowhere.test", "pw", "acct-missing")

    async def scenario():
        portal = make_portal()
        await portal.init()
        result = await portal.sign_in("ghost@nowhere.test", "pw")
        await portal.wait_until_idle()
        return portal, result

    portal, result = asyncio.run(scenario())
    assert isinstance(result.error, AccountLookupFailed)
    assert identity.sign_out_calls == 1
    assert identity.identity is None
    assert portal.current_account is None
    assert portal.gate_state is GateState.SIGNED_OUT
    assert any(e.name == "portal_forced_sign_out" for e in telemetry_events)


def test_account_lookup_transport_failure_also_forces_sign_out(make_portal, identity, data) -> None:
    data.fail.add("get_account")

    async def scenario():
        portal = make_portal()
        await portal.init()
        return portal, await portal.sign_in("owner@mainstreet.test", "correct-horse")

    portal, result = asyncio.run(scenario())
    assert isinstance(result.error, AccountLookupFailed)
    assert identity.sign_out_calls == 1
    assert portal.session.status is SessionStatus.UNAUTHENTICATED


def test_sign_out_clears_locally_even_when_remote_fails(make_portal, identity) -> None:
    async def scenario():
        portal = make_portal()
        await portal.init()
        await portal.sign_in("owner@mainstreet.test", "correct-horse")
        await portal.wait_until_idle()
        identity.fail_sign_out = True
        result = await portal.sign_out()
        await portal.wait_until_idle()
        return portal, result

    portal, result = asyncio.run(scenario())
    assert result.ok
    assert portal.current_account is None
    assert portal.profiles == []
    assert portal.current_profile is None
    assert portal.gate_state is GateState.SIGNED_OUT


def test_sign_out_during_account_lookup_discards_late_result(make_portal, data, spin_until) -> None:
    async def scenario():
        portal = make_portal()
        await portal.init()
        gate = data.gate("get_account", "acct-1")
        pending = asyncio.create_task(portal.sign_in("owner@mainstreet.test", "correct-horse"))
        await spin_until(lambda: ("get_account", "acct-1") in data.calls)
        assert portal.gate_state is GateState.INITIALIZING
        await portal.sign_out()
        gate.set()
        result = await pending
        await portal.wait_until_idle()
        return portal, result

    portal, result = asyncio.run(scenario())
    assert isinstance(result.error, StaleRequest)
    assert portal.current_account is None
    assert portal.session.status is SessionStatus.UNAUTHENTICATED
    assert ("list_active_profiles", "acct-1") not in data.calls


def test_newer_sign_in_wins_over_slow_lookup(make_portal, data, spin_until) -> None:
    async def scenario():
        portal = make_portal()
        await portal.init()
        gate = data.gate("get_account", "acct-1")
        first = asyncio.create_task(portal.sign_in("owner@mainstreet.test", "correct-horse"))
        await spin_until(lambda: ("get_account", "acct-1") in data.calls)
        second = await portal.sign_in("other@elm.test", "battery-staple")
        gate.set()
        first_result = await first
        await portal.wait_until_idle()
        return portal, first_result, second

    portal, first_result, second = asyncio.run(scenario())
    assert isinstance(first_result.error, StaleRequest)
    assert second.ok
    assert portal.current_account.account_id == "acct-2"


def test_session_expiry_signs_out_with_error(make_portal, identity) -> None:
    async def scenario():
        portal = make_portal()
        await portal.init()
        await portal.sign_in("owner@mainstreet.test", "correct-horse")
        await portal.wait_until_idle()
        identity.expire()
        await portal.wait_until_idle()
        return portal

    portal = asyncio.run(scenario())
    assert portal.session.status is SessionStatus.UNAUTHENTICATED
    assert isinstance(portal.session.last_error, SessionExpired)
    assert portal.gate_state is GateState.SIGNED_OUT
    assert portal.bookmarked_resource_ids == frozenset()


def test_identity_change_from_another_tab_resolves_new_account(make_portal, identity, data) -> None:
    data.add_profile("acct-2", "pr-elm", "Elm")

    async def scenario():
        portal = make_portal()
        await portal.init()
        identity.sign_in_elsewhere("acct-2", "other@elm.test")
        assert portal.session.status is SessionStatus.LOADING
        await portal.wait_until_idle()
        return portal

    portal = asyncio.run(scenario())
    assert portal.current_account.account_id == "acct-2"
    assert portal.current_profile.profile_id == "pr-elm"
    assert portal.gate_state is GateState.READY


def test_dispose_detaches_identity_listener(make_portal, identity) -> None:
    async def scenario():
        portal = make_portal()
        await portal.init()
        await portal.dispose()
        identity.sign_in_elsewhere("acct-1", "owner@mainstreet.test")
        return portal

    portal = asyncio.run(scenario())
    assert portal.session.status is SessionStatus.UNAUTHENTICATED
    assert portal.tasks.pending == 0
