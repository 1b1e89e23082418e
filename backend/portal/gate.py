"""Gate state: which top-level view the portal should render."""

from __future__ import annotations

from enum import Enum
from typing import Dict

from .profile_directory import DirectoryStatus
from .session_store import SessionStatus


class GateState(str, Enum):
    INITIALIZING = "initializing"
    SIGNED_OUT = "signed-out"
    PROFILES_LOADING = "profiles-loading"
    PROFILES_ERROR = "profiles-error"
    NO_PROFILES = "no-profiles"
    PROFILE_SELECTION_REQUIRED = "profile-selection-required"
    READY = "ready"


class GateTreatment(str, Enum):
    LOADING_INDICATOR = "loading-indicator"
    SIGN_IN_FORM = "sign-in-form"
    ERROR_WITH_RETRY = "error-with-retry"
    CREATION_PROMPT = "creation-prompt"
    SELECTION_LIST = "selection-list"
    PASS_THROUGH = "pass-through"


GATE_TREATMENTS: Dict[GateState, GateTreatment] = {
    GateState.INITIALIZING: GateTreatment.LOADING_INDICATOR,
    GateState.SIGNED_OUT: GateTreatment.SIGN_IN_FORM,
    GateState.PROFILES_LOADING: GateTreatment.LOADING_INDICATOR,
    GateState.PROFILES_ERROR: GateTreatment.ERROR_WITH_RETRY,
    GateState.NO_PROFILES: GateTreatment.CREATION_PROMPT,
    GateState.PROFILE_SELECTION_REQUIRED: GateTreatment.SELECTION_LIST,
    GateState.READY: GateTreatment.PASS_THROUGH,
}


def compute_gate_state(
    session_status: SessionStatus,
    directory_status: DirectoryStatus,
    profile_count: int,
    has_selection: bool,
) -> GateState:
    """Map session and directory state onto a gate state, first match wins.

    An ``authenticated`` session whose directory is still ``idle`` has not had
    its fetch scheduled yet and is reported as ``profiles-loading``.
    """
    if session_status in (SessionStatus.UNINITIALIZED, SessionStatus.LOADING):
        return GateState.INITIALIZING
    if session_status is SessionStatus.UNAUTHENTICATED:
        return GateState.SIGNED_OUT
    if directory_status in (DirectoryStatus.IDLE, DirectoryStatus.LOADING):
        return GateState.PROFILES_LOADING
    if directory_status is DirectoryStatus.ERROR:
        return GateState.PROFILES_ERROR
    if profile_count <= 0:
        return GateState.NO_PROFILES
    if not has_selection:
        return GateState.PROFILE_SELECTION_REQUIRED
    return GateState.READY


__all__ = ["GATE_TREATMENTS", "GateState", "GateTreatment", "compute_gate_state"]
