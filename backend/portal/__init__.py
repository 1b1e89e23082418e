"""Member portal core: session, profile directory, gate and personalization."""

from .errors import OperationResult, PortalError
from .gate import GateState, compute_gate_state
from .orchestrator import MemberPortal

__all__ = ["GateState", "MemberPortal", "OperationResult", "PortalError", "compute_gate_state"]
