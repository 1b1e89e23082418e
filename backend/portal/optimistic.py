"""Apply a local change first, confirm it remotely, undo it if asked to."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .errors import OperationResult, PersonalizationError, as_portal_error
from .telemetry import emit_event

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def optimistic_mutation(
    apply: Callable[[], Any],
    revert: Callable[[], Any],
    remote: Callable[[], Awaitable[T]],
    *,
    rollback: bool = True,
    label: str = "mutation",
    on_success: Optional[Callable[[T], Any]] = None,
) -> OperationResult[T]:
    """Run ``apply``, await ``remote`` and return a typed result.

    When the remote call fails, ``revert`` runs only if ``rollback`` is set;
    best-effort writes pass ``rollback=False`` and keep the local change.
    Failures are never retried.
    """
    apply()
    try:
        value = await remote()
    except Exception as exc:  # noqa: BLE001
        error = as_portal_error(exc, default=PersonalizationError)
        if rollback:
            revert()
            logger.warning("%s failed; local change reverted: %s", label, error.message)
            emit_event("personalization_rolled_back", operation=label, error=error.code)
        else:
            logger.warning("%s failed; keeping local change: %s", label, error.message)
            emit_event("personalization_sync_failed", operation=label, error=error.code)
        return OperationResult.failure(error)
    if on_success is not None:
        on_success(value)
    return OperationResult.success(value)


__all__ = ["optimistic_mutation"]
