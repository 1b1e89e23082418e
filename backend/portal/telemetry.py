"""Structured telemetry for session, profile and personalization events."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import RLock
from typing import Any, Callable, Dict, List

from pydantic import BaseModel

logger = logging.getLogger("portal.telemetry")


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


TelemetryListener = Callable[[TelemetryEvent], None]

_listeners: List[TelemetryListener] = []
_lock = RLock()


def register_listener(listener: TelemetryListener) -> Callable[[], None]:
    """Register an in-process listener; returns a callable that removes it."""
    with _lock:
        _listeners.append(listener)

    def _remove() -> None:
        with _lock:
            if listener in _listeners:
                _listeners.remove(listener)

    return _remove


def clear_listeners() -> None:
    with _lock:
        _listeners.clear()


def emit_event(name: str, **fields: Any) -> None:
    """Emit a structured telemetry event and fan it out to listeners."""
    event = TelemetryEvent(name=name, payload=_sanitize(fields))

    with _lock:
        listeners = list(_listeners)

    for listener in listeners:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener failed for %s", name)

    logger.info("TELEMETRY %s", json.dumps({"event": name, **event.payload}, default=str))


def _sanitize(fields: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, datetime):
            sanitized[key] = value.isoformat()
        elif isinstance(value, Enum):
            sanitized[key] = value.value
        elif isinstance(value, BaseModel):
            sanitized[key] = value.model_dump(mode="json")
        elif isinstance(value, BaseException):
            sanitized[key] = f"{type(value).__name__}: {value}"
        else:
            sanitized[key] = value
    return sanitized


__all__ = [
    "TelemetryEvent",
    "TelemetryListener",
    "clear_listeners",
    "emit_event",
    "register_listener",
]
