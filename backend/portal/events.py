"""Synchronous in-process event bus connecting the portal components."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, List

logger = logging.getLogger(__name__)

SESSION_CHANGED = "session.changed"
ACCOUNT_CHANGED = "account.changed"
PROFILES_CHANGED = "profiles.changed"
ACTIVE_PROFILE_CHANGED = "active_profile.changed"
PERSONALIZATION_CHANGED = "personalization.changed"
GATE_CHANGED = "gate.changed"

Handler = Callable[[Any], None]


class EventBus:
    """Per-instance publish/subscribe.

    Delivery happens inside ``publish`` in subscription order, so a subscriber
    observes a change before the publishing call returns.
    """

    def __init__(self) -> None:
        self._handlers: DefaultDict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        self._handlers[topic].append(handler)

        def _unsubscribe() -> None:
            handlers = self._handlers.get(topic)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def publish(self, topic: str, payload: Any = None) -> None:
        for handler in list(self._handlers.get(topic, ())):
            try:
                handler(payload)
            except Exception:  # noqa: BLE001
                logger.exception("Event handler failed for %s", topic)

    def clear(self) -> None:
        self._handlers.clear()


__all__ = [
    "ACCOUNT_CHANGED",
    "ACTIVE_PROFILE_CHANGED",
    "EventBus",
    "GATE_CHANGED",
    "PERSONALIZATION_CHANGED",
    "PROFILES_CHANGED",
    "SESSION_CHANGED",
]
