"""
callshield/events.py
=====================
Listener Registration — CallShield

Responsibility:
    - Let callers register listeners for named events
      (result, alert, topic_shift, speaker_change, fraud_update)
    - Dispatch events synchronously, in registration order

Every subscribe() returns an unsubscribe callable. A listener that raises
is logged and skipped; it never aborts the chunk being processed or the
remaining listeners.
"""

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger("callshield.events")

Listener = Callable[..., Any]


class EventEmitter:
    """Named-event fan-out for one session object."""

    def __init__(self, owner: str = "callshield") -> None:
        self._owner = owner
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def subscribe(self, event: str, listener: Listener) -> Callable[[], None]:
        if not callable(listener):
            raise TypeError(f"listener for '{event}' must be callable")
        self._listeners[event].append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners[event].remove(listener)
            except ValueError:
                pass  # already removed

        return unsubscribe

    def emit(self, event: str, *args: Any) -> None:
        # Snapshot: listeners may unsubscribe while being notified
        for listener in list(self._listeners.get(event, ())):
            try:
                listener(*args)
            except Exception:
                logger.exception(
                    "%s: listener for '%s' failed; continuing", self._owner, event,
                )
