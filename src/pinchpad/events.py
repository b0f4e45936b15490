"""
PinchPad Events - Fire-and-forget publish/subscribe

Listeners are called synchronously in subscription order. A listener that
raises is logged and skipped; the publisher never sees the exception.
"""

import time
import logging
import threading
from typing import Any, Callable, List, Optional, Tuple, Type


Listener = Callable[[Any], None]


def now_ms() -> float:
    """Monotonic clock in milliseconds, the time base of every stage."""
    return time.monotonic() * 1000.0


class EventChannel:
    """Typed event fan-out."""

    def __init__(self, name: str = "events"):
        self.name = name
        self._listeners: List[Tuple[Listener, Optional[Type]]] = []
        self._lock = threading.Lock()
        self.logger = logging.getLogger("EventChannel")

    def subscribe(self, listener: Listener, event_type: Optional[Type] = None) -> Callable[[], None]:
        """
        Register a listener.

        Args:
            listener: Called with each published event
            event_type: Only deliver events of this type (None = all)

        Returns:
            Function that removes the subscription
        """
        entry = (listener, event_type)
        with self._lock:
            self._listeners.append(entry)

        def unsubscribe():
            with self._lock:
                if entry in self._listeners:
                    self._listeners.remove(entry)

        return unsubscribe

    def publish(self, event: Any) -> int:
        """
        Deliver an event to every matching listener.

        Returns:
            Number of listeners that handled the event without raising
        """
        with self._lock:
            listeners = list(self._listeners)

        delivered = 0
        for listener, event_type in listeners:
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                listener(event)
                delivered += 1
            except Exception:
                self.logger.exception(f"[{self.name}] listener failed on {type(event).__name__}")
        return delivered

    def clear(self):
        with self._lock:
            self._listeners.clear()

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)
