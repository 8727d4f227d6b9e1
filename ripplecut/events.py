"""Named-event dispatch with explicit subscription handles."""

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

Callback = Callable[[Any], None]


class Subscription:
    """Handle returned by :meth:`EventBus.subscribe`.

    Use it as a context manager, or call :meth:`unsubscribe`, to detach the
    callback. Unsubscribing twice is harmless.
    """

    def __init__(self, bus: "EventBus", event: str, callback: Callback):
        self._bus = bus
        self.event = event
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._bus._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.unsubscribe()


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscription]] = defaultdict(list)

    def subscribe(self, event: str, callback: Callback) -> Subscription:
        sub = Subscription(self, event, callback)
        self._subscribers[event].append(sub)
        return sub

    def emit(self, event: str, payload: Any = None) -> int:
        """Deliver ``payload`` to every live subscriber of ``event``; returns the count."""
        delivered = 0
        for sub in list(self._subscribers.get(event, ())):
            if not sub.active:
                continue
            sub.callback(payload)
            delivered += 1
        return delivered

    def subscriber_count(self, event: str) -> int:
        return len(self._subscribers.get(event, ()))

    def _remove(self, sub: Subscription) -> None:
        subs = self._subscribers.get(sub.event)
        if subs and sub in subs:
            subs.remove(sub)
            if not subs:
                del self._subscribers[sub.event]
