"""
Notification bus: typed publish/subscribe hub with bounded history.

Lets game systems (missions, file transfers, economy) react to each other
without direct references. Emitters do not know who listens; a failing
listener never affects the emitter or the other listeners.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from gamecore import config

logger = logging.getLogger(__name__)

Handler = Callable[[dict], None]


@dataclass(frozen=True)
class EventRecord:
    """One emitted event as kept in history."""
    type: str
    timestamp: str
    payload: dict = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "timestamp": self.timestamp, "data": self.payload}


@dataclass(eq=False)
class Subscription:
    event_type: str
    handler: Handler
    is_once: bool = False


class NotificationBus:
    """
    Publish/subscribe hub.

    Handlers for one event type run in registration order. emit() works on
    a snapshot of the subscriber list, so subscribing during dispatch only
    affects later emits, and a handler removed before its turn is skipped.
    """

    def __init__(self, history_size: int | None = None) -> None:
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._history: deque[EventRecord] = deque(
            maxlen=history_size or config.EVENT_HISTORY_SIZE
        )

    def on(self, event_type: str, handler: Handler) -> Callable[[], None]:
        """Subscribe to an event. Returns a function that removes this subscription."""
        return self._add(Subscription(event_type, handler))

    def once(self, event_type: str, handler: Handler) -> Callable[[], None]:
        """Subscribe for the next emit only."""
        return self._add(Subscription(event_type, handler, is_once=True))

    def off(self, event_type: str, handler: Handler) -> None:
        """Remove every subscription of handler for event_type."""
        subs = self._subscriptions.get(event_type)
        if not subs:
            return
        remaining = [s for s in subs if s.handler is not handler]
        if remaining:
            self._subscriptions[event_type] = remaining
        else:
            del self._subscriptions[event_type]

    def emit(self, event_type: str, payload: dict | None = None) -> EventRecord:
        """Record an event and deliver it to current subscribers."""
        record = EventRecord(
            type=event_type,
            timestamp=datetime.now(timezone.utc).isoformat(),
            payload=payload if payload is not None else {},
        )
        self._history.append(record)

        subs = list(self._subscriptions.get(event_type, ()))
        if not subs and event_type == "missionAvailable":
            logger.warning(f"No listeners for {event_type}")

        for sub in subs:
            if not self._is_live(sub):
                continue
            if sub.is_once:
                self._remove(sub)
            try:
                sub.handler(record.payload)
            except Exception:
                logger.exception(f"Error in event handler for {event_type}")

        return record

    def clear(self) -> None:
        """Drop all subscriptions and history."""
        self._subscriptions.clear()
        self._history.clear()

    def get_history(self, limit: int = 50) -> list[EventRecord]:
        """Most recent events, oldest first."""
        if limit <= 0:
            return []
        return list(self._history)[-limit:]

    def get_subscriptions(self) -> dict[str, int]:
        """Event type -> number of active subscribers."""
        return {etype: len(subs) for etype, subs in self._subscriptions.items()}

    def _add(self, sub: Subscription) -> Callable[[], None]:
        self._subscriptions.setdefault(sub.event_type, []).append(sub)
        return lambda: self._remove(sub)

    def _remove(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.event_type)
        if not subs or sub not in subs:
            return
        subs.remove(sub)
        if not subs:
            del self._subscriptions[sub.event_type]

    def _is_live(self, sub: Subscription) -> bool:
        return sub in self._subscriptions.get(sub.event_type, ())
