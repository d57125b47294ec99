"""Event sources feeding the correlation service.

An event source supplies a bounded, most-recent-first snapshot of security
events and prior detection records, and optionally notifies subscribers
whenever a new event is inserted.  Sources that cannot push notifications
set ``supports_subscription = False`` and the correlation service falls
back to polling.
"""

from __future__ import annotations

import abc
import logging
import threading
from collections import deque
from collections.abc import Callable

from threatlens.core.models import DetectionRecord, SecurityEvent

logger = logging.getLogger(__name__)

InsertCallback = Callable[[SecurityEvent], None]


class EventSource(abc.ABC):
    """Abstract base for anything the correlation service can read from.

    Subclasses must implement:
      - fetch_recent_events(limit): newest first
      - fetch_recent_detections(limit): newest first

    Insert notification fan-out is provided here; subclasses call
    ``_notify_inserted()`` after storing an event.
    """

    supports_subscription: bool = True

    def __init__(self) -> None:
        self._listeners: list[InsertCallback] = []
        self._listeners_lock = threading.Lock()

    @abc.abstractmethod
    def fetch_recent_events(self, limit: int) -> list[SecurityEvent]:
        """Return at most *limit* events, most recent first."""

    @abc.abstractmethod
    def fetch_recent_detections(self, limit: int) -> list[DetectionRecord]:
        """Return at most *limit* detection records, most recent first."""

    def subscribe(self, callback: InsertCallback) -> Callable[[], None]:
        """Register *callback* for insert notifications.

        Returns a function that removes the subscription.
        """
        with self._listeners_lock:
            self._listeners.append(callback)

        def _unsubscribe() -> None:
            with self._listeners_lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._listeners_lock:
            return len(self._listeners)

    def _notify_inserted(self, event: SecurityEvent) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(event)
            except Exception as exc:
                logger.error("Insert listener failed for %s: %s", event.event_id, exc)


class InMemoryEventSource(EventSource):
    """Bounded in-process event log.

    Keeps the newest *capacity* events and detections; older entries are
    discarded on insert.
    """

    def __init__(self, capacity: int = 1000) -> None:
        super().__init__()
        self._events: deque[SecurityEvent] = deque(maxlen=capacity)
        self._detections: deque[DetectionRecord] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def insert_event(self, event: SecurityEvent) -> None:
        with self._lock:
            self._events.append(event)
        self._notify_inserted(event)

    def insert_detection(self, record: DetectionRecord) -> None:
        with self._lock:
            self._detections.append(record)

    def fetch_recent_events(self, limit: int) -> list[SecurityEvent]:
        with self._lock:
            newest_first = list(reversed(self._events))
        newest_first.sort(key=lambda e: e.detected_at, reverse=True)
        return newest_first[:limit]

    def fetch_recent_detections(self, limit: int) -> list[DetectionRecord]:
        with self._lock:
            newest_first = list(reversed(self._detections))
        newest_first.sort(key=lambda d: d.detected_at, reverse=True)
        return newest_first[:limit]

    def event_count(self) -> int:
        with self._lock:
            return len(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            self._detections.clear()
