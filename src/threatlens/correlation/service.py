"""Correlation Service -- keeps the latest correlation result current.

Owns the most recent :class:`CorrelationResult` and replaces it atomically
after each successful pass.  Refreshes are triggered by insert
notifications from the event source, or by a polling task when the source
cannot push notifications.  At most one refresh is in flight; requests
that arrive meanwhile collapse into a single trailing refresh.

If a fetch fails the previous result stays in place (stale but present),
the failure is logged, and the next trigger retries.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum
from typing import Any

from threatlens.core.errors import SourceUnavailableError
from threatlens.core.models import CorrelationResult, SecurityEvent
from threatlens.core.scheduler import TaskScheduler
from threatlens.core.source import EventSource
from threatlens.correlation.engine import CorrelationEngine, threats_to_detections

logger = logging.getLogger(__name__)


class RefreshState(Enum):
    """What an empty or old result means to a caller."""

    PENDING = "pending"  # no pass has completed yet ("analyzing patterns...")
    READY = "ready"      # last pass succeeded, possibly with nothing found
    STALE = "stale"      # last refresh failed; result is from an earlier pass


class CorrelationService:
    """Drive the correlation engine from an event source.

    Parameters
    ----------
    source:
        Where snapshots come from.
    engine:
        The correlation engine; a default one is created if omitted.
    events_limit, detections_limit:
        Snapshot sizes requested from the source.
    poll_interval:
        Seconds between refreshes when the source cannot push inserts.
    record_detections:
        Write each pass's correlated threats back to the source as
        detection records (sources without ``insert_detection`` ignore it).
    """

    def __init__(
        self,
        source: EventSource,
        engine: CorrelationEngine | None = None,
        events_limit: int = 100,
        detections_limit: int = 50,
        poll_interval: float = 30.0,
        record_detections: bool = False,
    ) -> None:
        self._source = source
        self._engine = engine or CorrelationEngine()
        self._events_limit = events_limit
        self._detections_limit = detections_limit
        self._poll_interval = poll_interval
        self._record_detections = record_detections

        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._result = CorrelationResult()
        self._state = RefreshState.PENDING
        self._last_error: str | None = None
        self._last_success_at: float | None = None
        self._refresh_count = 0
        self._failure_count = 0

        self._in_flight = False
        self._trailing = False
        self._stopped = False
        self._idle = threading.Event()
        self._idle.set()

        self._unsubscribe: Callable[[], None] | None = None
        self._poller: TaskScheduler | None = None

    # --- Read side ------------------------------------------------------

    @property
    def result(self) -> CorrelationResult:
        """The latest complete result; never a partially built one."""
        with self._lock:
            return self._result

    @property
    def state(self) -> RefreshState:
        with self._lock:
            return self._state

    @property
    def last_error(self) -> str | None:
        with self._lock:
            return self._last_error

    @property
    def is_refreshing(self) -> bool:
        return not self._idle.is_set()

    @property
    def is_polling(self) -> bool:
        return self._poller is not None

    @property
    def is_subscribed(self) -> bool:
        """True while local insert notifications drive refreshes."""
        return self._unsubscribe is not None

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "state": self._state.value,
                "refresh_count": self._refresh_count,
                "failure_count": self._failure_count,
                "last_error": self._last_error,
                "last_success_at": self._last_success_at,
                "threats": len(self._result.threats),
                "patterns": len(self._result.patterns),
                "mode": "polling" if self._poller is not None else "push",
            }

    # --- Refresh --------------------------------------------------------

    def refresh(self) -> bool:
        """Run one correlation pass synchronously.

        Returns True if the stored result was replaced, False if the
        source could not be read (the previous result is kept).
        Passes are serialized, so a direct call never overlaps a
        notification-triggered worker.
        """
        with self._refresh_lock:
            return self._run_pass()

    def _run_pass(self) -> bool:
        try:
            events = self._source.fetch_recent_events(self._events_limit)
            detections = self._source.fetch_recent_detections(self._detections_limit)
            result = self._engine.correlate(events, detections)
        except Exception as exc:
            reason = str(exc) if isinstance(exc, SourceUnavailableError) else f"{type(exc).__name__}: {exc}"
            logger.warning("Correlation refresh failed, keeping previous result: %s", reason)
            with self._lock:
                self._state = RefreshState.STALE
                self._last_error = reason
                self._failure_count += 1
            return False

        with self._lock:
            self._result = result
            self._state = RefreshState.READY
            self._last_error = None
            self._last_success_at = result.computed_at
            self._refresh_count += 1
        logger.debug(
            "Correlated %d event(s): %d threat(s), %d pattern(s)",
            result.events_processed, len(result.threats), len(result.patterns),
        )

        if self._record_detections and result.threats:
            self._store_detections(result)
        return True

    def request_refresh(self) -> bool:
        """Schedule a refresh on a worker thread, coalescing bursts.

        Returns True if a new worker was started, False if the request
        was folded into the refresh already in flight or the
        service has been stopped.
        """
        with self._lock:
            if self._stopped:
                return False
            if self._in_flight:
                self._trailing = True
                return False
            self._in_flight = True
            self._idle.clear()
        worker = threading.Thread(
            target=self._drain, daemon=True, name="threatlens-correlation",
        )
        worker.start()
        return True

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no refresh is in flight. Returns False on timeout."""
        return self._idle.wait(timeout)

    def notify(self, event: SecurityEvent | None = None) -> None:
        """Insert-notification hook for sources and the bus subscriber."""
        self.request_refresh()

    def _drain(self) -> None:
        while True:
            try:
                self.refresh()
            except Exception:
                logger.exception("Correlation pass crashed")
            with self._lock:
                if not self._trailing:
                    self._in_flight = False
                    self._idle.set()
                    return
                self._trailing = False

    def _store_detections(self, result: CorrelationResult) -> None:
        insert = getattr(self._source, "insert_detection", None)
        if insert is None:
            return
        try:
            for record in threats_to_detections(result.threats, now=result.computed_at):
                insert(record)
        except Exception as exc:
            logger.warning("Could not record detections: %s", exc)

    # --- Lifecycle ------------------------------------------------------

    def start(self) -> None:
        """Subscribe to inserts (or start polling) and run a first pass."""
        self.attach()
        self.request_refresh()

    def attach(self) -> None:
        """Subscribe to insert notifications; fall back to polling."""
        with self._lock:
            self._stopped = False
        if self._unsubscribe is not None or self._poller is not None:
            return
        if getattr(self._source, "supports_subscription", False):
            try:
                self._unsubscribe = self._source.subscribe(self.notify)
                logger.info("Correlation service subscribed to insert notifications")
                return
            except Exception as exc:
                logger.warning("Insert subscription failed, polling instead: %s", exc)
        self._start_polling()

    def _start_polling(self) -> None:
        poller = TaskScheduler(
            tick_interval=self._poll_interval, name="threatlens-correlation-poll",
        )
        poller.add_task("correlation-poll", self.request_refresh, self._poll_interval)
        poller.start()
        self._poller = poller
        logger.info("Correlation service polling every %.1fs", self._poll_interval)

    def stop(self, timeout: float = 5.0) -> None:
        """Drop the subscription, stop polling, wait for the last pass."""
        with self._lock:
            self._stopped = True
            self._trailing = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._poller is not None:
            self._poller.stop(timeout=timeout)
            self._poller = None
        if not self.wait_idle(timeout):
            logger.warning("Correlation refresh still running after %.1fs", timeout)
        logger.info("Correlation service stopped (%d passes)", self._refresh_count)
