"""Tests for the correlation service: refresh states, coalescing, triggers."""

from __future__ import annotations

import threading
import time
from unittest.mock import MagicMock

from threatlens.core.errors import SourceUnavailableError
from threatlens.core.models import DetectionRecord, SecurityEvent, Severity
from threatlens.core.source import EventSource, InMemoryEventSource
from threatlens.correlation.engine import CorrelationEngine
from threatlens.correlation.service import CorrelationService, RefreshState


class FlakySource(EventSource):
    """Source whose reads can be made to fail or to block."""

    def __init__(self, events: list[SecurityEvent] | None = None) -> None:
        super().__init__()
        self.events = list(events or [])
        self.fail = False
        self.gate: threading.Event | None = None
        self.fetch_count = 0
        self.entered = threading.Event()
        self.active = 0
        self.peak_active = 0
        self._count_lock = threading.Lock()

    def fetch_recent_events(self, limit: int) -> list[SecurityEvent]:
        with self._count_lock:
            self.fetch_count += 1
            self.active += 1
            self.peak_active = max(self.peak_active, self.active)
        self.entered.set()
        try:
            if self.gate is not None:
                self.gate.wait(5.0)
            if self.fail:
                raise SourceUnavailableError("database is locked")
            return self.events[:limit]
        finally:
            with self._count_lock:
                self.active -= 1

    def fetch_recent_detections(self, limit: int) -> list[DetectionRecord]:
        return []


class PollOnlySource(FlakySource):
    supports_subscription = False


def _pair(origin: str, event_type: str = "port_scan") -> list[SecurityEvent]:
    return [
        SecurityEvent(event_type, Severity.HIGH, origin, detected_at=10.0),
        SecurityEvent(event_type, Severity.HIGH, origin, detected_at=9.0),
    ]


class TestRefreshStates:
    def test_initial_state_is_pending(self):
        service = CorrelationService(FlakySource())
        assert service.state == RefreshState.PENDING
        assert service.result.is_empty

    def test_successful_refresh_is_ready(self):
        service = CorrelationService(FlakySource(_pair("10.0.0.5")))
        assert service.refresh() is True
        assert service.state == RefreshState.READY
        assert len(service.result.threats) == 1
        assert service.last_error is None

    def test_empty_source_is_ready_not_pending(self):
        service = CorrelationService(FlakySource())
        service.refresh()
        assert service.state == RefreshState.READY
        assert service.result.is_empty

    def test_failure_keeps_previous_result(self):
        source = FlakySource(_pair("10.0.0.5"))
        service = CorrelationService(source)
        service.refresh()
        previous = service.result

        source.fail = True
        assert service.refresh() is False
        assert service.state == RefreshState.STALE
        assert service.result is previous
        assert "database is locked" in service.last_error

        source.fail = False
        assert service.refresh() is True
        assert service.state == RefreshState.READY

    def test_unexpected_error_is_treated_as_failure(self):
        source = FlakySource()
        source.fetch_recent_events = lambda limit: 1 / 0
        service = CorrelationService(source)
        assert service.refresh() is False
        assert "ZeroDivisionError" in service.last_error
        assert service.get_stats()["failure_count"] == 1

    def test_engine_failure_marks_result_stale(self):
        source = FlakySource(_pair("10.0.0.5"))
        service = CorrelationService(source)
        service.refresh()
        previous = service.result

        broken = MagicMock(spec=CorrelationEngine)
        broken.correlate.side_effect = RuntimeError("rule table corrupt")
        service._engine = broken
        assert service.refresh() is False
        assert service.state == RefreshState.STALE
        assert service.result is previous
        assert "RuntimeError: rule table corrupt" in service.last_error

    def test_snapshot_limits_are_passed(self):
        source = FlakySource([SecurityEvent("port_scan", source_origin="x")] * 150)
        service = CorrelationService(source, events_limit=100)
        service.refresh()
        assert service.result.events_processed == 100


class TestCoalescing:
    def test_burst_collapses_into_one_trailing_refresh(self):
        source = FlakySource(_pair("10.0.0.5"))
        source.gate = threading.Event()
        service = CorrelationService(source)

        assert service.request_refresh() is True
        assert source.entered.wait(2.0)
        assert service.is_refreshing
        for _ in range(10):
            assert service.request_refresh() is False

        source.gate.set()
        assert service.wait_idle(2.0)
        assert source.fetch_count == 2
        assert service.state == RefreshState.READY
        assert not service.is_refreshing

    def test_direct_refresh_waits_for_worker_in_flight(self):
        source = FlakySource(_pair("10.0.0.5"))
        source.gate = threading.Event()
        service = CorrelationService(source)

        assert service.request_refresh() is True
        assert source.entered.wait(2.0)
        direct = threading.Thread(target=service.refresh)
        direct.start()
        time.sleep(0.1)
        assert source.fetch_count == 1

        source.gate.set()
        direct.join(2.0)
        assert service.wait_idle(2.0)
        assert source.peak_active == 1
        assert source.fetch_count == 2
        assert service.state == RefreshState.READY

    def test_new_request_after_idle_starts_worker(self):
        service = CorrelationService(FlakySource())
        assert service.request_refresh() is True
        assert service.wait_idle(2.0)
        assert service.request_refresh() is True
        assert service.wait_idle(2.0)
        assert service.get_stats()["refresh_count"] == 2


class TestTriggers:
    def test_insert_notification_triggers_refresh(self):
        source = InMemoryEventSource()
        service = CorrelationService(source)
        service.start()
        try:
            assert service.wait_idle(2.0)
            assert not service.is_polling
            for event in _pair("192.0.2.44", "brute_force_login"):
                source.insert_event(event)
            assert service.wait_idle(2.0)
            threats = service.result.threats
            assert len(threats) == 1
            assert threats[0].pattern == "Credential Stuffing Campaign"
        finally:
            service.stop()
        assert source.subscriber_count == 0

    def test_notifications_after_stop_are_ignored(self):
        source = InMemoryEventSource()
        service = CorrelationService(source)
        service.start()
        assert service.wait_idle(2.0)
        service.stop()
        passes = service.get_stats()["refresh_count"]

        assert service.request_refresh() is False
        service.notify(SecurityEvent("port_scan", source_origin="10.0.0.7"))
        assert not service.is_refreshing
        assert service.get_stats()["refresh_count"] == passes

        service.start()
        try:
            assert service.wait_idle(2.0)
            assert service.get_stats()["refresh_count"] == passes + 1
        finally:
            service.stop()

    def test_polling_fallback_when_source_cannot_push(self):
        source = PollOnlySource(_pair("10.0.0.9"))
        service = CorrelationService(source, poll_interval=0.05)
        service.start()
        try:
            assert service.is_polling
            assert service.get_stats()["mode"] == "polling"
            deadline = time.monotonic() + 2.0
            while source.fetch_count < 3 and time.monotonic() < deadline:
                time.sleep(0.02)
            assert source.fetch_count >= 3
        finally:
            service.stop()
        assert not service.is_polling

    def test_notify_ignores_event_argument(self):
        service = CorrelationService(FlakySource())
        service.notify(SecurityEvent("port_scan"))
        assert service.wait_idle(2.0)
        assert service.state == RefreshState.READY


class TestRecordDetections:
    def test_threats_are_written_back(self):
        source = InMemoryEventSource()
        for event in _pair("10.0.0.5", "sql_injection_attempt"):
            source.insert_event(event)
        service = CorrelationService(source, record_detections=True)
        service.refresh()
        detections = source.fetch_recent_detections(10)
        assert len(detections) == 1
        assert detections[0].threat_type == "Injection Attack Chain"
        assert service.result.detections_seen == 0

    def test_disabled_by_default(self):
        source = InMemoryEventSource()
        for event in _pair("10.0.0.5"):
            source.insert_event(event)
        CorrelationService(source).refresh()
        assert source.fetch_recent_detections(10) == []
