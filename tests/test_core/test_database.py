"""Tests for the SQLite event store."""

import sqlite3
from unittest.mock import MagicMock

import pytest

from threatlens.core.database import EventStore
from threatlens.core.errors import SourceUnavailableError
from threatlens.core.models import DetectionRecord, SecurityEvent, Severity


class TestEventStoreInit:
    def test_creates_database_file(self, tmp_data_dir):
        db_path = tmp_data_dir / "nested" / "events.db"
        store = EventStore(db_path)
        assert db_path.exists()
        store.close()

    def test_creates_tables(self, tmp_data_dir):
        store = EventStore(tmp_data_dir / "events.db")
        tables = store.list_tables()
        assert "security_events" in tables
        assert "threat_detections" in tables
        store.close()

    def test_uses_wal_mode(self, tmp_data_dir):
        store = EventStore(tmp_data_dir / "events.db")
        assert store.journal_mode == "wal"
        store.close()


class TestEventStorage:
    def test_insert_and_retrieve_event(self, tmp_data_dir):
        store = EventStore(tmp_data_dir / "events.db")
        event = SecurityEvent(
            event_type="sql_injection_attempt",
            severity=Severity.CRITICAL,
            source_origin="192.0.2.10",
            metadata={"payload": "' OR 1=1"},
        )
        store.insert_event(event)
        retrieved = store.get_event(event.event_id)
        assert retrieved == event
        assert store.get_event("missing") is None
        store.close()

    def test_fetch_recent_events_newest_first_and_limited(self, tmp_data_dir):
        store = EventStore(tmp_data_dir / "events.db")
        for i in range(10):
            store.insert_event(SecurityEvent("port_scan", detected_at=1000.0 + i))
        fetched = store.fetch_recent_events(4)
        assert [e.detected_at for e in fetched] == [1009.0, 1008.0, 1007.0, 1006.0]
        assert store.event_count() == 10
        store.close()

    def test_origin_less_events_round_trip(self, tmp_data_dir):
        store = EventStore(tmp_data_dir / "events.db")
        store.insert_event(SecurityEvent("phishing_link_clicked"))
        assert store.fetch_recent_events(1)[0].source_origin is None
        store.close()

    def test_insert_notifies_subscribers_and_publisher(self, tmp_data_dir):
        publisher = MagicMock()
        store = EventStore(tmp_data_dir / "events.db", publisher=publisher)
        callback = MagicMock()
        store.subscribe(callback)
        event = SecurityEvent("port_scan", source_origin="10.1.1.1")
        store.insert_event(event)
        callback.assert_called_once_with(event)
        publisher.send.assert_called_once_with(event)
        store.close()

    def test_publisher_failure_does_not_fail_insert(self, tmp_data_dir):
        publisher = MagicMock()
        publisher.send.side_effect = RuntimeError("bus down")
        store = EventStore(tmp_data_dir / "events.db", publisher=publisher)
        store.insert_event(SecurityEvent("port_scan"))
        assert store.event_count() == 1
        store.close()

    def test_blank_event_type_rows_are_skipped(self, tmp_data_dir):
        db_path = tmp_data_dir / "events.db"
        store = EventStore(db_path)
        store.insert_event(SecurityEvent("port_scan", detected_at=1.0))
        conn = sqlite3.connect(str(db_path))
        conn.execute(
            "INSERT INTO security_events (event_id, event_type, severity, detected_at) "
            "VALUES ('bad', '', 'low', 2.0)"
        )
        conn.commit()
        conn.close()
        fetched = store.fetch_recent_events(10)
        assert [e.event_type for e in fetched] == ["port_scan"]
        store.close()

    def test_closed_store_raises_source_unavailable(self, tmp_data_dir):
        store = EventStore(tmp_data_dir / "events.db")
        store.close()
        with pytest.raises(SourceUnavailableError):
            store.fetch_recent_events(10)


class TestDetectionStorage:
    def test_insert_and_fetch_detections(self, tmp_data_dir):
        store = EventStore(tmp_data_dir / "events.db")
        store.insert_detection(DetectionRecord(
            "Credential Stuffing Campaign", Severity.HIGH, "10.0.0.1", 0.62, detected_at=5.0,
        ))
        store.insert_detection(DetectionRecord(
            "Reconnaissance Activity", Severity.LOW, "10.0.0.2", 0.2, detected_at=6.0,
        ))
        fetched = store.fetch_recent_detections(50)
        assert [d.threat_type for d in fetched] == [
            "Reconnaissance Activity",
            "Credential Stuffing Campaign",
        ]
        assert fetched[1].severity == Severity.HIGH
        assert fetched[1].confidence == pytest.approx(0.62)
        store.close()

    def test_reinserting_detection_replaces_it(self, tmp_data_dir):
        store = EventStore(tmp_data_dir / "events.db")
        record = DetectionRecord("DDoS Attack Pattern", detection_id="det-1", detected_at=1.0)
        store.insert_detection(record)
        store.insert_detection(record)
        assert len(store.fetch_recent_detections(10)) == 1
        store.close()
