"""SQLite event store for ThreatLens.

Uses WAL mode for concurrent read/write from multiple processes.
Stores the append-only security event log and prior threat detections,
and serves both as an :class:`EventSource` for the correlation service.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any

from threatlens.core.errors import MalformedEventError, SourceUnavailableError
from threatlens.core.models import DetectionRecord, SecurityEvent, Severity
from threatlens.core.source import EventSource

if TYPE_CHECKING:
    from threatlens.core.bus import NotificationPublisher

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS security_events (
    event_id TEXT PRIMARY KEY,
    event_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    source_origin TEXT,
    detected_at REAL NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    metadata TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_events_detected_at ON security_events(detected_at);
CREATE INDEX IF NOT EXISTS idx_events_origin ON security_events(source_origin);

CREATE TABLE IF NOT EXISTS threat_detections (
    detection_id TEXT PRIMARY KEY,
    threat_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    source_origin TEXT,
    confidence REAL NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'active',
    detected_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_detections_detected_at ON threat_detections(detected_at);
"""


class EventStore(EventSource):
    """SQLite-backed event log.

    Parameters
    ----------
    db_path:
        Database file; parent directories are created.
    publisher:
        Optional :class:`NotificationPublisher`; every inserted event is
        also broadcast on the bus for other processes.
    """

    def __init__(
        self,
        db_path: str | Path,
        publisher: NotificationPublisher | None = None,
    ) -> None:
        super().__init__()
        self._path = Path(db_path).expanduser()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._publisher = publisher
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(self._path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def journal_mode(self) -> str:
        with self._lock:
            cursor = self._conn.execute("PRAGMA journal_mode")
            return cursor.fetchone()[0]

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def list_tables(self) -> list[str]:
        with self._lock:
            cursor = self._conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
            )
            return [row[0] for row in cursor.fetchall()]

    # --- Events ---

    def insert_event(self, event: SecurityEvent) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO security_events "
                "(event_id, event_type, severity, source_origin, detected_at, description, metadata) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    event.event_id,
                    event.event_type,
                    event.severity.value,
                    event.source_origin,
                    event.detected_at,
                    event.description,
                    json.dumps(event.metadata),
                ),
            )
            self._conn.commit()
        self._notify_inserted(event)
        if self._publisher is not None:
            try:
                self._publisher.send(event)
            except Exception as exc:
                logger.warning("Could not publish insert of %s: %s", event.event_id, exc)

    def get_event(self, event_id: str) -> SecurityEvent | None:
        with self._lock:
            cursor = self._conn.execute(
                "SELECT * FROM security_events WHERE event_id = ?", (event_id,)
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_event(row)

    def fetch_recent_events(self, limit: int) -> list[SecurityEvent]:
        rows = self._query(
            "SELECT * FROM security_events ORDER BY detected_at DESC, rowid DESC LIMIT ?",
            (limit,),
        )
        events: list[SecurityEvent] = []
        for row in rows:
            try:
                events.append(self._row_to_event(row))
            except MalformedEventError as exc:
                logger.warning("Skipping stored event %s: %s", row["event_id"], exc)
        return events

    def event_count(self) -> int:
        with self._lock:
            cursor = self._conn.execute("SELECT COUNT(*) FROM security_events")
            return cursor.fetchone()[0]

    def _row_to_event(self, row: sqlite3.Row) -> SecurityEvent:
        return SecurityEvent.from_dict({
            "event_id": row["event_id"],
            "event_type": row["event_type"],
            "severity": row["severity"],
            "source_origin": row["source_origin"],
            "detected_at": row["detected_at"],
            "description": row["description"],
            "metadata": json.loads(row["metadata"]),
        })

    # --- Detections ---

    def insert_detection(self, record: DetectionRecord) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO threat_detections "
                "(detection_id, threat_type, severity, source_origin, confidence, status, detected_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    record.detection_id,
                    record.threat_type,
                    record.severity.value,
                    record.source_origin,
                    record.confidence,
                    record.status,
                    record.detected_at,
                ),
            )
            self._conn.commit()

    def fetch_recent_detections(self, limit: int) -> list[DetectionRecord]:
        rows = self._query(
            "SELECT * FROM threat_detections ORDER BY detected_at DESC LIMIT ?",
            (limit,),
        )
        return [
            DetectionRecord(
                detection_id=row["detection_id"],
                threat_type=row["threat_type"],
                severity=Severity.from_string(row["severity"]),
                source_origin=row["source_origin"],
                confidence=row["confidence"],
                status=row["status"],
                detected_at=row["detected_at"],
            )
            for row in rows
        ]

    def _query(self, sql: str, params: tuple[Any, ...]) -> list[sqlite3.Row]:
        try:
            with self._lock:
                cursor = self._conn.execute(sql, params)
                return cursor.fetchall()
        except sqlite3.Error as exc:
            raise SourceUnavailableError(f"event store query failed: {exc}") from exc
