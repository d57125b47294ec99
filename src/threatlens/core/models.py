"""Domain models for ThreatLens.

Security events are owned by the event source and treated as immutable.
Correlation outputs (threats, patterns) are rebuilt from scratch on every
pass, so they are frozen as well.  Simulated attacks and defense metrics
are mutable, but only the attack simulator mutates them; everyone else
receives copies.
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from threatlens.core.errors import MalformedEventError


class Severity(Enum):
    """Ordered event severity: low < medium < high < critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def weight(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def from_string(cls, value: str) -> Severity:
        """Parse a severity label, case-insensitive."""
        try:
            return cls(value.strip().lower())
        except (ValueError, AttributeError):
            raise ValueError(f"Unknown severity: {value!r}") from None


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class CorrelationStatus(Enum):
    """Status of a correlated threat, derived from its score."""

    ACTIVE = "active"
    INVESTIGATING = "investigating"
    MITIGATED = "mitigated"


class PatternTrend(Enum):
    """Trend of an event-type pattern, derived from its occurrence count."""

    INCREASING = "increasing"
    STABLE = "stable"
    DECREASING = "decreasing"


class AttackStatus(Enum):
    """Lifecycle state of a simulated attack."""

    INCOMING = "incoming"
    BLOCKED = "blocked"
    MITIGATED = "mitigated"
    ANALYZING = "analyzing"

    @property
    def is_terminal(self) -> bool:
        return self is not AttackStatus.INCOMING


def _parse_timestamp(value: Any) -> float:
    """Accept epoch seconds or an ISO-8601 string."""
    if value is None:
        return time.time()
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).replace("Z", "+00:00")
    return datetime.fromisoformat(text).timestamp()


def _parse_severity(value: Any) -> Severity:
    if isinstance(value, Severity):
        return value
    try:
        return Severity.from_string(value)
    except ValueError:
        # Unknown labels score like "low"
        return Severity.LOW


# ---------------------------------------------------------------------------
# Security events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SecurityEvent:
    """A single, independently reported security event."""

    event_type: str
    severity: Severity = Severity.LOW
    source_origin: str | None = None
    detected_at: float = field(default_factory=time.time)
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: f"evt-{uuid.uuid4().hex[:12]}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "severity": self.severity.value,
            "source_origin": self.source_origin,
            "detected_at": self.detected_at,
            "description": self.description,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SecurityEvent:
        """Build an event from a record.

        Only ``event_type`` is mandatory; a record without it raises
        :class:`MalformedEventError`.  ``source_ip`` is accepted as an
        alias of ``source_origin``.
        """
        event_type = d.get("event_type")
        if not event_type:
            raise MalformedEventError("event_type", d)
        origin = d.get("source_origin", d.get("source_ip")) or None
        kwargs: dict[str, Any] = {
            "event_type": str(event_type),
            "severity": _parse_severity(d.get("severity")),
            "source_origin": origin,
            "detected_at": _parse_timestamp(d.get("detected_at")),
            "description": d.get("description") or "",
            "metadata": dict(d.get("metadata") or {}),
        }
        if d.get("event_id") or d.get("id"):
            kwargs["event_id"] = str(d.get("event_id") or d.get("id"))
        return cls(**kwargs)

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict()).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> SecurityEvent:
        return cls.from_dict(json.loads(raw.decode("utf-8")))


@dataclass(frozen=True)
class DetectionRecord:
    """A prior threat detection, shaped like a correlated threat."""

    threat_type: str
    severity: Severity = Severity.MEDIUM
    source_origin: str | None = None
    confidence: float = 0.0
    status: str = "active"
    detected_at: float = field(default_factory=time.time)
    detection_id: str = field(default_factory=lambda: f"det-{uuid.uuid4().hex[:12]}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "detection_id": self.detection_id,
            "threat_type": self.threat_type,
            "severity": self.severity.value,
            "source_origin": self.source_origin,
            "confidence": self.confidence,
            "status": self.status,
            "detected_at": self.detected_at,
        }


# ---------------------------------------------------------------------------
# Correlation outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PrimaryEvent:
    """Summary of the event group a correlated threat was built from."""

    event_type: str
    severity: Severity
    source_origin: str
    detected_at: float


@dataclass(frozen=True)
class CorrelatedThreat:
    """Two or more events from one origin, scored and classified."""

    threat_id: str
    primary_event: PrimaryEvent
    related_event_count: int
    correlation_score: int
    pattern: str
    indicators: tuple[str, ...]
    status: CorrelationStatus

    def to_dict(self) -> dict[str, Any]:
        primary = asdict(self.primary_event)
        primary["severity"] = self.primary_event.severity.value
        return {
            "threat_id": self.threat_id,
            "primary_event": primary,
            "related_event_count": self.related_event_count,
            "correlation_score": self.correlation_score,
            "pattern": self.pattern,
            "indicators": list(self.indicators),
            "status": self.status.value,
        }


@dataclass(frozen=True)
class ThreatPattern:
    """Occurrence tally for one event type across the whole snapshot."""

    name: str
    occurrence_count: int
    dominant_severity: Severity
    trend: PatternTrend

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "occurrence_count": self.occurrence_count,
            "dominant_severity": self.dominant_severity.value,
            "trend": self.trend.value,
        }


@dataclass(frozen=True)
class CorrelationResult:
    """Everything one correlation pass produced."""

    threats: tuple[CorrelatedThreat, ...] = ()
    patterns: tuple[ThreatPattern, ...] = ()
    events_processed: int = 0
    detections_seen: int = 0
    malformed_events: int = 0
    severity_breakdown: dict[str, int] = field(default_factory=dict)
    computed_at: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.threats and not self.patterns


# ---------------------------------------------------------------------------
# Attack simulation
# ---------------------------------------------------------------------------


@dataclass
class SimulatedAttack:
    """A synthetic in-flight attack advanced by the lifecycle simulator."""

    attack_type: str
    source_address: str
    target_label: str
    severity: Severity
    status: AttackStatus = AttackStatus.INCOMING
    progress: float = 0.0
    created_at: float = field(default_factory=time.monotonic)
    resolved_at: float | None = None
    attack_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "attack_id": self.attack_id,
            "attack_type": self.attack_type,
            "source_address": self.source_address,
            "target_label": self.target_label,
            "severity": self.severity.value,
            "status": self.status.value,
            "progress": self.progress,
            "created_at": self.created_at,
            "resolved_at": self.resolved_at,
        }


DEFAULT_THREAT_LEVEL = 15.0
DEFAULT_ACTIVE_NODES = 47
DEFAULT_UPTIME_FRACTION = 0.9999


@dataclass
class DefenseMetrics:
    """Counters derived from simulated attack resolutions."""

    blocked_count: int = 0
    mitigated_count: int = 0
    threat_level: float = DEFAULT_THREAT_LEVEL
    active_node_count: int = DEFAULT_ACTIVE_NODES
    uptime_fraction: float = DEFAULT_UPTIME_FRACTION

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
