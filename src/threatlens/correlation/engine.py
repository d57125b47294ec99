"""Origin-based Correlation Engine for ThreatLens.

Groups a snapshot of recent security events by reported origin, scores
each group on severity and repetition, classifies its likely technique
with a fixed-priority rule list, and tallies event types into trend
patterns.  A pass is a pure function of its input snapshot: nothing is
carried over between passes and no randomness is involved, so two passes
over the same snapshot produce identical threats and patterns.
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from threatlens.core.models import (
    CorrelatedThreat,
    CorrelationResult,
    CorrelationStatus,
    DetectionRecord,
    PatternTrend,
    PrimaryEvent,
    SecurityEvent,
    Severity,
    ThreatPattern,
)

logger = logging.getLogger(__name__)

_THREAT_NAMESPACE = uuid.UUID("6f1c2d0e-5b4a-4c3e-9a8f-7d6e5c4b3a21")

# Keyword rules in priority order; the first keyword found in any event
# type of the group decides the label.
PATTERN_RULES: tuple[tuple[str, str], ...] = (
    ("brute_force", "Credential Stuffing Campaign"),
    ("scan", "Reconnaissance Activity"),
    ("injection", "Injection Attack Chain"),
    ("malware", "Malware Distribution"),
    ("ddos", "DDoS Attack Pattern"),
)
MULTI_VECTOR_LABEL = "Multi-Vector Attack"
FALLBACK_LABEL = "Correlated Threat Activity"


@dataclass(frozen=True)
class CorrelationRules:
    """Tunable weights, thresholds and limits for a correlation pass."""

    severity_weights: dict[str, int] = field(default_factory=lambda: {
        "critical": 40,
        "high": 30,
        "medium": 20,
        "default": 10,
    })
    frequency_bonus: int = 5
    min_group_size: int = 2
    active_threshold: int = 70
    investigating_threshold: int = 40
    max_threats: int = 10
    max_indicators: int = 4
    max_patterns: int = 6
    trend_increasing_above: int = 5
    trend_stable_above: int = 2
    multi_vector_min_types: int = 4
    pattern_rules: tuple[tuple[str, str], ...] = PATTERN_RULES

    @classmethod
    def from_config(cls, section: dict[str, Any]) -> CorrelationRules:
        """Build rules from the ``correlation`` config section."""
        names = (
            "frequency_bonus", "min_group_size", "active_threshold",
            "investigating_threshold", "max_threats", "max_indicators",
            "max_patterns", "trend_increasing_above", "trend_stable_above",
            "multi_vector_min_types",
        )
        kwargs: dict[str, Any] = {n: int(section[n]) for n in names if n in section}
        if "severity_weights" in section:
            weights = cls().severity_weights
            weights.update({k: int(v) for k, v in section["severity_weights"].items()})
            kwargs["severity_weights"] = weights
        return cls(**kwargs)

    def weight_for(self, severity: Severity) -> int:
        return self.severity_weights.get(
            severity.value, self.severity_weights.get("default", 10),
        )


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class CorrelationEngine:
    """Turn an event snapshot into ranked correlated threats and patterns.

    Parameters
    ----------
    rules:
        Scoring weights, thresholds and output limits.  Defaults match
        the stock dashboard behaviour.
    """

    def __init__(self, rules: CorrelationRules | None = None) -> None:
        self._rules = rules or CorrelationRules()

    @property
    def rules(self) -> CorrelationRules:
        return self._rules

    def correlate(
        self,
        events: Sequence[SecurityEvent],
        detections: Sequence[DetectionRecord] = (),
        now: float | None = None,
    ) -> CorrelationResult:
        """Run one full pass over a consistent snapshot."""
        valid = self._filter_malformed(events)
        malformed = len(events) - len(valid)
        if malformed:
            logger.warning("Skipped %d event(s) without an event type", malformed)

        groups = self.group_by_origin(valid)
        threats = [
            self._build_threat(origin, members)
            for origin, members in groups.items()
        ]
        threats.sort(key=lambda t: t.correlation_score, reverse=True)

        severity_breakdown = Counter(e.severity.value for e in valid)
        return CorrelationResult(
            threats=tuple(threats[: self._rules.max_threats]),
            patterns=tuple(self.detect_patterns(valid)),
            events_processed=len(events),
            detections_seen=len(detections),
            malformed_events=malformed,
            severity_breakdown={s.value: severity_breakdown.get(s.value, 0) for s in Severity},
            computed_at=time.time() if now is None else now,
        )

    # --- Grouping and scoring ---

    def group_by_origin(
        self, events: Iterable[SecurityEvent],
    ) -> dict[str, list[SecurityEvent]]:
        """Partition events by origin; drop origin-less events and small groups."""
        groups: dict[str, list[SecurityEvent]] = {}
        for event in events:
            if not event.source_origin:
                continue
            groups.setdefault(event.source_origin, []).append(event)
        return {
            origin: members
            for origin, members in groups.items()
            if len(members) >= self._rules.min_group_size
        }

    def score_group(self, members: Sequence[SecurityEvent]) -> int:
        """Average severity weight plus a per-event frequency bonus, 0-100."""
        if not members:
            return 0
        total = sum(self._rules.weight_for(e.severity) for e in members)
        raw = total / len(members) + self._rules.frequency_bonus * len(members)
        return min(100, max(0, _round_half_up(raw)))

    def classify_pattern(self, event_types: Sequence[str]) -> str:
        """Label a group from its distinct event types; first rule wins."""
        for keyword, label in self._rules.pattern_rules:
            if any(keyword in t for t in event_types):
                return label
        if len(event_types) >= self._rules.multi_vector_min_types:
            return MULTI_VECTOR_LABEL
        return FALLBACK_LABEL

    def derive_status(self, score: int) -> CorrelationStatus:
        if score > self._rules.active_threshold:
            return CorrelationStatus.ACTIVE
        if score > self._rules.investigating_threshold:
            return CorrelationStatus.INVESTIGATING
        return CorrelationStatus.MITIGATED

    # --- Pattern detection ---

    def detect_patterns(self, events: Iterable[SecurityEvent]) -> list[ThreatPattern]:
        """Tally every event by type, regardless of origin."""
        severities: dict[str, list[Severity]] = {}
        for event in events:
            if not event.event_type:
                continue
            severities.setdefault(event.event_type, []).append(event.severity)

        patterns = [
            ThreatPattern(
                name=name,
                occurrence_count=len(seen),
                dominant_severity=Counter(seen).most_common(1)[0][0],
                trend=self.derive_trend(len(seen)),
            )
            for name, seen in severities.items()
        ]
        patterns.sort(key=lambda p: p.occurrence_count, reverse=True)
        return patterns[: self._rules.max_patterns]

    def derive_trend(self, count: int) -> PatternTrend:
        if count > self._rules.trend_increasing_above:
            return PatternTrend.INCREASING
        if count > self._rules.trend_stable_above:
            return PatternTrend.STABLE
        return PatternTrend.DECREASING

    # --- Private helpers ---

    @staticmethod
    def _filter_malformed(events: Sequence[SecurityEvent]) -> list[SecurityEvent]:
        return [e for e in events if getattr(e, "event_type", None)]

    def _build_threat(
        self, origin: str, members: list[SecurityEvent],
    ) -> CorrelatedThreat:
        score = self.score_group(members)
        event_types = list(dict.fromkeys(e.event_type for e in members))
        first = members[0]
        dominant = max((e.severity for e in members), key=lambda s: s.weight)
        identity = origin + "|" + ",".join(e.event_id for e in members)
        return CorrelatedThreat(
            threat_id=str(uuid.uuid5(_THREAT_NAMESPACE, identity)),
            primary_event=PrimaryEvent(
                event_type=first.event_type,
                severity=dominant,
                source_origin=origin,
                detected_at=first.detected_at,
            ),
            related_event_count=len(members),
            correlation_score=score,
            pattern=self.classify_pattern(event_types),
            indicators=tuple(event_types[: self._rules.max_indicators]),
            status=self.derive_status(score),
        )


def threats_to_detections(
    threats: Iterable[CorrelatedThreat], now: float | None = None,
) -> list[DetectionRecord]:
    """Convert correlated threats into detection records for the store."""
    stamp = time.time() if now is None else now
    return [
        DetectionRecord(
            detection_id=f"det-{t.threat_id}",
            threat_type=t.pattern,
            severity=t.primary_event.severity,
            source_origin=t.primary_event.source_origin,
            confidence=t.correlation_score / 100.0,
            status=t.status.value,
            detected_at=stamp,
        )
        for t in threats
    ]
