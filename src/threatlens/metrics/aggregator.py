"""Metrics Aggregator -- one read-only summary for dashboards and alerting.

Folds the latest correlation result and the simulator's defense metrics
into a :class:`MetricsSummary`.  The two inputs come from independent
components and clocks; the summary is just a snapshot of both.
"""

from __future__ import annotations

import math
import time
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from typing import Any

from threatlens.core.models import (
    CorrelatedThreat,
    CorrelationResult,
    CorrelationStatus,
    DefenseMetrics,
)
from threatlens.correlation.service import RefreshState


@dataclass(frozen=True)
class MetricsSummary:
    """Summary statistics exposed to the presentation layer."""

    total_correlations: int
    active_pattern_count: int
    average_correlation_score: int
    events_processed_count: int
    active_threat_count: int
    blocked_count: int
    mitigated_count: int
    threat_level: float
    active_node_count: int
    uptime_fraction: float
    live_attack_count: int = 0
    correlation_state: str = RefreshState.PENDING.value
    severity_breakdown: dict[str, int] = field(default_factory=dict)
    generated_at: float = field(default_factory=time.time)

    @property
    def has_correlations(self) -> bool:
        return self.total_correlations > 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def average_score(threats: Sequence[CorrelatedThreat]) -> int:
    """Integer mean of correlation scores (half-up), 0 when empty."""
    if not threats:
        return 0
    mean = sum(t.correlation_score for t in threats) / len(threats)
    return int(math.floor(mean + 0.5))


class MetricsAggregator:
    """Builds :class:`MetricsSummary` snapshots."""

    def summarize(
        self,
        result: CorrelationResult,
        metrics: DefenseMetrics,
        state: RefreshState = RefreshState.READY,
        live_attack_count: int = 0,
    ) -> MetricsSummary:
        return MetricsSummary(
            total_correlations=len(result.threats),
            active_pattern_count=len(result.patterns),
            average_correlation_score=average_score(result.threats),
            events_processed_count=result.events_processed,
            active_threat_count=sum(
                1 for t in result.threats if t.status is CorrelationStatus.ACTIVE
            ),
            blocked_count=metrics.blocked_count,
            mitigated_count=metrics.mitigated_count,
            threat_level=metrics.threat_level,
            active_node_count=metrics.active_node_count,
            uptime_fraction=metrics.uptime_fraction,
            live_attack_count=live_attack_count,
            correlation_state=state.value,
            severity_breakdown=dict(result.severity_breakdown),
        )
