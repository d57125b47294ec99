"""Tests for the metrics aggregator."""

from threatlens.core.models import (
    CorrelatedThreat,
    CorrelationResult,
    CorrelationStatus,
    DefenseMetrics,
    PrimaryEvent,
    Severity,
)
from threatlens.correlation.engine import CorrelationEngine
from threatlens.correlation.service import RefreshState
from threatlens.metrics.aggregator import MetricsAggregator, average_score


def _threat(score, status=CorrelationStatus.MITIGATED):
    return CorrelatedThreat(
        threat_id=f"t-{score}",
        primary_event=PrimaryEvent("port_scan", Severity.LOW, "10.0.0.1", 0.0),
        related_event_count=2,
        correlation_score=score,
        pattern="Reconnaissance Activity",
        indicators=("port_scan",),
        status=status,
    )


class TestAverageScore:
    def test_empty_is_zero(self):
        assert average_score([]) == 0

    def test_integer_mean_rounds_half_up(self):
        assert average_score([_threat(20), _threat(55)]) == 38  # 37.5
        assert average_score([_threat(20), _threat(21), _threat(21)]) == 21


class TestMetricsAggregator:
    def test_summary_from_campaign(self, campaign_events):
        result = CorrelationEngine().correlate(campaign_events)
        metrics = DefenseMetrics(blocked_count=7, mitigated_count=2, threat_level=33.5)
        summary = MetricsAggregator().summarize(result, metrics, live_attack_count=4)

        assert summary.total_correlations == 2
        assert summary.active_pattern_count == 5
        assert summary.average_correlation_score == 49  # (55 + 42) / 2 = 48.5
        assert summary.events_processed_count == len(campaign_events)
        assert summary.active_threat_count == 0
        assert summary.blocked_count == 7
        assert summary.mitigated_count == 2
        assert summary.threat_level == 33.5
        assert summary.active_node_count == 47
        assert summary.live_attack_count == 4
        assert summary.correlation_state == "ready"
        assert summary.has_correlations

    def test_empty_result_before_first_pass(self):
        summary = MetricsAggregator().summarize(
            CorrelationResult(), DefenseMetrics(), state=RefreshState.PENDING,
        )
        assert summary.total_correlations == 0
        assert summary.average_correlation_score == 0
        assert summary.correlation_state == "pending"
        assert not summary.has_correlations

    def test_active_threats_counted(self):
        result = CorrelationResult(threats=(
            _threat(80, CorrelationStatus.ACTIVE),
            _threat(75, CorrelationStatus.ACTIVE),
            _threat(50, CorrelationStatus.INVESTIGATING),
        ))
        summary = MetricsAggregator().summarize(result, DefenseMetrics())
        assert summary.active_threat_count == 2
        assert summary.average_correlation_score == 68  # 68.33

    def test_to_dict(self):
        summary = MetricsAggregator().summarize(
            CorrelationResult(severity_breakdown={"low": 1}), DefenseMetrics(),
            state=RefreshState.STALE,
        )
        data = summary.to_dict()
        assert data["correlation_state"] == "stale"
        assert data["severity_breakdown"] == {"low": 1}
        assert "generated_at" in data
