"""ThreatLens Engine -- the central coordinator.

Responsibilities:
- Opens the configured event source (in-memory or SQLite)
- Optionally runs the ZeroMQ notification bus
- Keeps correlation results fresh via the correlation service
- Runs the attack lifecycle simulator
- Optionally feeds synthetic events for demos
- Exposes immutable snapshots and the simulation control surface
"""

from __future__ import annotations

import logging
import random
from pathlib import Path
from typing import Any

from threatlens.core.bus import EventBus, NotificationPublisher, NotificationSubscriber
from threatlens.core.config import ThreatLensConfig
from threatlens.core.database import EventStore
from threatlens.core.errors import SchedulerError
from threatlens.core.models import (
    CorrelatedThreat,
    CorrelationResult,
    DefenseMetrics,
    SimulatedAttack,
    ThreatPattern,
)
from threatlens.core.scheduler import TaskScheduler
from threatlens.core.source import EventSource, InMemoryEventSource
from threatlens.correlation.engine import CorrelationEngine, CorrelationRules
from threatlens.correlation.service import CorrelationService, RefreshState
from threatlens.metrics.aggregator import MetricsAggregator, MetricsSummary
from threatlens.simulation.attack_simulator import (
    AttackLifecycleSimulator,
    SimulationParams,
)
from threatlens.simulation.event_generator import SecurityEventGenerator

logger = logging.getLogger(__name__)


class ThreatLensEngine:
    """Ties the event source, correlation, simulation and metrics together.

    Parameters
    ----------
    config:
        Application configuration.
    source:
        Optional pre-built event source; overrides ``source.backend``.
    rng:
        Optional random source shared by the simulator and the demo feed.
    """

    def __init__(
        self,
        config: ThreatLensConfig | None = None,
        source: EventSource | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config or ThreatLensConfig()
        self._rng = rng or random.Random()
        self._owns_source = source is None
        self._source = source
        self._bus: EventBus | None = None
        self._publisher: NotificationPublisher | None = None
        self._subscriber: NotificationSubscriber | None = None
        self._demo_scheduler: TaskScheduler | None = None
        self._running = False

        corr = self._config.section("correlation")
        self._correlation_engine = CorrelationEngine(CorrelationRules.from_config(corr))
        self._simulator = AttackLifecycleSimulator(
            params=SimulationParams.from_config(self._config.section("simulation")),
            rng=self._rng,
        )
        self._aggregator = MetricsAggregator()
        self._correlation: CorrelationService | None = None
        self._generator = SecurityEventGenerator(
            rng=self._rng,
            origin_pool_size=int(self._config.get("demo.origin_pool_size", 12)),
        )

    # --- Properties -----------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def source(self) -> EventSource | None:
        return self._source

    @property
    def correlation(self) -> CorrelationService | None:
        return self._correlation

    @property
    def simulator(self) -> AttackLifecycleSimulator:
        return self._simulator

    # --- Lifecycle ------------------------------------------------------

    def start(self) -> None:
        """Open the source, start correlation, simulation and the demo feed."""
        logger.info("ThreatLens engine starting...")
        if self._config.get("bus.enabled", False):
            self._start_bus()
        if self._source is None:
            self._source = self._open_source()

        corr = self._config.section("correlation")
        self._correlation = CorrelationService(
            source=self._source,
            engine=self._correlation_engine,
            events_limit=int(corr.get("events_limit", 100)),
            detections_limit=int(corr.get("detections_limit", 50)),
            poll_interval=float(corr.get("poll_interval_seconds", 30.0)),
            record_detections=bool(corr.get("record_detections", False)),
        )
        self._correlation.start()

        # Local inserts already reach the service through its subscription.
        if self._bus is not None and not self._correlation.is_subscribed:
            self._subscriber = NotificationSubscriber(
                port=int(self._config.get("bus.sub_port", 15556)),
                callback=self._correlation.notify,
            )
            self._subscriber.start()

        if self._config.get("simulation.autostart", True):
            self._simulator.start()

        if self._config.get("demo.enabled", False):
            self._start_demo_feed()

        self._running = True
        logger.info("ThreatLens engine started")

    def stop(self) -> None:
        """Stop every component; lifecycle failures are re-raised at the end."""
        logger.info("ThreatLens engine stopping...")
        self._running = False
        failure: SchedulerError | None = None

        if self._demo_scheduler is not None:
            try:
                self._demo_scheduler.stop()
            except SchedulerError as exc:
                logger.error("Demo feed did not stop: %s", exc)
                failure = failure or exc
            self._demo_scheduler = None
        try:
            self._simulator.stop()
        except SchedulerError as exc:
            logger.error("Attack simulator did not stop: %s", exc)
            failure = failure or exc
        if self._subscriber is not None:
            self._subscriber.stop()
            self._subscriber = None
        if self._correlation is not None:
            try:
                self._correlation.stop()
            except SchedulerError as exc:
                logger.error("Correlation polling did not stop: %s", exc)
                failure = failure or exc
        if self._publisher is not None:
            self._publisher.close()
            self._publisher = None
        if self._bus is not None:
            self._bus.stop()
            self._bus = None
        if self._owns_source and isinstance(self._source, EventStore):
            self._source.close()

        logger.info("ThreatLens engine stopped")
        if failure is not None:
            raise failure

    def _start_bus(self) -> None:
        pub_port = int(self._config.get("bus.pub_port", 15555))
        sub_port = int(self._config.get("bus.sub_port", 15556))
        self._bus = EventBus(pub_port=pub_port, sub_port=sub_port)
        self._bus.start()
        self._publisher = NotificationPublisher(port=pub_port)

    def _open_source(self) -> EventSource:
        backend = self._config.get("source.backend", "memory")
        if backend == "sqlite":
            db_path = Path(str(self._config.get("database.path"))).expanduser()
            logger.info("Using SQLite event store at %s", db_path)
            return EventStore(db_path, publisher=self._publisher)
        if backend != "memory":
            logger.warning("Unknown source backend '%s', using memory", backend)
        return InMemoryEventSource(capacity=int(self._config.get("source.capacity", 1000)))

    def _start_demo_feed(self) -> None:
        insert = getattr(self._source, "insert_event", None)
        if insert is None:
            logger.warning("Demo feed disabled: source does not accept inserts")
            return
        interval = float(self._config.get("demo.event_interval_seconds", 1.5))
        self._demo_scheduler = TaskScheduler(
            tick_interval=interval, name="threatlens-demo-feed",
        )
        self._demo_scheduler.add_task(
            "demo-event", lambda: self._generator.emit(self._source), interval,
        )
        self._demo_scheduler.start()

    # --- Control surface ------------------------------------------------

    def start_simulation(self) -> None:
        self._simulator.start()

    def stop_simulation(self) -> None:
        self._simulator.stop()

    def reset_simulation(self) -> None:
        self._simulator.reset()

    def refresh_correlations(self) -> bool:
        """Run a correlation pass now, in the calling thread."""
        if self._correlation is None:
            return False
        return self._correlation.refresh()

    # --- Snapshots ------------------------------------------------------

    def correlated_threats(self) -> list[CorrelatedThreat]:
        if self._correlation is None:
            return []
        return list(self._correlation.result.threats)

    def threat_patterns(self) -> list[ThreatPattern]:
        if self._correlation is None:
            return []
        return list(self._correlation.result.patterns)

    def attacks(self) -> list[SimulatedAttack]:
        return self._simulator.attacks

    def defense_metrics(self) -> DefenseMetrics:
        return self._simulator.metrics

    def summary(self) -> MetricsSummary:
        if self._correlation is None:
            result, state = CorrelationResult(), RefreshState.PENDING
        else:
            result, state = self._correlation.result, self._correlation.state
        return self._aggregator.summarize(
            result,
            self._simulator.metrics,
            state=state,
            live_attack_count=len(self._simulator.attacks),
        )

    def get_stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "correlation": self._correlation.get_stats() if self._correlation else None,
            "simulation": self._simulator.get_stats(),
            "demo_events": self._generator.generated_count,
        }
