"""Attack Lifecycle Simulator for ThreatLens.

Maintains a small rolling population of synthetic attacks for training
and demonstration dashboards.  Two periodic ticks drive it:

  generate  (~2s)   -- maybe spawn one attack from the technique catalog
  progress  (~300ms) -- advance every incoming attack; resolve those that
                       reach 100% as blocked / mitigated / analyzing

Each resolution into ``blocked`` or ``mitigated`` bumps the matching
defense counter exactly once, and any tick with a resolution nudges the
threat level by a bounded random step.  Resolved attacks linger for a
short retention window and are then evicted.

Both ticks run on one :class:`TaskScheduler` thread and every mutation
takes the simulator lock, so readers always see a consistent copy.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

from threatlens.core.errors import SchedulerError
from threatlens.core.models import (
    AttackStatus,
    DefenseMetrics,
    SimulatedAttack,
    Severity,
)
from threatlens.core.scheduler import TaskScheduler

logger = logging.getLogger(__name__)

ATTACK_CATALOG: tuple[str, ...] = (
    "DDoS Layer 4 TCP SYN Flood",
    "DDoS Layer 4 UDP Flood",
    "Layer 7 HTTP Flood",
    "DNS Amplification",
    "ICMP Flood",
    "Slowloris Attack",
    "NTP Amplification",
    "SSDP Reflection",
    "Memcached Amplification",
    "SYN-ACK Reflection",
)


@dataclass(frozen=True)
class SimulationParams:
    """Cadence, probabilities and bounds for the simulator."""

    generate_interval: float = 2.0
    progress_interval: float = 0.3
    spawn_probability: float = 0.6
    progress_step_min: float = 5.0
    progress_step_max: float = 20.0
    blocked_above: float = 0.3
    mitigated_above: float = 0.1
    retention_seconds: float = 5.0
    max_live_attacks: int = 10
    threat_level_step: float = 5.0
    threat_level_min: float = 5.0
    threat_level_max: float = 95.0
    default_threat_level: float = 15.0
    default_active_nodes: int = 47
    default_uptime_fraction: float = 0.9999

    @classmethod
    def from_config(cls, section: dict[str, Any]) -> SimulationParams:
        """Build params from the ``simulation`` config section."""
        renamed = {
            "generate_interval_seconds": "generate_interval",
            "progress_interval_seconds": "progress_interval",
        }
        kwargs: dict[str, Any] = {}
        for key, value in section.items():
            name = renamed.get(key, key)
            if name in cls.__dataclass_fields__:
                kwargs[name] = value
        return cls(**kwargs)

    def default_metrics(self) -> DefenseMetrics:
        return DefenseMetrics(
            threat_level=self.default_threat_level,
            active_node_count=self.default_active_nodes,
            uptime_fraction=self.default_uptime_fraction,
        )


class AttackLifecycleSimulator:
    """Synthetic attack generator and resolver.

    Parameters
    ----------
    params:
        Simulation tuning; defaults match the stock dashboard.
    rng:
        Random source.  Pass a seeded ``random.Random`` for reproducible
        runs.
    clock:
        Monotonic time source used when ticks are not given *now*.
    """

    def __init__(
        self,
        params: SimulationParams | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._params = params or SimulationParams()
        self._rng = rng or random.Random()
        self._clock = clock
        self._lock = threading.RLock()
        self._attacks: list[SimulatedAttack] = []
        self._metrics = self._params.default_metrics()
        self._resolutions: Counter[AttackStatus] = Counter()
        self._failed = False

        self._scheduler = TaskScheduler(
            tick_interval=self._params.progress_interval,
            name="threatlens-simulator",
        )
        self._scheduler.add_task(
            "attack-generate", self.generate_tick, self._params.generate_interval,
        )
        self._scheduler.add_task(
            "attack-progress", self.progress_tick, self._params.progress_interval,
        )

    # --- Read side ------------------------------------------------------

    @property
    def params(self) -> SimulationParams:
        return self._params

    @property
    def attacks(self) -> list[SimulatedAttack]:
        """Copies of the live attacks, oldest first."""
        with self._lock:
            return [replace(a) for a in self._attacks]

    @property
    def metrics(self) -> DefenseMetrics:
        """A copy of the current defense metrics."""
        with self._lock:
            return replace(self._metrics)

    @property
    def resolution_counts(self) -> dict[str, int]:
        """How many attacks resolved into each terminal state since reset."""
        with self._lock:
            return {
                status.value: self._resolutions.get(status, 0)
                for status in AttackStatus
                if status.is_terminal
            }

    @property
    def is_running(self) -> bool:
        return self._scheduler.is_running

    # --- Ticks ----------------------------------------------------------

    def generate_tick(self, now: float | None = None) -> SimulatedAttack | None:
        """Maybe spawn one attack. Returns a copy of it, or None."""
        if now is None:
            now = self._clock()
        with self._lock:
            if self._rng.random() <= 1.0 - self._params.spawn_probability:
                return None
            attack = SimulatedAttack(
                attack_type=self._rng.choice(ATTACK_CATALOG),
                source_address=self._random_address(),
                target_label=f"Node-{self._rng.randrange(100)}",
                severity=self._rng.choice(list(Severity)),
                created_at=now,
            )
            self._attacks.append(attack)
            overflow = len(self._attacks) - self._params.max_live_attacks
            if overflow > 0:
                del self._attacks[:overflow]
            logger.debug(
                "Spawned %s from %s against %s",
                attack.attack_type, attack.source_address, attack.target_label,
            )
            return replace(attack)

    def progress_tick(self, now: float | None = None) -> list[SimulatedAttack]:
        """Advance incoming attacks, resolve finished ones, evict old ones.

        Returns copies of the attacks that resolved on this tick.
        """
        if now is None:
            now = self._clock()
        p = self._params
        resolved: list[SimulatedAttack] = []
        with self._lock:
            for attack in self._attacks:
                if attack.status.is_terminal:
                    continue
                step = p.progress_step_min + self._rng.random() * (
                    p.progress_step_max - p.progress_step_min
                )
                if attack.progress + step < 100.0:
                    attack.progress += step
                    continue
                attack.status = self._resolve_outcome(self._rng.random())
                attack.progress = 100.0
                attack.resolved_at = now
                self._record_resolution(attack.status)
                resolved.append(replace(attack))

            if resolved:
                drift = (self._rng.random() * 2.0 - 1.0) * p.threat_level_step
                self._metrics.threat_level = min(
                    p.threat_level_max,
                    max(p.threat_level_min, self._metrics.threat_level + drift),
                )

            self._attacks = [
                a for a in self._attacks
                if a.resolved_at is None or now - a.resolved_at <= p.retention_seconds
            ]
        return resolved

    def _resolve_outcome(self, r: float) -> AttackStatus:
        if r > self._params.blocked_above:
            return AttackStatus.BLOCKED
        if r > self._params.mitigated_above:
            return AttackStatus.MITIGATED
        return AttackStatus.ANALYZING

    def _record_resolution(self, status: AttackStatus) -> None:
        self._resolutions[status] += 1
        if status is AttackStatus.BLOCKED:
            self._metrics.blocked_count += 1
        elif status is AttackStatus.MITIGATED:
            self._metrics.mitigated_count += 1

    def _random_address(self) -> str:
        return ".".join(str(self._rng.randrange(255)) for _ in range(4))

    # --- Control surface ------------------------------------------------

    def reset(self) -> None:
        """Clear the live set and restore default metrics.

        The running state and tick cadence are left untouched.
        """
        with self._lock:
            self._attacks.clear()
            self._metrics = self._params.default_metrics()
            self._resolutions.clear()
        logger.info("Attack simulation reset")

    def start(self) -> None:
        """Start (or resume) the generation and progression ticks.

        Raises :class:`SchedulerError` if the tick thread cannot be started
        or if an earlier stop failed and left the simulator unusable.
        """
        if self._failed:
            raise SchedulerError("attack simulator is unusable after a failed stop")
        try:
            self._scheduler.start()
        except SchedulerError:
            self._failed = True
            raise
        logger.info("Attack simulation started")

    def stop(self, timeout: float = 5.0) -> None:
        """Pause the ticks; live attacks and counters are kept."""
        try:
            self._scheduler.stop(timeout=timeout)
        except SchedulerError:
            self._failed = True
            raise
        logger.info("Attack simulation stopped")

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            live = len(self._attacks)
            incoming = sum(1 for a in self._attacks if not a.status.is_terminal)
        return {
            "running": self.is_running,
            "live_attacks": live,
            "incoming_attacks": incoming,
            "resolutions": self.resolution_counts,
            "scheduler": self._scheduler.get_stats(),
        }
