"""Synthetic security event generator.

Produces plausible-looking events for demos and tests.  With an origin
pool, repeat origins are likely, which gives the correlation engine
same-origin groups to work with.
"""

from __future__ import annotations

import logging
import random
import time
from typing import TYPE_CHECKING

from threatlens.core.models import SecurityEvent, Severity

if TYPE_CHECKING:
    from threatlens.core.database import EventStore
    from threatlens.core.source import InMemoryEventSource

logger = logging.getLogger(__name__)

EVENT_TYPES: tuple[str, ...] = (
    "unauthorized_access_attempt",
    "brute_force_attack",
    "sql_injection_attempt",
    "xss_attack_blocked",
    "ddos_traffic",
    "malware_signature_found",
    "suspicious_login",
    "port_scan",
    "data_exfiltration_attempt",
    "privilege_escalation_attempt",
    "phishing_link_clicked",
    "ransomware_behavior",
    "api_rate_limit_exceeded",
    "certificate_validation_failed",
    "anomalous_network_traffic",
)

DESCRIPTIONS: tuple[str, ...] = (
    "Multiple failed authentication attempts from suspicious IP range",
    "Unusual data transfer patterns detected from internal server",
    "Known malicious signature matched in uploaded file",
    "Suspicious outbound connection to known C2 server",
    "Elevated privileges requested without proper authorization",
    "Database query contained potential injection payload",
    "User agent string matches known bot patterns",
    "Geographic anomaly detected in login pattern",
    "Encrypted traffic to blacklisted domain",
    "Memory scraping attempt detected on payment system",
)


class SecurityEventGenerator:
    """Random security event factory.

    Parameters
    ----------
    rng:
        Random source; seed it for reproducible feeds.
    origin_pool_size:
        When positive, origins are drawn from a fixed pool of this many
        addresses instead of being fresh every time.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        origin_pool_size: int = 0,
    ) -> None:
        self._rng = rng or random.Random()
        self._origin_pool = [self._random_address() for _ in range(origin_pool_size)]
        self._generated = 0

    @property
    def generated_count(self) -> int:
        return self._generated

    @property
    def origin_pool(self) -> list[str]:
        return list(self._origin_pool)

    def generate(self, now: float | None = None) -> SecurityEvent:
        """Build one random event."""
        origin = (
            self._rng.choice(self._origin_pool)
            if self._origin_pool
            else self._random_address()
        )
        stamp = time.time() if now is None else now
        self._generated += 1
        return SecurityEvent(
            event_type=self._rng.choice(EVENT_TYPES),
            severity=self._rng.choice(list(Severity)),
            source_origin=origin,
            detected_at=stamp,
            description=self._rng.choice(DESCRIPTIONS),
            metadata={
                "simulated": True,
                "generator": "threatlens-event-generator",
                "sequence": self._generated,
            },
        )

    def emit(self, sink: InMemoryEventSource | EventStore, now: float | None = None) -> SecurityEvent:
        """Generate one event and insert it into *sink*."""
        event = self.generate(now)
        sink.insert_event(event)
        logger.debug(
            "Simulated %s (%s) from %s",
            event.event_type, event.severity.value, event.source_origin,
        )
        return event

    def _random_address(self) -> str:
        return ".".join(str(self._rng.randrange(255)) for _ in range(4))
