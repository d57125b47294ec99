"""ThreatLens: security-event correlation and attack-lifecycle engine."""

__version__ = "0.1.0"
