"""Shared test fixtures for ThreatLens."""

import random

import pytest

from threatlens.core.models import SecurityEvent, Severity


@pytest.fixture
def tmp_data_dir(tmp_path):
    """Provide a temporary directory for test data (database, configs, etc.)."""
    data_dir = tmp_path / "threatlens_data"
    data_dir.mkdir()
    return data_dir


@pytest.fixture
def seeded_rng():
    """A deterministic random source for simulator tests."""
    return random.Random(1337)


@pytest.fixture
def sample_event():
    """Provide a sample event dict matching the security_events schema."""
    return {
        "id": "2b7e1f0c-0000-4000-8000-000000000001",
        "event_type": "brute_force_login",
        "severity": "high",
        "source_ip": "203.0.113.7",
        "detected_at": "2024-02-14T09:30:00Z",
        "description": "Multiple failed authentication attempts",
        "metadata": {"simulated": True},
    }


@pytest.fixture
def campaign_events():
    """Events from three origins plus one origin-less event."""
    base = 1707900000.0
    return [
        SecurityEvent("brute_force_login", Severity.HIGH, "10.0.0.1", base + 9),
        SecurityEvent("brute_force_login", Severity.HIGH, "10.0.0.1", base + 8),
        SecurityEvent("scan_port", Severity.MEDIUM, "10.0.0.1", base + 7),
        SecurityEvent("sql_injection_attempt", Severity.CRITICAL, "10.0.0.2", base + 6),
        SecurityEvent("sql_injection_attempt", Severity.CRITICAL, "10.0.0.2", base + 5),
        SecurityEvent("sql_injection_attempt", Severity.CRITICAL, "10.0.0.2", base + 4),
        SecurityEvent("port_scan", Severity.LOW, "10.0.0.3", base + 3),
        SecurityEvent("phishing_link_clicked", Severity.LOW, None, base + 2),
    ]
