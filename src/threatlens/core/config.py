"""Configuration manager for ThreatLens.

Loads config from YAML, merges with defaults, provides dot-notation access.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG: dict[str, Any] = {
    "correlation": {
        "events_limit": 100,
        "detections_limit": 50,
        "min_group_size": 2,
        "severity_weights": {
            "critical": 40,
            "high": 30,
            "medium": 20,
            "default": 10,
        },
        "frequency_bonus": 5,
        "active_threshold": 70,
        "investigating_threshold": 40,
        "max_threats": 10,
        "max_indicators": 4,
        "max_patterns": 6,
        "trend_increasing_above": 5,
        "trend_stable_above": 2,
        "multi_vector_min_types": 4,
        "poll_interval_seconds": 30.0,
        "record_detections": False,
    },
    "simulation": {
        "autostart": True,
        "generate_interval_seconds": 2.0,
        "progress_interval_seconds": 0.3,
        "spawn_probability": 0.6,
        "progress_step_min": 5.0,
        "progress_step_max": 20.0,
        "blocked_above": 0.3,
        "mitigated_above": 0.1,
        "retention_seconds": 5.0,
        "max_live_attacks": 10,
        "threat_level_step": 5.0,
        "threat_level_min": 5.0,
        "threat_level_max": 95.0,
        "default_threat_level": 15.0,
        "default_active_nodes": 47,
        "default_uptime_fraction": 0.9999,
    },
    "source": {
        "backend": "memory",
        "capacity": 1000,
    },
    "database": {
        "path": "~/.threatlens/threatlens.db",
    },
    "bus": {
        "enabled": False,
        "pub_port": 15555,
        "sub_port": 15556,
    },
    "demo": {
        "enabled": True,
        "event_interval_seconds": 1.5,
        "origin_pool_size": 12,
    },
    "logging": {
        "level": "INFO",
        "file": "~/.threatlens/logs/threatlens.log",
        "max_bytes": 10 * 1024 * 1024,
        "backup_count": 5,
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base. Override values win."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


class ThreatLensConfig:
    """Configuration manager with dot-notation access and YAML persistence."""

    def __init__(self, data: dict[str, Any] | None = None):
        self._data = copy.deepcopy(data or DEFAULT_CONFIG)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def get(self, dotted_key: str, default: Any = None) -> Any:
        """Get a value using dot-notation (e.g., 'correlation.events_limit')."""
        keys = dotted_key.split(".")
        current = self._data
        for k in keys:
            if isinstance(current, dict) and k in current:
                current = current[k]
            else:
                return default
        return current

    def set(self, dotted_key: str, value: Any) -> None:
        """Set a value using dot-notation."""
        keys = dotted_key.split(".")
        current = self._data
        for k in keys[:-1]:
            if k not in current:
                current[k] = {}
            current = current[k]
        current[keys[-1]] = value

    def section(self, name: str) -> dict[str, Any]:
        """Return a copy of a top-level section (empty if absent)."""
        return copy.deepcopy(self._data.get(name, {}))

    def save(self, path: Path) -> None:
        """Save configuration to YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(self._data, f, default_flow_style=False, sort_keys=False)

    @classmethod
    def load(cls, path: Path) -> ThreatLensConfig:
        """Load config from YAML, merging with defaults for missing keys."""
        path = Path(path)
        if not path.exists():
            return cls()
        with open(path) as f:
            user_data = yaml.safe_load(f) or {}
        merged = _deep_merge(DEFAULT_CONFIG, user_data)
        return cls(data=merged)
