"""
Configuration

YAML-backed configuration with dotted-key lookup, e.g.
``config.get("reminders.missed_after_hours", 12)``.
"""

import copy
import os
from pathlib import Path
from typing import Any, Optional

import yaml


DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

DEFAULTS = {
    "storage": {
        "db_path": str(Path.home() / ".local" / "share" / "vocalizeit" / "vocalizeit.db"),
    },
    "logging": {
        "level": "INFO",
        "file": None,
        "console": True,
        "propagate": False,
    },
    "reminders": {
        "missed_after_hours": 12,
        "reconcile_interval_seconds": 300,
    },
    "notifications": {
        "present_delay_seconds": 1.0,
        "test_delay_seconds": 5,
        "app_name": "VocaliZeit",
    },
    "speech": {
        "enabled": True,
        "language": "en",
        "rate": 0.8,
        "pitch": 1.0,
        "command": "espeak-ng",
    },
}


def _merge(base: dict, override: dict) -> dict:
    """Recursively merge override onto a copy of base."""
    result = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


class Config:
    """Nested configuration values with dotted-key access."""

    def __init__(self, data: Optional[dict] = None):
        self._data = _merge(DEFAULTS, data or {})

    def get(self, key: str, default: Any = None) -> Any:
        node = self._data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return default if node is None else node


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from YAML.

    Resolution order: explicit path, $VOCALIZEIT_CONFIG, config.yaml at the
    project root. A missing file yields the built-in defaults.
    """
    config_path = Path(path or os.environ.get("VOCALIZEIT_CONFIG") or DEFAULT_CONFIG_PATH)
    if not config_path.exists():
        return Config()

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping: {config_path}")
    return Config(data)
