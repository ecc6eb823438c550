"""Configuration loading for the Sellerboard engine."""

from __future__ import annotations

import math
import os
from copy import deepcopy
from pathlib import Path
from typing import Any

import yaml

from sellerboard.logging_config import get_logger
from sellerboard.models import BatchOptions

LOGGER = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("sellerboard/config.yml")

DEFAULT_CONFIG: dict[str, Any] = {
    "batch": {
        "per_item_delay_ms": 2000,
        "max_retries": 3,
        "settle_delay_ms": 1000,
        "load_timeout_ms": 15000,
        "retry_backoff_ms": 1500,
    },
    "monitoring": {
        "default_interval_minutes": 60,
        "history_limit": 100,
        "settle_delay_ms": 3000,
        "load_timeout_ms": 15000,
    },
    "storage": {"sqlite_path": "sellerboard.sqlite"},
    "collector": {"script_path": "collector/collector.js"},
    "notifications": {"on_collect": False},
    "health": {
        "log_path": "logs/health.log",
        "suspect_after": 3,
        "block_after": 6,
    },
    "targets": {"extra_patterns": []},
    "dashboard": {"host": "127.0.0.1", "port": 8000},
}


def _deep_merge(default: Any, override: Any) -> Any:
    if not isinstance(default, dict) or not isinstance(override, dict):
        return deepcopy(override)

    merged: dict[str, Any] = deepcopy(default)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


def resolve_config_path(path_value: str | Path | None = None) -> Path:
    raw = path_value or os.getenv("SELLERBOARD_CONFIG") or DEFAULT_CONFIG_PATH
    path = Path(raw)
    if not path.is_absolute():
        path = Path.cwd() / path
    return path


def load_config(path: str | Path | None = None) -> dict[str, Any]:
    """Load YAML configuration from *path* merged over the defaults."""

    config_path = resolve_config_path(path)
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, dict):
            LOGGER.warning("Configuration file %s is not a mapping; using defaults", config_path)
            data = {}
    else:
        LOGGER.warning("Configuration file %s not found; using defaults", config_path)
        data = {}

    return _deep_merge(DEFAULT_CONFIG, data) if data else deepcopy(DEFAULT_CONFIG)


def section(config: dict[str, Any] | None, name: str) -> dict[str, Any]:
    """Return config section *name* with defaults filled in."""

    defaults = DEFAULT_CONFIG.get(name, {})
    value = (config or {}).get(name)
    if not isinstance(value, dict):
        return deepcopy(defaults)
    return _deep_merge(defaults, value)


def number_setting(
    config: dict[str, Any] | None,
    section_name: str,
    key: str,
    *,
    minimum: float = 0,
    positive: bool = False,
) -> float:
    """Read a numeric setting, falling back to the default when invalid.

    With *positive*, zero is rejected as well.
    """

    default = DEFAULT_CONFIG[section_name][key]
    raw = section(config, section_name).get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        LOGGER.warning("Invalid %s.%s=%r; using default %s", section_name, key, raw, default)
        return float(default)
    if not math.isfinite(value) or value < minimum or (positive and value <= 0):
        LOGGER.warning("%s.%s=%s out of range; using default %s", section_name, key, value, default)
        return float(default)
    return value


def batch_options(config: dict[str, Any] | None) -> BatchOptions:
    """Build default BatchOptions from the ``batch`` config section."""

    return BatchOptions(
        per_item_delay_ms=int(number_setting(config, "batch", "per_item_delay_ms")),
        max_retries=int(number_setting(config, "batch", "max_retries", minimum=1)),
        settle_delay_ms=int(number_setting(config, "batch", "settle_delay_ms")),
        load_timeout_ms=int(number_setting(config, "batch", "load_timeout_ms")),
        retry_backoff_ms=int(number_setting(config, "batch", "retry_backoff_ms")),
    )


__all__ = [
    "DEFAULT_CONFIG",
    "batch_options",
    "load_config",
    "number_setting",
    "resolve_config_path",
    "section",
]
