"""Configuration loading from YAML with defaults and environment overrides."""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

CONFIG_ENV = "BATLAB_CONFIG"
DATA_DIR_ENV = "BATLAB_DATA_DIR"
DEFAULT_CONFIG_FILE = "batlab.yaml"

DEFAULT_CONFIG: Dict[str, Any] = {
    "paths": {
        "data_dir": "data",
        "workload_dir": "workload",
    },
    "sampling": {
        "hz": 1 / 60,
        "flush_every": 10,
    },
    "acquisition": {
        "command_timeout": 5,
        "outlier_ceiling_watts": 60.0,
        "hampel_window": 15,
        "hampel_sigmas": 3.0,
        "corroboration_tolerance": 0.15,
        "power_supply_root": "/sys/class/power_supply",
        "acpi_battery_unit": 0,
    },
    "analysis": {
        "min_valid_samples": 10,
        "max_valid_watts": 100.0,
        "nominal_hz": 1 / 60,
    },
}


class ConfigError(Exception):
    """Configuration file missing, malformed, or out of range."""

    pass


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _check_range(cfg: Dict[str, Any], section: str, key: str, low: float, high: Optional[float] = None) -> None:
    value = cfg[section][key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}")
    if value < low or (high is not None and value > high):
        bounds = f"[{low}, {high}]" if high is not None else f">= {low}"
        raise ConfigError(f"{section}.{key} must be in {bounds}, got {value}")


def validate_config(cfg: Dict[str, Any]) -> None:
    """
    Check value types and ranges.

    Raises:
        ConfigError: On the first invalid value
    """
    for section in DEFAULT_CONFIG:
        if not isinstance(cfg.get(section), dict):
            raise ConfigError(f"Section '{section}' must be a mapping")

    _check_range(cfg, "sampling", "hz", 0.01, 10.0)
    _check_range(cfg, "sampling", "flush_every", 1)
    _check_range(cfg, "acquisition", "command_timeout", 0.1)
    _check_range(cfg, "acquisition", "outlier_ceiling_watts", 1.0)
    _check_range(cfg, "acquisition", "hampel_window", 3)
    _check_range(cfg, "acquisition", "hampel_sigmas", 0.1)
    _check_range(cfg, "acquisition", "corroboration_tolerance", 0.0, 1.0)
    _check_range(cfg, "acquisition", "acpi_battery_unit", 0)
    _check_range(cfg, "analysis", "min_valid_samples", 1)
    _check_range(cfg, "analysis", "max_valid_watts", 1.0)
    _check_range(cfg, "analysis", "nominal_hz", 0.0001)


def resolve_config_path(config_path: Optional[str] = None) -> Optional[Path]:
    """Explicit path, then $BATLAB_CONFIG, then ./batlab.yaml when present."""
    if config_path:
        return Path(config_path)
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        return Path(env_path)
    local = Path(DEFAULT_CONFIG_FILE)
    return local if local.exists() else None


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration merged over the defaults.

    Raises:
        ConfigError: If a named file is missing, unparseable, or invalid
    """
    path = resolve_config_path(config_path)
    cfg = copy.deepcopy(DEFAULT_CONFIG)

    if path is not None:
        try:
            with open(path, "r") as f:
                loaded = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigError(f"Config file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigError(f"Error parsing config file {path}: {e}")
        if not isinstance(loaded, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        cfg = _merge(cfg, loaded)

    data_dir = os.environ.get(DATA_DIR_ENV)
    if data_dir:
        cfg["paths"]["data_dir"] = data_dir

    validate_config(cfg)
    return cfg
