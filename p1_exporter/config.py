"""
P1 Exporter - Configuration

Loads configuration from an optional YAML file and applies command line
overrides on top of the defaults.
"""

import copy
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import structlog
import yaml

from .errors import ConfigError

logger = structlog.get_logger(__name__)

DEFAULT_LISTEN_ADDRESS = "127.0.0.1:4545"

DEFAULT_CONFIG: Dict[str, Any] = {
    "exporter": {"address": DEFAULT_LISTEN_ADDRESS, "prefix": "p1"},
    "meter": {"address": None},
    "collector": {
        "retry_delay": 5.0,
        "read_timeout": 2.0,
        "connect_timeout": 5.0,
        "max_telegram_size": 16 * 1024,
    },
    "logging": {"level": "INFO", "format": "json"},
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file, falling back to defaults."""
    if not config_path:
        return copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path)
    if not path.exists():
        logger.warning("Config file not found, using defaults", path=config_path)
        return copy.deepcopy(DEFAULT_CONFIG)

    try:
        with open(path, "r") as f:
            loaded = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid config file {config_path}: {e}") from e

    if not isinstance(loaded, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    logger.info("Configuration loaded", path=config_path)
    return _merge(DEFAULT_CONFIG, loaded)


def apply_overrides(config: Dict[str, Any], **overrides: Optional[Any]) -> Dict[str, Any]:
    """Apply section__key=value overrides, skipping None values."""
    merged = copy.deepcopy(config)
    for name, value in overrides.items():
        if value is None:
            continue
        section, key = name.split("__", 1)
        merged.setdefault(section, {})[key] = value
    return merged


def parse_address(value: Optional[str]) -> Tuple[str, int]:
    """Split 'host:port' (or '[v6]:port') into its parts."""
    if not value:
        raise ConfigError("Address is required")

    host, sep, port = str(value).rpartition(":")
    if not sep or not host:
        raise ConfigError(f"Address must be host:port, got {value!r}")

    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]

    try:
        port_number = int(port)
    except ValueError:
        raise ConfigError(f"Invalid port in address {value!r}") from None

    if not 0 <= port_number < 65536:
        raise ConfigError(f"Port out of range in address {value!r}")

    return host, port_number


def validate_config(config: Dict[str, Any]) -> None:
    """Fail fast on settings that would only break once running."""
    parse_address(config["exporter"]["address"])

    if not config["meter"].get("address"):
        raise ConfigError("P1 reader address is required (--p1-address or meter.address)")
    parse_address(config["meter"]["address"])

    collector = config["collector"]
    for key in ("retry_delay", "read_timeout", "connect_timeout"):
        try:
            value = float(collector[key])
        except (TypeError, ValueError):
            raise ConfigError(f"collector.{key} must be a number") from None
        if value <= 0:
            raise ConfigError(f"collector.{key} must be positive")

    size = collector["max_telegram_size"]
    if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
        raise ConfigError("collector.max_telegram_size must be a positive integer")
