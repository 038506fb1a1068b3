"""Configuration loading from CLI args, env vars, and optional YAML file.

Precedence, lowest first: dataclass defaults, YAML file, environment
variables, command-line arguments.
"""

import os
import logging
from dataclasses import dataclass

import yaml

from dirtail.registry import ORDERS

logger = logging.getLogger(__name__)

ENV_VARS = {
    "poll_interval": "DIRTAIL_POLL_INTERVAL",
    "rescan_interval": "DIRTAIL_RESCAN_INTERVAL",
    "queue_size": "DIRTAIL_QUEUE_SIZE",
    "force_polling": "DIRTAIL_FORCE_POLLING",
    "order": "DIRTAIL_ORDER",
    "max_open_files": "DIRTAIL_MAX_OPEN_FILES",
    "log_level": "LOG_LEVEL",
}


class ConfigError(ValueError):
    """Raised when a configuration value is unusable."""


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class Config:
    directory: str = "."
    pattern: str | None = None
    poll_interval: float = 0.3
    rescan_interval: float = 5.0
    queue_size: int = 1024
    force_polling: bool = False
    order: str = "path"
    lines: int | None = None
    max_open_files: int = 512
    log_level: str = "WARNING"


_CONVERTERS = {
    "directory": str,
    "pattern": str,
    "poll_interval": float,
    "rescan_interval": float,
    "queue_size": int,
    "force_polling": _parse_bool,
    "order": str,
    "lines": int,
    "max_open_files": int,
    "log_level": lambda v: str(v).upper(),
}


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        logger.info("Loaded YAML config from %s", path)
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as e:
        raise ConfigError(f"cannot parse {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")
    return data


def _convert(key: str, value):
    try:
        return _CONVERTERS[key](value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value for {key}: {value!r}") from e


def _validate(config: Config):
    if config.order not in ORDERS:
        raise ConfigError(f"order must be one of {', '.join(ORDERS)}, got {config.order!r}")
    if config.poll_interval <= 0:
        raise ConfigError("poll_interval must be positive")
    if config.rescan_interval < 0:
        raise ConfigError("rescan_interval must not be negative")
    if config.queue_size < 1:
        raise ConfigError("queue_size must be at least 1")
    if config.max_open_files < 1:
        raise ConfigError("max_open_files must be at least 1")
    if config.lines is not None and config.lines < 0:
        raise ConfigError("lines must not be negative")
    if not isinstance(logging.getLevelName(config.log_level), int):
        raise ConfigError(f"unknown log level {config.log_level!r}")


def load_config(cli_args=None, yaml_data: dict | None = None) -> Config:
    """Build Config from parsed YAML data, env vars, and CLI args (highest priority)."""
    kwargs: dict = {}

    for key, value in (yaml_data or {}).items():
        if key not in _CONVERTERS:
            logger.warning("Ignoring unknown config key %r", key)
            continue
        if value is None:
            continue
        kwargs[key] = _convert(key, value)

    for key, env_name in ENV_VARS.items():
        if env_name in os.environ:
            kwargs[key] = _convert(key, os.environ[env_name])

    if cli_args is not None:
        for key in _CONVERTERS:
            value = getattr(cli_args, key, None)
            if value is not None:
                kwargs[key] = _convert(key, value)

    config = Config(**kwargs)
    _validate(config)
    return config
