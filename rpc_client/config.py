from __future__ import annotations

import logging
import os
from typing import Any, Dict

from dotenv import load_dotenv

DEFAULT_CONFIG: Dict[str, Any] = {
    "application_id": "",
    "pipe_prefix": "discord-ipc",
    "max_pipes": 10,
    "reconnect_min_delay": 0.5,
    "reconnect_max_delay": 60.0,
    "io_timeout": 0.5,
    "read_timeout": 5.0,
    "log_level": "INFO",
    "debug_mode": False,
    "disable_io_thread": False,
}

CLIENT_CONFIG: Dict[str, Any] = DEFAULT_CONFIG.copy()


class ConfigError(Exception):
    """Raised when configuration values are invalid."""

    pass


def load_config(env_path: str = ".env") -> Dict[str, Any]:
    """Load client configuration from env file/environment variables."""
    if os.path.exists(env_path):
        load_dotenv(env_path)

    for key, default_value in DEFAULT_CONFIG.items():
        env_key = f"RPC_{key.upper()}"
        value = os.getenv(env_key, default_value)
        CLIENT_CONFIG[key] = _coerce_type(value, type(default_value))

    _validate_config()
    level = "DEBUG" if CLIENT_CONFIG["debug_mode"] else CLIENT_CONFIG["log_level"]
    logging.getLogger().setLevel(level)
    return CLIENT_CONFIG


def _coerce_type(value: Any, target_type: type) -> Any:
    if isinstance(value, target_type):
        return value
    try:
        if target_type is bool:
            return str(value).lower() in ("1", "true", "yes", "on")
        return target_type(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Cannot convert {value} to {target_type}") from exc


def _validate_config() -> None:
    if CLIENT_CONFIG["max_pipes"] <= 0:
        raise ConfigError("max_pipes must be positive")
    if CLIENT_CONFIG["reconnect_min_delay"] <= 0:
        raise ConfigError("reconnect_min_delay must be positive")
    if CLIENT_CONFIG["reconnect_max_delay"] < CLIENT_CONFIG["reconnect_min_delay"]:
        raise ConfigError("reconnect_max_delay must not be below reconnect_min_delay")
    if CLIENT_CONFIG["io_timeout"] <= 0:
        raise ConfigError("io_timeout must be positive")
    if CLIENT_CONFIG["read_timeout"] <= 0:
        raise ConfigError("read_timeout must be positive")
    if str(CLIENT_CONFIG["log_level"]).upper() not in logging.getLevelNamesMapping():
        raise ConfigError(f"Unknown log_level {CLIENT_CONFIG['log_level']}")
    CLIENT_CONFIG["log_level"] = str(CLIENT_CONFIG["log_level"]).upper()


def get(key: str, default: Any = None) -> Any:
    return CLIENT_CONFIG.get(key, default)


__all__ = ["CLIENT_CONFIG", "DEFAULT_CONFIG", "ConfigError", "get", "load_config"]
