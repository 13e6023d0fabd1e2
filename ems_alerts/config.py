"""
Configuration loading and validation.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ems_alerts.errors import ValidationError
from ems_alerts.validation import normalize_hysteresis, validate_settings_update

_BOOL_STRINGS = {"true": True, "yes": True, "on": True, "false": False, "no": False, "off": False}

_NOTIFICATION_KINDS = {
    "enabled_globally": bool,
    "cooldown_minutes": int,
    "max_daily_notifications": int,
    "hysteresis_percentage": float,
}


class ConfigValidationError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class DatabaseConfig:
    """Database configuration."""

    path: str = "data/ems_alerts.db"
    timeout_seconds: float = 5.0


@dataclass
class WhatsAppConfig:
    """WhatsApp gateway configuration."""

    api_url: str = "http://localhost:3001"
    timeout_seconds: float = 10.0


@dataclass
class NotificationDefaultsConfig:
    """Initial notification settings, used until an operator changes them."""

    enabled_globally: bool = True
    cooldown_minutes: int = 15
    max_daily_notifications: int = 10
    template: str = "default"
    # Points below the threshold a reading must fall before the trigger re-arms
    hysteresis_percentage: float = 0.0


@dataclass
class AdvancedConfig:
    """Advanced configuration."""

    log_level: str = "INFO"
    history_limit: int = 100


@dataclass
class AppConfig:
    """Main application configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    whatsapp: WhatsAppConfig = field(default_factory=WhatsAppConfig)
    notifications: NotificationDefaultsConfig = field(
        default_factory=NotificationDefaultsConfig
    )
    advanced: AdvancedConfig = field(default_factory=AdvancedConfig)


def _substitute_env_vars(value: Any) -> Any:
    """Substitute environment variables in string values."""
    if isinstance(value, str):
        # Match ${VAR_NAME} pattern
        pattern = r"\$\{([^}]+)\}"
        matches = re.findall(pattern, value)
        for var_name in matches:
            env_value = os.environ.get(var_name, "")
            value = value.replace(f"${{{var_name}}}", env_value)
        return value
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _validate_config(config_dict: dict[str, Any]) -> None:
    """Validate configuration values."""
    db_config = config_dict.get("database") or {}
    db_path = db_config.get("path")
    if not db_path:
        raise ConfigValidationError("Database path is required")

    if db_path != ":memory:":
        parent = Path(db_path).parent
        if parent.exists() and not os.access(parent, os.W_OK):
            raise ConfigValidationError(f"Database path not writable: {parent}")

    whatsapp = config_dict.get("whatsapp") or {}
    if "api_url" in whatsapp and not whatsapp["api_url"]:
        raise ConfigValidationError("WhatsApp api_url cannot be empty")

    for section, key in (("database", "timeout_seconds"), ("whatsapp", "timeout_seconds")):
        timeout = (config_dict.get(section) or {}).get(key)
        if timeout is not None and float(timeout) <= 0:
            raise ConfigValidationError(f"{section}.{key} must be positive")

    advanced = config_dict.get("advanced") or {}
    log_level = str(advanced.get("log_level", "INFO")).upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigValidationError(f"Unknown log level: {log_level}")


def _coerce_scalar(value: Any, kind: type) -> Any:
    """Turn substituted ${VAR} strings into bools or numbers; leave anything else as is."""
    if not isinstance(value, str):
        return value
    text = value.strip().lower()
    if kind is bool:
        return _BOOL_STRINGS.get(text, value)
    try:
        return kind(text)
    except ValueError:
        return value


def _normalize_notifications(section: dict[str, Any]) -> dict[str, Any]:
    """
    Validate the notifications section with the same rules as runtime settings.

    Returns:
        The section with coerced and normalized values

    Raises:
        ConfigValidationError: If a value is out of range or has the wrong type
    """
    section = dict(section)
    for key, kind in _NOTIFICATION_KINDS.items():
        if key in section:
            section[key] = _coerce_scalar(section[key], kind)

    settings = {
        key: section[key]
        for key in ("enabled_globally", "cooldown_minutes", "max_daily_notifications")
        if key in section
    }
    try:
        section.update(validate_settings_update(settings))
        if "hysteresis_percentage" in section:
            section["hysteresis_percentage"] = normalize_hysteresis(
                section["hysteresis_percentage"]
            )
    except ValidationError as e:
        raise ConfigValidationError(f"notifications.{e.field}: {e}") from e
    return section


def load_config(config_path: str) -> AppConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        AppConfig instance

    Raises:
        ConfigValidationError: If configuration is invalid
        FileNotFoundError: If config file doesn't exist
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path) as f:
        raw_config = yaml.safe_load(f) or {}

    # Substitute environment variables
    config_dict = _substitute_env_vars(raw_config)

    # Validate
    _validate_config(config_dict)
    notifications = _normalize_notifications(config_dict.get("notifications") or {})

    try:
        return AppConfig(
            database=DatabaseConfig(**(config_dict.get("database") or {})),
            whatsapp=WhatsAppConfig(**(config_dict.get("whatsapp") or {})),
            notifications=NotificationDefaultsConfig(**notifications),
            advanced=AdvancedConfig(**(config_dict.get("advanced") or {})),
        )
    except TypeError as e:
        raise ConfigValidationError(f"Unknown configuration key: {e}") from e
