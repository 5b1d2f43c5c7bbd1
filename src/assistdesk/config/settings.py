"""
Configuration settings management for assistdesk.

This module handles loading, validating, and saving configuration settings
from YAML files with support for environment variable overrides.

Configuration is loaded from ~/.assistdesk/config.yaml by default, with the
path overridable via the ASSISTDESK_CONFIG environment variable.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".assistdesk"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"


@dataclass
class BackupConfig:
    """Export/import settings."""

    backup_suffix: str = ".bak"
    # None means the OS temp directory
    staging_dir: str | None = None


@dataclass
class Settings:
    """
    Complete assistdesk configuration settings.

    Settings are loaded from a YAML configuration file and can be overridden
    by environment variables prefixed with ASSISTDESK_.

    Attributes:
        user_data_dir: Directory holding the history store and attachments.
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        backup: Export/import settings.
    """

    user_data_dir: str = str(DEFAULT_CONFIG_DIR / "data")
    log_level: str = "INFO"

    backup: BackupConfig = field(default_factory=BackupConfig)

    @property
    def user_data_path(self) -> Path:
        return Path(self.user_data_dir).expanduser().absolute()

    @property
    def staging_path(self) -> Path | None:
        if not self.backup.staging_dir:
            return None
        return Path(self.backup.staging_dir).expanduser()


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def get_config_path() -> Path:
    """
    Get the configuration file path.

    Returns the path from ASSISTDESK_CONFIG environment variable if set,
    otherwise returns the default path (~/.assistdesk/config.yaml).
    """
    env_path = os.environ.get("ASSISTDESK_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> Settings:
    """
    Load configuration from YAML file.

    Reads configuration from the specified path (or default if not provided),
    applies environment variable overrides, and validates the configuration.
    A missing file yields the defaults.

    Args:
        config_path: Optional path to configuration file. If not provided,
                    uses ASSISTDESK_CONFIG environment variable or default path.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If the configuration file cannot be read or
                          contains invalid settings.
    """
    if config_path is None:
        config_path = get_config_path()

    settings = Settings()

    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping")

        settings = _apply_config_data(settings, config_data)

    settings = _apply_environment_overrides(settings)

    _validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Save configuration to YAML file.

    Raises:
        ConfigurationError: If the configuration cannot be written.
    """
    if config_path is None:
        config_path = get_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_data = _settings_to_dict(settings)

    try:
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    app_data = data.get("assistdesk") or {}

    if "user_data_dir" in app_data:
        settings.user_data_dir = str(app_data["user_data_dir"])
    if "log_level" in app_data:
        settings.log_level = str(app_data["log_level"]).upper()

    backup = data.get("backup") or {}
    if "backup_suffix" in backup:
        settings.backup.backup_suffix = str(backup["backup_suffix"])
    if backup.get("staging_dir"):
        settings.backup.staging_dir = str(backup["staging_dir"])

    return settings


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "ASSISTDESK_USER_DATA_DIR": ("user_data_dir", str),
        "ASSISTDESK_LOG_LEVEL": ("log_level", lambda x: x.upper()),
        "ASSISTDESK_STAGING_DIR": ("backup.staging_dir", str),
    }

    for env_var, (attr_path, converter) in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            _set_nested_attr(settings, attr_path, converter(value))

    return settings


def _set_nested_attr(obj: Any, path: str, value: Any) -> None:
    """Set a nested attribute on an object using dot notation."""
    parts = path.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _validate_config(settings: Settings) -> None:
    """
    Validate configuration settings.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if settings.log_level not in valid_log_levels:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. "
            f"Must be one of: {', '.join(sorted(valid_log_levels))}"
        )

    suffix = settings.backup.backup_suffix
    if not suffix or not suffix.startswith(".") or len(suffix) < 2:
        raise ConfigurationError(
            f"Invalid backup_suffix: {suffix!r}. Must start with '.' (e.g. '.bak')"
        )

    if not settings.user_data_dir:
        raise ConfigurationError("user_data_dir must not be empty")


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        "assistdesk": {
            "user_data_dir": settings.user_data_dir,
            "log_level": settings.log_level,
        },
        "backup": {
            "backup_suffix": settings.backup.backup_suffix,
            "staging_dir": settings.backup.staging_dir,
        },
    }
