"""
Configuration settings management for SiteBackup.

This module handles loading, validating, and saving configuration settings
from YAML files with support for environment variable overrides.

Configuration is loaded from ~/.sitebackup/config.yaml by default, with the
path overridable via the SITEBACKUP_CONFIG environment variable.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".sitebackup"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

# Bounds for the automatic backup interval, in hours
MIN_INTERVAL_HOURS = 1
MAX_INTERVAL_HOURS = 168


@dataclass
class AutoBackupConfig:
    """Automatic backup settings."""

    enabled: bool = False
    interval_hours: int = 24
    # Empty means <upload_dir>/auto-backups
    target_dir: str = ""
    timeout_minutes: int = 15


@dataclass
class S3Config:
    """Object storage settings for uploading backups."""

    enabled: bool = False
    endpoint: str = ""
    access_key: str = ""
    secret_key: str = ""
    bucket: str = ""
    region: str = "us-east-1"
    use_ssl: bool = True
    prefix: str = ""

    @property
    def complete(self) -> bool:
        """True when every field needed for an upload is present."""
        return all(
            value.strip()
            for value in (self.endpoint, self.access_key, self.secret_key, self.bucket)
        )


@dataclass
class Settings:
    """
    Complete SiteBackup configuration settings.

    Settings are loaded from a YAML configuration file and can be overridden
    by environment variables prefixed with SITEBACKUP_.

    Attributes:
        database_path: SQLite database holding the site content.
        upload_dir: Live uploads directory.
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        output_dir: Default directory for exported archives.
        auto_backup: Automatic backup settings.
        s3: Object storage upload settings.
    """

    database_path: str = str(DEFAULT_CONFIG_DIR / "data" / "site.db")
    upload_dir: str = str(DEFAULT_CONFIG_DIR / "uploads")
    log_level: str = "INFO"
    output_dir: str = str(DEFAULT_CONFIG_DIR / "backups")

    auto_backup: AutoBackupConfig = field(default_factory=AutoBackupConfig)
    s3: S3Config = field(default_factory=S3Config)

    @property
    def auto_backup_dir(self) -> Path:
        """Directory automatic backups are written to."""
        if self.auto_backup.target_dir:
            return Path(self.auto_backup.target_dir)
        return Path(self.upload_dir) / "auto-backups"


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def get_config_path() -> Path:
    """
    Get the configuration file path.

    Returns the path from SITEBACKUP_CONFIG environment variable if set,
    otherwise returns the default path (~/.sitebackup/config.yaml).
    """
    env_path = os.environ.get("SITEBACKUP_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> Settings:
    """
    Load configuration from YAML file.

    Reads configuration from the specified path (or default if not provided),
    applies environment variable overrides, and validates the configuration.

    Args:
        config_path: Optional path to configuration file. If not provided,
                    uses SITEBACKUP_CONFIG environment variable or default path.

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
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping")

        try:
            settings = _apply_config_data(settings, config_data)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value in config file: {e}") from e

    try:
        settings = _apply_environment_overrides(settings)
    except ValueError as e:
        raise ConfigurationError(f"Invalid environment override: {e}") from e

    _validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Save configuration to YAML file.

    Args:
        settings: Settings instance to save.
        config_path: Optional path to configuration file.

    Raises:
        ConfigurationError: If the configuration cannot be written.
    """
    if config_path is None:
        config_path = get_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_data = _settings_to_dict(settings)

    try:
        with open(config_path, "w") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def _parse_bool(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    site = data.get("site", {}) or {}

    if "database_path" in site:
        settings.database_path = str(site["database_path"])
    if "upload_dir" in site:
        settings.upload_dir = str(site["upload_dir"])
    if "log_level" in site:
        settings.log_level = str(site["log_level"]).upper()

    backup = data.get("backup", {}) or {}
    if "output_dir" in backup:
        settings.output_dir = str(backup["output_dir"])

    auto = backup.get("auto", {}) or {}
    if "enabled" in auto:
        settings.auto_backup.enabled = bool(auto["enabled"])
    if "interval_hours" in auto:
        settings.auto_backup.interval_hours = int(auto["interval_hours"])
    if "target_dir" in auto:
        settings.auto_backup.target_dir = str(auto["target_dir"] or "")
    if "timeout_minutes" in auto:
        settings.auto_backup.timeout_minutes = int(auto["timeout_minutes"])

    s3 = backup.get("s3", {}) or {}
    if s3:
        settings.s3.enabled = bool(s3.get("enabled", False))
        settings.s3.endpoint = str(s3.get("endpoint", "")).strip()
        settings.s3.access_key = str(s3.get("access_key", "")).strip()
        settings.s3.secret_key = str(s3.get("secret_key", "")).strip()
        settings.s3.bucket = str(s3.get("bucket", "")).strip()
        settings.s3.region = str(s3.get("region") or "us-east-1").strip()
        settings.s3.use_ssl = bool(s3.get("use_ssl", True))
        settings.s3.prefix = str(s3.get("prefix", "")).strip("/")

    return settings


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "SITEBACKUP_DATABASE_PATH": ("database_path", str),
        "SITEBACKUP_UPLOAD_DIR": ("upload_dir", str),
        "SITEBACKUP_LOG_LEVEL": ("log_level", lambda x: x.upper()),
        "SITEBACKUP_OUTPUT_DIR": ("output_dir", str),
        "SITEBACKUP_AUTO_BACKUP_ENABLED": ("auto_backup.enabled", _parse_bool),
        "SITEBACKUP_AUTO_BACKUP_INTERVAL_HOURS": ("auto_backup.interval_hours", int),
        "SITEBACKUP_AUTO_BACKUP_TARGET_DIR": ("auto_backup.target_dir", str),
        "SITEBACKUP_S3_ENABLED": ("s3.enabled", _parse_bool),
        "SITEBACKUP_S3_ENDPOINT": ("s3.endpoint", str.strip),
        "SITEBACKUP_S3_ACCESS_KEY": ("s3.access_key", str.strip),
        "SITEBACKUP_S3_SECRET_KEY": ("s3.secret_key", str.strip),
        "SITEBACKUP_S3_BUCKET": ("s3.bucket", str.strip),
        "SITEBACKUP_S3_REGION": ("s3.region", str.strip),
        "SITEBACKUP_S3_USE_SSL": ("s3.use_ssl", _parse_bool),
        "SITEBACKUP_S3_PREFIX": ("s3.prefix", lambda x: x.strip("/")),
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

    if not settings.database_path:
        raise ConfigurationError("database_path must not be empty")

    interval = settings.auto_backup.interval_hours
    if not MIN_INTERVAL_HOURS <= interval <= MAX_INTERVAL_HOURS:
        raise ConfigurationError(
            f"auto_backup.interval_hours must be between {MIN_INTERVAL_HOURS} "
            f"and {MAX_INTERVAL_HOURS}, got {interval}"
        )

    if settings.auto_backup.timeout_minutes < 1:
        raise ConfigurationError("auto_backup.timeout_minutes must be at least 1")

    if settings.s3.enabled and not settings.s3.complete:
        raise ConfigurationError(
            "s3 is enabled but endpoint, access_key, secret_key and bucket are not all set"
        )


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        "site": {
            "database_path": settings.database_path,
            "upload_dir": settings.upload_dir,
            "log_level": settings.log_level,
        },
        "backup": {
            "output_dir": settings.output_dir,
            "auto": {
                "enabled": settings.auto_backup.enabled,
                "interval_hours": settings.auto_backup.interval_hours,
                "target_dir": settings.auto_backup.target_dir,
                "timeout_minutes": settings.auto_backup.timeout_minutes,
            },
            "s3": {
                "enabled": settings.s3.enabled,
                "endpoint": settings.s3.endpoint,
                "access_key": settings.s3.access_key,
                "secret_key": settings.s3.secret_key,
                "bucket": settings.s3.bucket,
                "region": settings.s3.region,
                "use_ssl": settings.s3.use_ssl,
                "prefix": settings.s3.prefix,
            },
        },
    }
