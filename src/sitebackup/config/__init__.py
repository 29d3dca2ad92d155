"""
Configuration management for SiteBackup.

This module handles loading, validating, and saving configuration settings.
"""

from sitebackup.config.settings import (
    AutoBackupConfig,
    ConfigurationError,
    S3Config,
    Settings,
    load_config,
    save_config,
)

__all__ = [
    # Settings
    "Settings",
    "AutoBackupConfig",
    "S3Config",
    "load_config",
    "save_config",
    "ConfigurationError",
]
