"""
Scheduled automatic backups.

Features:
    - Schedule persisted in the site's settings table
    - Interval between 1 and 168 hours
    - Background daemon thread with clean shutdown
    - Optional upload of each archive to object storage

Usage:
    from sitebackup.scheduler import AutoBackupScheduler

    scheduler = AutoBackupScheduler(service, store, target_dir)
    scheduler.update_settings(enabled=True, interval_hours=24)
"""

from sitebackup.scheduler.auto_backup import (
    SETTING_KEY,
    AutoBackupError,
    AutoBackupScheduler,
    BackupSettings,
    InvalidBackupSettingsError,
)

__all__ = [
    # Scheduler
    "AutoBackupScheduler",
    "BackupSettings",
    "SETTING_KEY",
    # Exceptions
    "AutoBackupError",
    "InvalidBackupSettingsError",
]
