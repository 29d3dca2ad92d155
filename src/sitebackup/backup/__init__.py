"""
Full-site backup and restore.

This module creates portable zip archives of a site's data and uploads and
restores a site from them. Restores are all-or-nothing for the store; the
uploads directory is swapped in only after the store reload commits.

Usage:
    from sitebackup.backup import BackupService

    service = BackupService(store, upload_dir)

    # Create a backup
    path = service.write_archive("backups")

    # Restore from backup
    with open(path, "rb") as f:
        result = service.restore_archive(f)

    # Inspect without restoring
    summary = service.inspect_archive(path)
"""

from sitebackup.backup.context import OperationContext
from sitebackup.backup.gate import RestoreGate
from sitebackup.backup.handle import BackupArchive
from sitebackup.backup.restore import (
    CleanupWarning,
    RestoreOrchestrator,
    RestorePhase,
    RestoreResult,
)
from sitebackup.backup.service import BackupService
from sitebackup.backup.snapshot import build_manifest

__all__ = [
    "BackupService",
    "BackupArchive",
    "build_manifest",
    # Restore
    "RestoreOrchestrator",
    "RestorePhase",
    "RestoreResult",
    "CleanupWarning",
    # Coordination
    "OperationContext",
    "RestoreGate",
]
