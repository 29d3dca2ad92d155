"""
Backup service.

Entry point used by the CLI and the auto-backup scheduler. Creates export
archives, restores from them, and reads archive summaries without touching
the live site.
"""

from __future__ import annotations

import logging
import os
import tempfile
import zipfile
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from sitebackup.archive.codec import open_archive, read_manifest, write_assets, write_manifest
from sitebackup.archive.manifest import APPLICATION, BackupSummary
from sitebackup.backup.context import OperationContext
from sitebackup.backup.gate import RestoreGate
from sitebackup.backup.handle import BackupArchive
from sitebackup.backup.restore import RestoreOrchestrator, RestoreResult
from sitebackup.backup.snapshot import build_manifest
from sitebackup.errors import ArchiveIOError
from sitebackup.storage.site_store import SiteStore

if TYPE_CHECKING:
    from sitebackup.remote.s3 import S3Uploader

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = "constructor-backup-"


class BackupService:
    """
    Creates and restores full-site backup archives.

    Example:
        service = BackupService(SiteStore("site.db"), Path("uploads"))

        with service.create_archive() as archive:
            with open(archive.filename, "wb") as f:
                archive.copy_to(f)

        with open("backup-20240115-103000.zip", "rb") as f:
            result = service.restore_archive(f)

    Attributes:
        store: Site data store.
        upload_dir: Live uploads directory, or None when uploads are not
            managed.
        application: Tag written into every manifest.
        gate: Restore gate shared by every restore through this service.
        uploader: Optional object-storage uploader for write_archive().
    """

    def __init__(
        self,
        store: SiteStore,
        upload_dir: Path | str | None,
        application: str = APPLICATION,
        gate: RestoreGate | None = None,
        uploader: S3Uploader | None = None,
    ) -> None:
        self.store = store
        self.upload_dir = Path(upload_dir) if upload_dir else None
        self.application = application
        self.gate = gate or RestoreGate()
        self.uploader = uploader

    def create_archive(self, context: OperationContext | None = None) -> BackupArchive:
        """
        Snapshot the site into a new temporary archive.

        The caller must close the returned handle, which deletes the file.

        Raises:
            SnapshotError: If the store cannot be read.
            ArchiveIOError: If the archive cannot be written.
            OperationCancelledError: If cancelled during the snapshot.
        """
        manifest = build_manifest(
            self.store, self.upload_dir, context=context, application=self.application
        )

        try:
            fd, name = tempfile.mkstemp(prefix=ARCHIVE_PREFIX, suffix=".zip")
        except OSError as e:
            raise ArchiveIOError(f"Failed to create temporary archive: {e}", phase="export") from e

        path = Path(name)
        file = os.fdopen(fd, "w+b")
        try:
            with zipfile.ZipFile(file, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                write_manifest(archive, manifest)
                if self.upload_dir is not None and manifest.uploads:
                    write_assets(archive, self.upload_dir, manifest.uploads)
            file.flush()
            file.seek(0)
        except OSError as e:
            _discard(file, path)
            raise ArchiveIOError(f"Failed to finalize archive: {e}", phase="export") from e
        except BaseException:
            _discard(file, path)
            raise

        summary = BackupSummary.from_manifest(manifest)
        logger.info(
            f"Created backup {manifest.archive_filename}: "
            f"{sum(manifest.data.counts().values())} records, {summary.uploads} uploads"
        )
        return BackupArchive(file, path, manifest.archive_filename, summary)

    def restore_archive(
        self,
        stream: BinaryIO,
        expected_size: int | None = None,
        context: OperationContext | None = None,
    ) -> RestoreResult:
        """
        Replace the site's data and uploads with an archive's contents.

        Only one restore runs at a time per gate; a concurrent call is refused.

        Args:
            stream: Readable binary stream of the archive.
            expected_size: Declared size, used only for a mismatch warning.
            context: Optional cancellation context.

        Raises:
            RestoreInProgressError: If another restore holds the gate.
            BackupError: Any restore failure; see RestoreOrchestrator.run().
        """
        with self.gate.hold():
            orchestrator = RestoreOrchestrator(self.store, self.upload_dir, context)
            result = orchestrator.run(stream, expected_size)

        for warning in result.cleanup_warnings:
            logger.warning(f"Restore left a temporary path behind: {warning}")
        return result

    def inspect_archive(self, path: Path | str) -> BackupSummary:
        """
        Summarize an archive without restoring it.

        Raises:
            InvalidArchiveError: If the archive or its manifest is unusable.
            ArchiveIOError: If the file cannot be read.
        """
        with open_archive(path) as archive:
            manifest = read_manifest(archive)
        return BackupSummary.from_manifest(manifest)

    def write_archive(
        self,
        directory: Path | str,
        context: OperationContext | None = None,
        upload: bool = False,
    ) -> Path:
        """
        Create an archive and save it into directory.

        Args:
            directory: Destination directory, created when missing.
            context: Optional cancellation context.
            upload: Also push the archive through the configured uploader.

        Returns:
            Path of the saved archive.

        Raises:
            ArchiveIOError: If the archive cannot be saved.
            UploadError: If the upload fails. The local copy is kept.
        """
        target_dir = Path(directory)
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArchiveIOError(f"Failed to prepare backup directory: {e}", phase="export") from e

        with self.create_archive(context) as archive:
            target = target_dir / archive.filename
            try:
                with open(target, "wb") as out:
                    archive.copy_to(out)
                    out.flush()
                    try:
                        os.fsync(out.fileno())
                    except OSError as e:
                        logger.warning(f"Failed to sync backup archive {target}: {e}")
            except OSError as e:
                target.unlink(missing_ok=True)
                raise ArchiveIOError(f"Failed to write backup archive {target}: {e}", phase="export") from e

            logger.info(f"Saved backup archive to {target}")

            if upload and self.uploader is not None:
                location = self.uploader.upload(archive)
                logger.info(f"Uploaded backup archive to {location}")

        return target


def _discard(file: BinaryIO, path: Path) -> None:
    file.close()
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to remove temporary archive {path}: {e}")
