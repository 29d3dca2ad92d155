"""
Restore orchestration.

A restore runs four phases in order and stops at the first failure:

    stage    - spool the incoming archive to a temporary file, read and
               version-check its manifest
    extract  - materialize the archived uploads into a scratch directory
    reload   - replace every store table inside one transaction
    promote  - swap the scratch directory in for the live uploads directory

Nothing outside the temporary locations changes before reload commits.
A promote failure after that point puts the previous uploads back where
possible and is reported as a PromotionError, so callers can tell an
atomic failure apart from a half-applied one.
"""

from __future__ import annotations

import logging
import os
import shutil
import sqlite3
import tempfile
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import BinaryIO

from sitebackup.archive.assets import copy_directory
from sitebackup.archive.codec import (
    CHUNK_SIZE,
    DEFAULT_DIR_MODE,
    extract_assets,
    open_archive,
    read_manifest,
)
from sitebackup.archive.manifest import SCHEMA_VERSION, BackupData, BackupSummary
from sitebackup.backup.context import OperationContext
from sitebackup.errors import (
    ArchiveIOError,
    InvalidArchiveError,
    PromotionError,
    ReloadError,
    UnsupportedVersionError,
)
from sitebackup.storage.models import VALID_ROLES, User
from sitebackup.storage.site_store import SiteStore, StorageError

logger = logging.getLogger(__name__)

SPOOL_PREFIX = "constructor-restore-"
SCRATCH_PREFIX = "constructor-uploads-"

# (manifest key, transaction writer, label). Parents are inserted before the
# rows that reference them.
RELOAD_ORDER: tuple[tuple[str, str, str], ...] = (
    ("users", "insert_users", "users"),
    ("categories", "insert_categories", "categories"),
    ("tags", "insert_tags", "tags"),
    ("pages", "insert_pages", "pages"),
    ("posts", "insert_posts", "posts"),
    ("comments", "insert_comments", "comments"),
    ("menu_items", "insert_menu_items", "menu items"),
    ("social_links", "insert_social_links", "social links"),
    ("settings", "insert_settings", "settings"),
    ("post_tags", "insert_post_tags", "post tags"),
)


class RestorePhase(str, Enum):
    """Restore phases, in execution order."""

    STAGE = "stage"
    EXTRACT = "extract"
    RELOAD = "reload"
    PROMOTE = "promote"


@dataclass
class CleanupWarning:
    """A temporary path that could not be removed after a restore."""

    path: Path
    error: str
    phase: str = RestorePhase.PROMOTE.value

    def __str__(self) -> str:
        return f"{self.path}: {self.error}"


@dataclass
class RestoreResult:
    """
    Outcome of a successful restore.

    Attributes:
        summary: What was restored.
        cleanup_warnings: Leftover paths that could not be removed. These do
            not affect the restored state.
    """

    summary: BackupSummary
    cleanup_warnings: list[CleanupWarning] = field(default_factory=list)


def normalize_users(users: list[User]) -> list[User]:
    """
    Return copies of users with their role trimmed and lowercased.

    Raises:
        InvalidArchiveError: If any role is not a known role.
    """
    normalized: list[User] = []
    for user in users:
        if not isinstance(user.role, str):
            raise InvalidArchiveError(
                f"Invalid user role in backup: {user.role!r}", phase=RestorePhase.STAGE.value
            )
        role = user.role.strip().lower()
        if role not in VALID_ROLES:
            raise InvalidArchiveError(
                f"Invalid user role in backup: {user.role!r}", phase=RestorePhase.STAGE.value
            )
        normalized.append(
            User(
                id=user.id,
                username=user.username,
                email=user.email,
                password=user.password,
                role=role,
                status=user.status,
                created_at=user.created_at,
                updated_at=user.updated_at,
                deleted_at=user.deleted_at,
            )
        )
    return normalized


class RestoreOrchestrator:
    """
    Runs one restore of a backup archive into a store and uploads directory.

    An orchestrator is single-use; the service creates one per restore.

    Example:
        orchestrator = RestoreOrchestrator(store, Path("uploads"))
        with open("backup-20240115-103000.zip", "rb") as f:
            result = orchestrator.run(f)
        print(result.summary.posts)
    """

    def __init__(
        self,
        store: SiteStore,
        upload_dir: Path | str | None,
        context: OperationContext | None = None,
    ) -> None:
        self.store = store
        self.upload_dir = Path(upload_dir) if upload_dir else None
        self.context = context or OperationContext()
        self.phase: RestorePhase | None = None
        self._warnings: list[CleanupWarning] = []

    def _enter(self, phase: RestorePhase) -> None:
        self.phase = phase
        logger.debug(f"Restore phase: {phase.value}")
        self.context.check(phase.value)

    def run(self, stream: BinaryIO, expected_size: int | None = None) -> RestoreResult:
        """
        Restore the archive read from stream.

        Args:
            stream: Readable binary stream positioned at the archive start.
            expected_size: Declared archive size; a mismatch is only logged.

        Returns:
            RestoreResult with the summary and any cleanup warnings.

        Raises:
            InvalidArchiveError: Archive, manifest, or asset path is unusable.
            UnsupportedVersionError: Manifest schema version is not supported.
            ArchiveIOError: Spooling or extraction failed on the filesystem.
            ReloadError: Store reload failed and was rolled back.
            PromotionError: Uploads could not be swapped in after reload.
            OperationCancelledError: Cancelled before promotion began.
        """
        spool_path: Path | None = None
        scratch_dir: Path | None = None

        try:
            self._enter(RestorePhase.STAGE)
            spool_path = self._create_spool()
            self._spool(stream, spool_path, expected_size)

            with open_archive(spool_path) as archive:
                manifest = read_manifest(archive)
                if manifest.schema_version != SCHEMA_VERSION:
                    raise UnsupportedVersionError(manifest.schema_version, SCHEMA_VERSION)
                users = normalize_users(manifest.data.users)

                self._enter(RestorePhase.EXTRACT)
                scratch_dir = self._create_scratch_dir()
                uploads = extract_assets(archive, scratch_dir)

            self._enter(RestorePhase.RELOAD)
            self._reload(manifest.data, users)

            # Past this point the store is committed; no more cancellation.
            self.phase = RestorePhase.PROMOTE
            if self.upload_dir is not None:
                if self._promote(scratch_dir):
                    scratch_dir = None

            summary = BackupSummary.from_manifest(
                manifest, uploads=uploads, restored_at=datetime.now(UTC)
            )
        finally:
            if scratch_dir is not None:
                self._remove(scratch_dir, RestorePhase.EXTRACT)
            if spool_path is not None:
                self._remove(spool_path, RestorePhase.STAGE)

        logger.info(
            f"Restored backup generated at {summary.generated_at.isoformat()}: "
            f"{summary.users} users, {summary.posts} posts, {summary.pages} pages, "
            f"{summary.uploads} uploads"
        )
        return RestoreResult(summary=summary, cleanup_warnings=list(self._warnings))

    # Stage

    def _create_spool(self) -> Path:
        try:
            fd, name = tempfile.mkstemp(prefix=SPOOL_PREFIX, suffix=".zip")
        except OSError as e:
            raise ArchiveIOError(
                f"Failed to prepare temporary archive: {e}", phase=RestorePhase.STAGE.value
            ) from e
        os.close(fd)
        return Path(name)

    def _spool(self, stream: BinaryIO, spool_path: Path, expected_size: int | None) -> int:
        written = 0
        try:
            with open(spool_path, "wb") as spool:
                while True:
                    self.context.check(RestorePhase.STAGE.value)
                    chunk = stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    spool.write(chunk)
                    written += len(chunk)
        except OSError as e:
            raise ArchiveIOError(
                f"Failed to read backup archive: {e}", phase=RestorePhase.STAGE.value
            ) from e

        if expected_size is not None and expected_size > 0 and written != expected_size:
            logger.warning(
                f"Backup archive size mismatch: expected={expected_size} actual={written}"
            )
        return written

    # Extract

    def _create_scratch_dir(self) -> Path:
        try:
            scratch = Path(tempfile.mkdtemp(prefix=SCRATCH_PREFIX))
            # mkdtemp creates 0o700; the directory may become the live one.
            scratch.chmod(DEFAULT_DIR_MODE)
        except OSError as e:
            raise ArchiveIOError(
                f"Failed to prepare temporary uploads directory: {e}",
                phase=RestorePhase.EXTRACT.value,
            ) from e
        return scratch

    # Reload

    def _reload(self, data: BackupData, users: list[User]) -> None:
        try:
            with self.store.transaction() as tx:
                tx.truncate_all()
                for key, writer, label in RELOAD_ORDER:
                    self.context.check(RestorePhase.RELOAD.value)
                    records = users if key == "users" else getattr(data, key)
                    try:
                        getattr(tx, writer)(records)
                    except sqlite3.Error as e:
                        raise StorageError(f"Failed to restore {label}: {e}") from e
        except StorageError as e:
            raise ReloadError(str(e)) from e

    # Promote

    def _promote(self, staged: Path) -> bool:
        """
        Swap the staged uploads in for the live directory.

        Returns:
            True when the staged directory itself became the live one.
        """
        base = self.upload_dir
        assert base is not None

        backup_dir: Path | None = None
        if base.exists() or base.is_symlink():
            stamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
            backup_dir = base.with_name(f"{base.name}.bak-{stamp}")
            try:
                os.rename(base, backup_dir)
            except OSError as e:
                raise PromotionError(f"Failed to set aside existing uploads: {e}") from e

        consumed = False
        try:
            if not any(staged.iterdir()):
                base.mkdir(mode=DEFAULT_DIR_MODE, parents=True, exist_ok=True)
            else:
                base.parent.mkdir(parents=True, exist_ok=True)
                try:
                    os.rename(staged, base)
                    consumed = True
                except OSError as rename_error:
                    logger.debug(f"Rename of staged uploads failed, copying instead: {rename_error}")
                    copy_directory(staged, base)
        except OSError as e:
            restored = self._rollback_uploads(backup_dir)
            raise PromotionError(
                f"Failed to apply uploads: {e}", restored_previous=restored
            ) from e

        if backup_dir is not None:
            self._remove(backup_dir, RestorePhase.PROMOTE)
        return consumed

    def _rollback_uploads(self, backup_dir: Path | None) -> bool:
        base = self.upload_dir
        assert base is not None

        if base.exists():
            try:
                shutil.rmtree(base)
            except OSError as e:
                logger.error(f"Failed to remove partially applied uploads at {base}: {e}")
                return False

        if backup_dir is None:
            return True

        try:
            os.rename(backup_dir, base)
        except OSError as e:
            logger.error(f"Failed to restore uploads from {backup_dir}: {e}")
            return False
        logger.warning(f"Rolled back uploads directory from {backup_dir}")
        return True

    # Cleanup

    def _remove(self, path: Path, phase: RestorePhase) -> None:
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove temporary path {path}: {e}")
            self._warnings.append(CleanupWarning(path=path, error=str(e), phase=phase.value))
