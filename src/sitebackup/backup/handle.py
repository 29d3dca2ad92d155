"""
Handle around the temporary file backing an exported archive.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from types import TracebackType
from typing import BinaryIO

from sitebackup.archive.manifest import BackupSummary
from sitebackup.errors import ArchiveIOError

logger = logging.getLogger(__name__)


class BackupArchive:
    """
    A freshly created export archive.

    The caller owns the backing temporary file and must call close() once
    the archive has been consumed; close() deletes the file. Using the
    handle as a context manager does this automatically.

    Attributes:
        filename: Suggested download name (backup-YYYYMMDD-HHMMSS.zip).
        summary: Counts of what the archive contains.
        content_type: MIME type of the archive.
    """

    content_type = "application/zip"

    def __init__(self, file: BinaryIO, path: Path, filename: str, summary: BackupSummary) -> None:
        self._file: BinaryIO | None = file
        self.path = path
        self.filename = filename
        self.summary = summary

    def __enter__(self) -> BackupArchive:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def file(self) -> BinaryIO | None:
        """Open file object, or None once closed."""
        return self._file

    @property
    def closed(self) -> bool:
        return self._file is None

    def _require_file(self) -> BinaryIO:
        if self._file is None:
            raise ArchiveIOError("Archive is not available", phase="export")
        return self._file

    def size(self) -> int:
        """Size of the archive in bytes."""
        return os.fstat(self._require_file().fileno()).st_size

    def reset(self) -> None:
        """Rewind to the start of the archive."""
        if self._file is not None:
            self._file.seek(0)

    def copy_to(self, destination: BinaryIO) -> int:
        """
        Stream the whole archive into destination.

        The handle is rewound before and after copying.

        Returns:
            Number of bytes copied.
        """
        source = self._require_file()
        source.seek(0)
        shutil.copyfileobj(source, destination)
        copied = source.tell()
        source.seek(0)
        return copied

    def close(self) -> None:
        """
        Close and delete the backing file.

        Safe to call more than once. A removal failure is raised when closing
        succeeded, otherwise it is logged and the close error is raised.
        """
        if self._file is None:
            return

        file = self._file
        self._file = None
        close_error: OSError | None = None
        try:
            file.close()
        except OSError as e:
            close_error = e

        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            if close_error is None:
                raise
            logger.warning(f"Failed to remove temporary backup archive {self.path}: {e}")

        if close_error is not None:
            raise close_error
