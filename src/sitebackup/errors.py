"""
Error taxonomy for backup and restore operations.

Every failure surfaced by the engine is a BackupError. The subclass tells
the caller what went wrong, and ``phase`` tells it where:

    InvalidArchiveError      - not a usable archive (bad zip, missing or
                               undecodable manifest, escaping asset path)
    UnsupportedVersionError  - valid manifest, wrong schema version
    ArchiveIOError           - filesystem or stream failure
    SnapshotError            - store read failed while exporting
    ReloadError              - store write failed; transaction rolled back
    PromotionError           - asset swap failed after the store committed
    OperationCancelledError  - caller cancelled or the deadline passed
    RestoreInProgressError   - another restore holds the gate
"""

from __future__ import annotations


class BackupError(Exception):
    """Base exception for backup and restore errors."""

    def __init__(self, message: str, phase: str | None = None) -> None:
        super().__init__(message)
        self.phase = phase


class InvalidArchiveError(BackupError):
    """Raised when an archive or its manifest cannot be used."""

    pass


class UnsupportedVersionError(BackupError):
    """Raised when the manifest schema version does not match the engine."""

    def __init__(self, found: str, expected: str) -> None:
        super().__init__(
            f"Unsupported backup schema version {found!r} (expected {expected!r})",
            phase="stage",
        )
        self.found = found
        self.expected = expected


class ArchiveIOError(BackupError):
    """Raised when reading or writing files fails."""

    pass


class StoreFailure(BackupError):
    """Base class for relational store failures."""

    pass


class SnapshotError(StoreFailure):
    """Raised when the store cannot be read while building a manifest."""

    def __init__(self, message: str) -> None:
        super().__init__(message, phase="snapshot")


class ReloadError(StoreFailure):
    """
    Raised when reloading the store fails.

    The reload transaction has been rolled back; the store holds the data it
    had before the restore started.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, phase="reload")


class PromotionError(BackupError):
    """
    Raised when the staged uploads cannot replace the live directory.

    The store reload has already committed at this point, so the store and
    the uploads directory may disagree until an operator intervenes.
    """

    def __init__(self, message: str, restored_previous: bool = True) -> None:
        super().__init__(message, phase="promote")
        self.store_committed = True
        self.restored_previous = restored_previous


class OperationCancelledError(BackupError):
    """Raised when an operation is cancelled or runs past its deadline."""

    pass


class RestoreInProgressError(BackupError):
    """Raised when a restore is attempted while another one is running."""

    pass


class UploadError(BackupError):
    """Raised when pushing an archive to object storage fails."""

    def __init__(self, message: str) -> None:
        super().__init__(message, phase="upload")
