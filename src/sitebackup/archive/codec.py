"""
Reading and writing backup archives.

A backup archive is a zip file with exactly one ``manifest.json`` entry at
the root and zero or more ``uploads/<relative-path>`` entries. This module
knows the container layout but nothing about site entities beyond the
Manifest model.
"""

from __future__ import annotations

import json
import logging
import posixpath
import shutil
import stat
import zipfile
from pathlib import Path
from typing import Any

from sitebackup.archive.manifest import MANIFEST_NAME, UPLOADS_PREFIX, Manifest
from sitebackup.errors import ArchiveIOError, InvalidArchiveError
from sitebackup.storage.models import to_utc

logger = logging.getLogger(__name__)

# Mode for extracted files whose entry stored no permission bits.
DEFAULT_FILE_MODE = 0o644
DEFAULT_DIR_MODE = 0o755

# Copy buffer size for streaming entries
CHUNK_SIZE = 32 * 1024


def open_archive(path: Path | str) -> zipfile.ZipFile:
    """
    Open a backup archive for reading.

    Raises:
        InvalidArchiveError: If the file is not a zip archive.
        ArchiveIOError: If the file cannot be read.
    """
    try:
        return zipfile.ZipFile(path, "r")
    except zipfile.BadZipFile as e:
        raise InvalidArchiveError(f"Not a valid backup archive: {e}", phase="stage") from e
    except OSError as e:
        raise ArchiveIOError(f"Failed to read backup archive: {e}", phase="stage") from e


def _zip_time(manifest: Manifest) -> tuple[int, int, int, int, int, int]:
    generated = to_utc(manifest.generated_at)
    # Zip timestamps cannot represent dates before 1980.
    if generated is None or generated.year < 1980:
        return (1980, 1, 1, 0, 0, 0)
    return generated.timetuple()[:6]


def write_manifest(archive: zipfile.ZipFile, manifest: Manifest) -> None:
    """
    Write the manifest as the archive's manifest entry.

    Args:
        archive: Zip file opened for writing.
        manifest: Manifest to serialize.

    Raises:
        ArchiveIOError: If the entry cannot be written.
    """
    info = zipfile.ZipInfo(MANIFEST_NAME, date_time=_zip_time(manifest))
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = (stat.S_IFREG | DEFAULT_FILE_MODE) << 16

    payload = json.dumps(manifest.to_dict(), indent=2, ensure_ascii=False) + "\n"
    try:
        archive.writestr(info, payload.encode("utf-8"))
    except (OSError, ValueError) as e:
        raise ArchiveIOError(f"Failed to write manifest entry: {e}", phase="export") from e


def write_assets(
    archive: zipfile.ZipFile,
    base_dir: Path | str,
    relative_paths: list[str],
) -> int:
    """
    Stream upload files into the archive under ``uploads/``.

    Files that vanished since enumeration, or that are no longer regular
    files, are skipped.

    Args:
        archive: Zip file opened for writing.
        base_dir: Uploads root the relative paths are resolved against.
        relative_paths: Forward-slash paths relative to base_dir.

    Returns:
        Number of files written.

    Raises:
        ArchiveIOError: If a present file cannot be read or written.
    """
    base = Path(base_dir)
    written = 0

    for rel in relative_paths:
        source = base.joinpath(*rel.split("/"))
        try:
            info = source.lstat()
        except FileNotFoundError:
            logger.debug(f"Upload vanished before archiving, skipping: {rel}")
            continue
        except OSError as e:
            raise ArchiveIOError(f"Failed to read upload file info for {rel}: {e}", phase="export") from e

        if not stat.S_ISREG(info.st_mode):
            logger.debug(f"Upload is not a regular file, skipping: {rel}")
            continue

        entry = zipfile.ZipInfo.from_file(source, arcname=UPLOADS_PREFIX + rel)
        entry.compress_type = zipfile.ZIP_DEFLATED
        try:
            with open(source, "rb") as src, archive.open(entry, "w") as dst:
                shutil.copyfileobj(src, dst, CHUNK_SIZE)
        except FileNotFoundError:
            logger.debug(f"Upload vanished while archiving, skipping: {rel}")
            continue
        except OSError as e:
            raise ArchiveIOError(f"Failed to write upload {rel} to archive: {e}", phase="export") from e
        written += 1

    return written


def read_manifest(archive: zipfile.ZipFile) -> Manifest:
    """
    Locate and decode the manifest entry.

    Raises:
        InvalidArchiveError: If the entry is missing, does not decode, or
            declares an empty schema version.
    """
    try:
        raw = archive.read(MANIFEST_NAME)
    except KeyError as e:
        raise InvalidArchiveError("Backup archive has no manifest.json", phase="stage") from e
    except (zipfile.BadZipFile, OSError, RuntimeError) as e:
        raise InvalidArchiveError(f"Failed to read manifest: {e}", phase="stage") from e

    try:
        data: Any = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidArchiveError(f"Failed to decode manifest: {e}", phase="stage") from e

    if not isinstance(data, dict):
        raise InvalidArchiveError("Manifest must be a JSON object", phase="stage")

    manifest = Manifest.from_dict(data)
    if not manifest.schema_version:
        raise InvalidArchiveError("Manifest has no schema_version", phase="stage")
    return manifest


def _safe_relative_path(name: str) -> str:
    """
    Normalize an ``uploads/`` entry name to a path relative to the namespace.

    Raises:
        InvalidArchiveError: If the path is empty, absolute, or climbs out.
    """
    raw = name[len(UPLOADS_PREFIX):].replace("\\", "/")
    if raw.startswith("/"):
        raise InvalidArchiveError(f"Backup archive contains invalid upload path: {name}", phase="extract")

    rel = posixpath.normpath(raw)
    segments = rel.split("/")
    if rel in ("", ".") or any(segment in ("", "..") for segment in segments):
        raise InvalidArchiveError(f"Backup archive contains invalid upload path: {name}", phase="extract")
    return rel


def extract_assets(archive: zipfile.ZipFile, scratch_dir: Path | str) -> int:
    """
    Materialize every ``uploads/`` entry into scratch_dir.

    Entry permission bits are preserved; entries without any fall back to
    0o644. On failure the partially populated scratch_dir is left in place
    for the caller to remove.

    Args:
        archive: Zip file opened for reading.
        scratch_dir: Existing, empty staging directory.

    Returns:
        Number of files written.

    Raises:
        InvalidArchiveError: On an entry whose path escapes the namespace or
            whose content fails to decode.
        ArchiveIOError: On filesystem write failure.
    """
    root = Path(scratch_dir)
    resolved_root = root.resolve()
    count = 0

    for entry in archive.infolist():
        if not entry.filename.startswith(UPLOADS_PREFIX):
            continue
        if entry.filename == UPLOADS_PREFIX:
            continue

        rel = _safe_relative_path(entry.filename)
        target = root.joinpath(*rel.split("/"))
        try:
            target.resolve().relative_to(resolved_root)
        except ValueError as e:
            raise InvalidArchiveError(
                f"Path traversal detected in archive entry: {entry.filename}", phase="extract"
            ) from e

        mode = (entry.external_attr >> 16) & 0o777

        if entry.is_dir():
            try:
                target.mkdir(mode=mode or DEFAULT_DIR_MODE, parents=True, exist_ok=True)
            except OSError as e:
                raise ArchiveIOError(f"Failed to create upload directory {rel}: {e}", phase="extract") from e
            continue

        try:
            target.parent.mkdir(mode=DEFAULT_DIR_MODE, parents=True, exist_ok=True)
        except OSError as e:
            raise ArchiveIOError(f"Failed to prepare upload destination {rel}: {e}", phase="extract") from e

        try:
            with archive.open(entry, "r") as src, open(target, "wb") as dst:
                shutil.copyfileobj(src, dst, CHUNK_SIZE)
        except (zipfile.BadZipFile, RuntimeError, EOFError) as e:
            raise InvalidArchiveError(f"Failed to decode upload {rel}: {e}", phase="extract") from e
        except OSError as e:
            raise ArchiveIOError(f"Failed to write upload file {rel}: {e}", phase="extract") from e

        try:
            target.chmod(mode or DEFAULT_FILE_MODE)
        except OSError as e:
            raise ArchiveIOError(f"Failed to set permissions on {rel}: {e}", phase="extract") from e
        count += 1

    return count
