"""
Upload directory enumeration and copying.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from sitebackup.errors import ArchiveIOError

logger = logging.getLogger(__name__)


def list_assets(root_dir: Path | str) -> list[str]:
    """
    List every file under the uploads root.

    Args:
        root_dir: Uploads directory.

    Returns:
        Forward-slash paths relative to root_dir, sorted lexicographically.
        Empty when the directory does not exist.

    Raises:
        ArchiveIOError: If root_dir exists but is not a directory, or the
            walk fails.
    """
    root = Path(root_dir)
    if not root.exists():
        return []
    if not root.is_dir():
        raise ArchiveIOError(f"Upload path is not a directory: {root}", phase="snapshot")

    def _raise(error: OSError) -> None:
        raise error

    files: list[str] = []
    try:
        for dirpath, _dirnames, filenames in os.walk(root, onerror=_raise):
            for filename in filenames:
                full_path = Path(dirpath) / filename
                files.append(full_path.relative_to(root).as_posix())
    except OSError as e:
        raise ArchiveIOError(f"Failed to enumerate uploads: {e}", phase="snapshot") from e

    files.sort()
    return files


def copy_directory(src: Path | str, dst: Path | str) -> None:
    """
    Recursively copy src into dst, creating dst if needed.

    Used when a staged directory cannot simply be renamed into place
    (for example across filesystems).

    Raises:
        OSError: On any copy failure, or when src contains a symlink.
    """
    src = Path(src)
    dst = Path(dst)
    dst.mkdir(parents=True, exist_ok=True)
    shutil.copystat(src, dst)

    for dirpath, dirnames, filenames in os.walk(src):
        current = Path(dirpath)
        target_dir = dst / current.relative_to(src)
        for name in dirnames:
            source = current / name
            if source.is_symlink():
                raise OSError(f"Symlinks are not supported in uploads: {source}")
            (target_dir / name).mkdir(parents=True, exist_ok=True)
        for name in filenames:
            source = current / name
            if source.is_symlink():
                raise OSError(f"Symlinks are not supported in uploads: {source}")
            shutil.copy2(source, target_dir / name)

    logger.debug(f"Copied directory {src} to {dst}")
