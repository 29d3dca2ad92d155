"""
Backup archive container format.

Archives are zip files holding one ``manifest.json`` entry plus the site's
uploads under ``uploads/``. This package provides the manifest model, the
codec that reads and writes the container, and the uploads directory
enumerator.

Usage:
    from sitebackup.archive import list_assets, open_archive, read_manifest

    uploads = list_assets("uploads")
    with open_archive("backup-20240115-103000.zip") as archive:
        manifest = read_manifest(archive)
"""

from sitebackup.archive.assets import copy_directory, list_assets
from sitebackup.archive.codec import (
    extract_assets,
    open_archive,
    read_manifest,
    write_assets,
    write_manifest,
)
from sitebackup.archive.manifest import (
    APPLICATION,
    ENTITY_TYPES,
    MANIFEST_NAME,
    SCHEMA_VERSION,
    UPLOADS_PREFIX,
    BackupData,
    BackupSummary,
    Manifest,
)

__all__ = [
    # Models
    "Manifest",
    "BackupData",
    "BackupSummary",
    # Constants
    "SCHEMA_VERSION",
    "APPLICATION",
    "MANIFEST_NAME",
    "UPLOADS_PREFIX",
    "ENTITY_TYPES",
    # Codec
    "open_archive",
    "write_manifest",
    "write_assets",
    "read_manifest",
    "extract_assets",
    # Uploads directory
    "list_assets",
    "copy_directory",
]
