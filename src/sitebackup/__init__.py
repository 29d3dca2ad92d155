"""
SiteBackup - full-site backup and restore for constructor-script sites

Packs a site's relational content and its uploads directory into a single
portable zip archive, and restores a site from such an archive.

Key Features:
    - Versioned JSON manifest holding every entity record
    - Uploads packed alongside the manifest under uploads/
    - Transactional store reload that rolls back on any failure
    - Uploads swap with rollback of the previous directory
    - Scheduled automatic backups with optional S3 upload
"""

__version__ = "0.1.0"

from sitebackup.config.settings import Settings, load_config

__all__ = [
    "__version__",
    "Settings",
    "load_config",
]
