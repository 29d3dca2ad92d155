"""
Remote storage targets for backup archives.

Usage:
    from sitebackup.remote import S3Uploader

    uploader = S3Uploader(settings.s3)
    object_name = uploader.upload(archive)
"""

from sitebackup.remote.s3 import S3Uploader

__all__ = [
    "S3Uploader",
]
