"""
Object storage upload for backup archives.

Uploads an archive to an S3-compatible bucket with a single PutObject call.
Works against AWS S3 and self-hosted services such as MinIO; requests use
path-style addressing so custom endpoints need no bucket DNS.

boto3 is an optional dependency (``pip install sitebackup[s3]``) and is only
imported when an upload is attempted.
"""

from __future__ import annotations

import logging
import posixpath
from typing import Any

from sitebackup.backup.handle import BackupArchive
from sitebackup.config.settings import S3Config
from sitebackup.errors import UploadError

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"

# Characters of an error response message kept in the raised error
ERROR_BODY_LIMIT = 4096


class S3Uploader:
    """
    Pushes backup archives to an S3-compatible bucket.

    Example:
        uploader = S3Uploader(settings.s3)
        with service.create_archive() as archive:
            object_name = uploader.upload(archive)
    """

    def __init__(self, config: S3Config, timeout: float = 60) -> None:
        """
        Initialize the uploader.

        Args:
            config: Endpoint, credentials and bucket settings.
            timeout: Connect and read timeout in seconds.

        Raises:
            UploadError: If endpoint, credentials or bucket are missing.
        """
        if not config.endpoint.strip():
            raise UploadError("s3 endpoint is required")
        if not config.access_key or not config.secret_key:
            raise UploadError("s3 credentials are required")
        if not config.bucket:
            raise UploadError("s3 bucket is required")

        self.endpoint = config.endpoint.strip()
        self.access_key = config.access_key
        self.secret_key = config.secret_key
        self.bucket = config.bucket
        self.region = config.region.strip() or DEFAULT_REGION
        self.use_ssl = config.use_ssl
        self.prefix = config.prefix.strip("/")
        self.timeout = timeout
        self._boto3: Any = None
        self._client: Any = None

    @property
    def endpoint_url(self) -> str:
        """Endpoint as a URL; a bare host gets its scheme from use_ssl."""
        if "://" in self.endpoint:
            return self.endpoint.rstrip("/")
        scheme = "https" if self.use_ssl else "http"
        return f"{scheme}://{self.endpoint}"

    def _get_boto3(self) -> Any:
        """Lazily import and return boto3."""
        if self._boto3 is None:
            try:
                import boto3

                self._boto3 = boto3
            except ImportError as e:
                raise UploadError(
                    "boto3 is not installed. Install it with: pip install sitebackup[s3]"
                ) from e
        return self._boto3

    def _get_client(self) -> Any:
        """Get or create the S3 client."""
        if self._client is not None:
            return self._client

        boto3 = self._get_boto3()
        from botocore.config import Config

        session = boto3.Session(
            aws_access_key_id=self.access_key,
            aws_secret_access_key=self.secret_key,
            region_name=self.region,
        )
        self._client = session.client(
            "s3",
            endpoint_url=self.endpoint_url,
            config=Config(
                s3={"addressing_style": "path"},
                connect_timeout=self.timeout,
                read_timeout=self.timeout,
            ),
        )
        return self._client

    def object_name(self, filename: str) -> str:
        """Object key for an archive file name."""
        if not self.prefix:
            return filename
        return posixpath.join(self.prefix, filename)

    def upload(self, archive: BackupArchive) -> str:
        """
        Upload an archive.

        The archive handle is rewound afterwards so it can be read again.

        Returns:
            Object name the archive was stored under.

        Raises:
            UploadError: If the request fails or the service rejects it.
        """
        file = archive.file
        if file is None:
            raise UploadError("Archive file is not available")

        client = self._get_client()
        from botocore.exceptions import BotoCoreError, ClientError

        object_name = self.object_name(archive.filename)
        file.seek(0)
        try:
            client.put_object(
                Bucket=self.bucket,
                Key=object_name,
                Body=file,
                ContentLength=archive.size(),
                ContentType=archive.content_type or "application/octet-stream",
            )
        except ClientError as e:
            error = e.response.get("Error", {})
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", "unknown")
            detail = f"{error.get('Code', '')} {error.get('Message', '')}".strip()
            raise UploadError(
                f"Object storage upload failed with status {status}: "
                f"{detail[:ERROR_BODY_LIMIT]}"
            ) from e
        except BotoCoreError as e:
            raise UploadError(f"Failed to upload backup to bucket {self.bucket}: {e}") from e
        finally:
            archive.reset()

        logger.info(f"Backup uploaded to bucket {self.bucket} as {object_name}")
        return object_name
