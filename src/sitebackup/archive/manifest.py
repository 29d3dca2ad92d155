"""
Backup manifest and summary models.

The manifest is the canonical, fully denormalized snapshot written as
``manifest.json`` at the root of every backup archive. It carries the schema
version, generation timestamp, producing application, the list of upload
paths packed alongside it, and one ordered record list per entity type.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sitebackup.errors import InvalidArchiveError
from sitebackup.storage.models import (
    Category,
    Comment,
    MenuItem,
    Page,
    Post,
    PostTag,
    Setting,
    SocialLink,
    Tag,
    User,
    format_time,
    parse_time,
    to_utc,
)

# Manifest format revision; restores refuse any other value.
SCHEMA_VERSION = "1"

# Tag identifying the producing system.
APPLICATION = "constructor-script"

MANIFEST_NAME = "manifest.json"
UPLOADS_PREFIX = "uploads/"

# (manifest key, model) in snapshot order.
ENTITY_TYPES: tuple[tuple[str, type], ...] = (
    ("users", User),
    ("categories", Category),
    ("tags", Tag),
    ("posts", Post),
    ("pages", Page),
    ("comments", Comment),
    ("settings", Setting),
    ("menu_items", MenuItem),
    ("social_links", SocialLink),
    ("post_tags", PostTag),
)


@dataclass
class BackupData:
    """One ordered record list per entity type."""

    users: list[User] = field(default_factory=list)
    categories: list[Category] = field(default_factory=list)
    tags: list[Tag] = field(default_factory=list)
    posts: list[Post] = field(default_factory=list)
    pages: list[Page] = field(default_factory=list)
    comments: list[Comment] = field(default_factory=list)
    settings: list[Setting] = field(default_factory=list)
    menu_items: list[MenuItem] = field(default_factory=list)
    social_links: list[SocialLink] = field(default_factory=list)
    post_tags: list[PostTag] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        """Get the number of records per entity type."""
        return {key: len(getattr(self, key)) for key, _ in ENTITY_TYPES}

    def to_dict(self) -> dict[str, Any]:
        """Convert to manifest dictionary."""
        return {
            key: [record.to_dict() for record in getattr(self, key)]
            for key, _ in ENTITY_TYPES
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupData:
        """
        Create from manifest dictionary.

        Missing lists are treated as empty. A list that is not a list, or a
        record that lacks its key fields, makes the archive invalid.
        """
        kwargs: dict[str, list[Any]] = {}
        for key, model in ENTITY_TYPES:
            items = data.get(key) or []
            if not isinstance(items, list):
                raise InvalidArchiveError(f"Manifest field data.{key} must be a list", phase="stage")
            try:
                kwargs[key] = [model.from_dict(item) for item in items]
            except (KeyError, TypeError, ValueError) as e:
                raise InvalidArchiveError(
                    f"Manifest contains a malformed {key} record: {e}", phase="stage"
                ) from e
        return cls(**kwargs)


@dataclass
class Manifest:
    """
    Versioned snapshot of all site data plus the uploads it references.

    Attributes:
        schema_version: Format revision, must equal SCHEMA_VERSION to restore.
        generated_at: When the snapshot was taken (UTC).
        application: Tag of the producing system.
        uploads: Relative upload paths packed under ``uploads/``.
        data: Entity record lists.
    """

    schema_version: str
    generated_at: datetime
    application: str
    uploads: list[str] = field(default_factory=list)
    data: BackupData = field(default_factory=BackupData)

    @property
    def archive_filename(self) -> str:
        """File name for an archive holding this manifest."""
        stamp = to_utc(self.generated_at).strftime("%Y%m%d-%H%M%S")
        return f"backup-{stamp}.zip"

    def to_dict(self) -> dict[str, Any]:
        """Convert manifest to dictionary."""
        return {
            "schema_version": self.schema_version,
            "generated_at": format_time(self.generated_at),
            "application": self.application,
            "uploads": list(self.uploads),
            "data": self.data.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Manifest:
        """Create manifest from dictionary."""
        uploads = data.get("uploads") or []
        if not isinstance(uploads, list):
            raise InvalidArchiveError("Manifest field uploads must be a list", phase="stage")
        payload = data.get("data") or {}
        if not isinstance(payload, dict):
            raise InvalidArchiveError("Manifest field data must be an object", phase="stage")
        try:
            generated_at = parse_time(data.get("generated_at"))
        except (TypeError, ValueError) as e:
            raise InvalidArchiveError(f"Manifest generated_at is invalid: {e}", phase="stage") from e
        return cls(
            schema_version=str(data.get("schema_version") or ""),
            generated_at=generated_at or datetime.fromtimestamp(0, UTC),
            application=str(data.get("application") or ""),
            uploads=[str(path) for path in uploads],
            data=BackupData.from_dict(payload),
        )


@dataclass(frozen=True)
class BackupSummary:
    """
    Read-only projection of a manifest returned to callers.

    Built right after an archive is created or a restore succeeds; it has no
    lifecycle of its own.
    """

    schema_version: str
    generated_at: datetime
    application: str
    users: int = 0
    categories: int = 0
    tags: int = 0
    posts: int = 0
    pages: int = 0
    comments: int = 0
    settings: int = 0
    menu_items: int = 0
    social_links: int = 0
    post_tags: int = 0
    uploads: int = 0
    restored_at: datetime | None = None

    @classmethod
    def from_manifest(
        cls,
        manifest: Manifest,
        uploads: int | None = None,
        restored_at: datetime | None = None,
    ) -> BackupSummary:
        """
        Project a manifest into a summary.

        Args:
            manifest: Source manifest.
            uploads: Upload count override (files actually materialized on
                restore). Defaults to the manifest's upload list length.
            restored_at: Completion time of a restore, if any.
        """
        return cls(
            schema_version=manifest.schema_version,
            generated_at=manifest.generated_at,
            application=manifest.application,
            uploads=len(manifest.uploads) if uploads is None else uploads,
            restored_at=restored_at,
            **manifest.data.counts(),
        )

    def counts(self) -> dict[str, int]:
        """Get record counts keyed like the manifest, plus uploads."""
        result = {key: getattr(self, key) for key, _ in ENTITY_TYPES}
        result["uploads"] = self.uploads
        return result

    def to_dict(self) -> dict[str, Any]:
        """Convert summary to dictionary."""
        result: dict[str, Any] = {
            "schema_version": self.schema_version,
            "generated_at": format_time(self.generated_at),
            "application": self.application,
        }
        if self.restored_at is not None:
            result["restored_at"] = format_time(self.restored_at)
        result.update(self.counts())
        return result
