"""
Data models for the site store.

This module defines the dataclasses used to represent site content rows
(users, taxonomy, posts, pages, comments, navigation and settings) both in
the SQLite store and in backup manifests.

Schema Design Decisions:
    - Integer surrogate keys are preserved verbatim so restores keep identity
    - Timestamps are stored as ISO format strings in UTC
    - Soft deletion is an optional ``deleted_at`` timestamp, never a flag
    - Section payloads are opaque JSON stored as TEXT
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

VALID_ROLES = ("admin", "editor", "author", "user")


def to_utc(value: datetime | None) -> datetime | None:
    """Normalize a datetime to an aware UTC value (naive values are UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_time(value: datetime | None) -> str | None:
    """Serialize a datetime as an ISO-8601 UTC string."""
    value = to_utc(value)
    return value.isoformat() if value is not None else None


def parse_time(value: str | datetime | None) -> datetime | None:
    """Parse an ISO-8601 string (or pass through a datetime) as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    return to_utc(datetime.fromisoformat(value))


def _require_time(value: str | datetime | None) -> datetime:
    parsed = parse_time(value)
    if parsed is None:
        return datetime.fromtimestamp(0, UTC)
    return parsed


def _text(data: dict[str, Any], key: str, default: str = "") -> str:
    """Read an optional string field; null means the default."""
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise TypeError(f"field {key} must be a string, got {type(value).__name__}")
    return value


def _require_text(data: dict[str, Any], key: str) -> str:
    """Read a required, non-empty string field."""
    value = _text(data, key)
    if not value:
        raise ValueError(f"field {key} must be a non-empty string")
    return value


@dataclass
class User:
    """
    Registered site account.

    Database Table: users
        - id INTEGER PRIMARY KEY
        - username TEXT NOT NULL UNIQUE
        - email TEXT NOT NULL UNIQUE
        - password TEXT NOT NULL (hash, never interpreted here)
        - role TEXT NOT NULL
        - status TEXT NOT NULL
    """

    id: int
    username: str
    email: str
    password: str = ""
    role: str = "user"
    status: str = "active"
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    deleted_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to manifest dictionary."""
        return {
            "id": self.id,
            "created_at": format_time(self.created_at),
            "updated_at": format_time(self.updated_at),
            "deleted_at": format_time(self.deleted_at),
            "username": self.username,
            "email": self.email,
            "password": self.password,
            "role": self.role,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> User:
        """Create from manifest dictionary."""
        return cls(
            id=int(data["id"]),
            created_at=_require_time(data.get("created_at")),
            updated_at=_require_time(data.get("updated_at")),
            deleted_at=parse_time(data.get("deleted_at")),
            username=_text(data, "username", ""),
            email=_text(data, "email", ""),
            password=_text(data, "password", ""),
            role=_text(data, "role", "user"),
            status=_text(data, "status", ""),
        )


@dataclass
class Category:
    """Post category."""

    id: int
    name: str
    slug: str
    description: str = ""
    order: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    deleted_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to manifest dictionary."""
        return {
            "id": self.id,
            "created_at": format_time(self.created_at),
            "updated_at": format_time(self.updated_at),
            "deleted_at": format_time(self.deleted_at),
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "order": self.order,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Category:
        """Create from manifest dictionary."""
        return cls(
            id=int(data["id"]),
            created_at=_require_time(data.get("created_at")),
            updated_at=_require_time(data.get("updated_at")),
            deleted_at=parse_time(data.get("deleted_at")),
            name=_text(data, "name", ""),
            slug=_text(data, "slug", ""),
            description=_text(data, "description", ""),
            order=int(data.get("order", 0)),
        )


@dataclass
class Tag:
    """
    Post tag.

    ``unused_since`` is set by the tag sweeper when the last post using the
    tag goes away; it is carried through backups unchanged.
    """

    id: int
    name: str
    slug: str
    unused_since: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    deleted_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to manifest dictionary."""
        return {
            "id": self.id,
            "created_at": format_time(self.created_at),
            "updated_at": format_time(self.updated_at),
            "deleted_at": format_time(self.deleted_at),
            "name": self.name,
            "slug": self.slug,
            "unused_since": format_time(self.unused_since),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Tag:
        """Create from manifest dictionary."""
        return cls(
            id=int(data["id"]),
            created_at=_require_time(data.get("created_at")),
            updated_at=_require_time(data.get("updated_at")),
            deleted_at=parse_time(data.get("deleted_at")),
            name=_text(data, "name", ""),
            slug=_text(data, "slug", ""),
            unused_since=parse_time(data.get("unused_since")),
        )


@dataclass
class Post:
    """
    Blog post.

    ``sections`` is the page-builder payload; it is treated as an opaque
    JSON document and round-tripped without inspection.
    """

    id: int
    title: str
    slug: str
    author_id: int
    category_id: int
    description: str = ""
    content: str = ""
    excerpt: str = ""
    featured_img: str = ""
    published: bool = False
    publish_at: datetime | None = None
    published_at: datetime | None = None
    views: int = 0
    sections: list[Any] = field(default_factory=list)
    template: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    deleted_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to manifest dictionary."""
        return {
            "id": self.id,
            "created_at": format_time(self.created_at),
            "updated_at": format_time(self.updated_at),
            "deleted_at": format_time(self.deleted_at),
            "title": self.title,
            "slug": self.slug,
            "description": self.description,
            "content": self.content,
            "excerpt": self.excerpt,
            "featured_img": self.featured_img,
            "published": self.published,
            "publish_at": format_time(self.publish_at),
            "published_at": format_time(self.published_at),
            "views": self.views,
            "sections": self.sections,
            "template": self.template,
            "author_id": self.author_id,
            "category_id": self.category_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Post:
        """Create from manifest dictionary."""
        return cls(
            id=int(data["id"]),
            created_at=_require_time(data.get("created_at")),
            updated_at=_require_time(data.get("updated_at")),
            deleted_at=parse_time(data.get("deleted_at")),
            title=_text(data, "title", ""),
            slug=_text(data, "slug", ""),
            description=_text(data, "description", ""),
            content=_text(data, "content", ""),
            excerpt=_text(data, "excerpt", ""),
            featured_img=_text(data, "featured_img", ""),
            published=bool(data.get("published", False)),
            publish_at=parse_time(data.get("publish_at")),
            published_at=parse_time(data.get("published_at")),
            views=int(data.get("views", 0)),
            sections=data.get("sections") or [],
            template=_text(data, "template", ""),
            author_id=int(data.get("author_id", 0)),
            category_id=int(data.get("category_id", 0)),
        )


@dataclass
class Page:
    """Static page built from sections."""

    id: int
    title: str
    slug: str
    path: str = ""
    description: str = ""
    featured_img: str = ""
    published: bool = False
    publish_at: datetime | None = None
    published_at: datetime | None = None
    content: str = ""
    sections: list[Any] = field(default_factory=list)
    template: str = ""
    hide_header: bool = False
    order: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    deleted_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to manifest dictionary."""
        return {
            "id": self.id,
            "created_at": format_time(self.created_at),
            "updated_at": format_time(self.updated_at),
            "deleted_at": format_time(self.deleted_at),
            "title": self.title,
            "slug": self.slug,
            "path": self.path,
            "description": self.description,
            "featured_img": self.featured_img,
            "published": self.published,
            "publish_at": format_time(self.publish_at),
            "published_at": format_time(self.published_at),
            "content": self.content,
            "sections": self.sections,
            "template": self.template,
            "hide_header": self.hide_header,
            "order": self.order,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Page:
        """Create from manifest dictionary."""
        return cls(
            id=int(data["id"]),
            created_at=_require_time(data.get("created_at")),
            updated_at=_require_time(data.get("updated_at")),
            deleted_at=parse_time(data.get("deleted_at")),
            title=_text(data, "title", ""),
            slug=_text(data, "slug", ""),
            path=_text(data, "path", ""),
            description=_text(data, "description", ""),
            featured_img=_text(data, "featured_img", ""),
            published=bool(data.get("published", False)),
            publish_at=parse_time(data.get("publish_at")),
            published_at=parse_time(data.get("published_at")),
            content=_text(data, "content", ""),
            sections=data.get("sections") or [],
            template=_text(data, "template", ""),
            hide_header=bool(data.get("hide_header", False)),
            order=int(data.get("order", 0)),
        )


@dataclass
class Comment:
    """Comment on a post, optionally threaded under a parent comment."""

    id: int
    content: str
    post_id: int
    author_id: int
    approved: bool = False
    parent_id: int | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    deleted_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to manifest dictionary."""
        return {
            "id": self.id,
            "created_at": format_time(self.created_at),
            "updated_at": format_time(self.updated_at),
            "deleted_at": format_time(self.deleted_at),
            "content": self.content,
            "approved": self.approved,
            "post_id": self.post_id,
            "author_id": self.author_id,
            "parent_id": self.parent_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Comment:
        """Create from manifest dictionary."""
        parent_id = data.get("parent_id")
        return cls(
            id=int(data["id"]),
            created_at=_require_time(data.get("created_at")),
            updated_at=_require_time(data.get("updated_at")),
            deleted_at=parse_time(data.get("deleted_at")),
            content=_text(data, "content", ""),
            approved=bool(data.get("approved", False)),
            post_id=int(data.get("post_id", 0)),
            author_id=int(data.get("author_id", 0)),
            parent_id=int(parent_id) if parent_id is not None else None,
        )


@dataclass
class Setting:
    """Key/value site setting. The key is the natural primary key."""

    key: str
    value: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to manifest dictionary."""
        return {
            "key": self.key,
            "value": self.value,
            "created_at": format_time(self.created_at),
            "updated_at": format_time(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Setting:
        """Create from manifest dictionary."""
        return cls(
            key=_require_text(data, "key"),
            value=_text(data, "value", ""),
            created_at=_require_time(data.get("created_at")),
            updated_at=_require_time(data.get("updated_at")),
        )


@dataclass
class MenuItem:
    """Navigation menu entry."""

    id: int
    title: str
    url: str
    label: str = ""
    location: str = "header"
    order: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    deleted_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to manifest dictionary."""
        return {
            "id": self.id,
            "created_at": format_time(self.created_at),
            "updated_at": format_time(self.updated_at),
            "deleted_at": format_time(self.deleted_at),
            "title": self.title,
            "label": self.label,
            "url": self.url,
            "location": self.location,
            "order": self.order,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MenuItem:
        """Create from manifest dictionary."""
        return cls(
            id=int(data["id"]),
            created_at=_require_time(data.get("created_at")),
            updated_at=_require_time(data.get("updated_at")),
            deleted_at=parse_time(data.get("deleted_at")),
            title=_text(data, "title", ""),
            label=_text(data, "label", ""),
            url=_text(data, "url", ""),
            location=_text(data, "location", ""),
            order=int(data.get("order", 0)),
        )


@dataclass
class SocialLink:
    """Footer social network link."""

    id: int
    name: str
    url: str
    order: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    deleted_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to manifest dictionary."""
        return {
            "id": self.id,
            "created_at": format_time(self.created_at),
            "updated_at": format_time(self.updated_at),
            "deleted_at": format_time(self.deleted_at),
            "name": self.name,
            "url": self.url,
            "order": self.order,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SocialLink:
        """Create from manifest dictionary."""
        return cls(
            id=int(data["id"]),
            created_at=_require_time(data.get("created_at")),
            updated_at=_require_time(data.get("updated_at")),
            deleted_at=parse_time(data.get("deleted_at")),
            name=_text(data, "name", ""),
            url=_text(data, "url", ""),
            order=int(data.get("order", 0)),
        )


@dataclass(frozen=True)
class PostTag:
    """Row of the post/tag join table."""

    post_id: int
    tag_id: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to manifest dictionary."""
        return {"post_id": self.post_id, "tag_id": self.tag_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PostTag:
        """Create from manifest dictionary."""
        return cls(post_id=int(data["post_id"]), tag_id=int(data["tag_id"]))
