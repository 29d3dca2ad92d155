"""
SQLite-backed site store.

This module provides the SiteStore class which persists the site's relational
state: users, categories, tags, posts, pages, comments, settings, menu items,
social links and the post/tag join table.

Storage Structure:
    data/
        site.db                 # SQLite database

Design Decisions:
    - Surrogate keys use AUTOINCREMENT so identity sequences can be reset
    - Foreign keys are enforced and act as the consistency backstop on reload
    - Timestamps are ISO-8601 UTC strings, booleans are 0/1 integers
    - Section payloads are JSON TEXT

Thread Safety:
    The store uses the connection-per-operation pattern. A transaction owns
    its connection until it commits or rolls back.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Generator, Iterable, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

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
)

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage errors."""

    pass


# Database schema version for migrations
SCHEMA_VERSION = 1


CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    username TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL UNIQUE,
    password TEXT NOT NULL,
    role TEXT NOT NULL,
    status TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    name TEXT NOT NULL,
    slug TEXT NOT NULL UNIQUE,
    description TEXT NOT NULL DEFAULT '',
    "order" INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    name TEXT NOT NULL,
    slug TEXT NOT NULL UNIQUE,
    unused_since TEXT
);

CREATE TABLE IF NOT EXISTS pages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    title TEXT NOT NULL,
    slug TEXT NOT NULL UNIQUE,
    path TEXT NOT NULL DEFAULT '',
    description TEXT NOT NULL DEFAULT '',
    featured_img TEXT NOT NULL DEFAULT '',
    published INTEGER NOT NULL DEFAULT 0,
    publish_at TEXT,
    published_at TEXT,
    content TEXT NOT NULL DEFAULT '',
    sections TEXT NOT NULL DEFAULT '[]',
    template TEXT NOT NULL DEFAULT '',
    hide_header INTEGER NOT NULL DEFAULT 0,
    "order" INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS posts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    title TEXT NOT NULL,
    slug TEXT NOT NULL UNIQUE,
    description TEXT NOT NULL DEFAULT '',
    content TEXT NOT NULL DEFAULT '',
    excerpt TEXT NOT NULL DEFAULT '',
    featured_img TEXT NOT NULL DEFAULT '',
    published INTEGER NOT NULL DEFAULT 0,
    publish_at TEXT,
    published_at TEXT,
    views INTEGER NOT NULL DEFAULT 0,
    sections TEXT NOT NULL DEFAULT '[]',
    template TEXT NOT NULL DEFAULT '',
    author_id INTEGER NOT NULL,
    category_id INTEGER NOT NULL,
    FOREIGN KEY (author_id) REFERENCES users(id),
    FOREIGN KEY (category_id) REFERENCES categories(id)
);

CREATE INDEX IF NOT EXISTS idx_posts_author ON posts(author_id);
CREATE INDEX IF NOT EXISTS idx_posts_category ON posts(category_id);

CREATE TABLE IF NOT EXISTS comments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    content TEXT NOT NULL,
    approved INTEGER NOT NULL DEFAULT 0,
    post_id INTEGER NOT NULL,
    author_id INTEGER NOT NULL,
    parent_id INTEGER,
    FOREIGN KEY (post_id) REFERENCES posts(id),
    FOREIGN KEY (author_id) REFERENCES users(id),
    FOREIGN KEY (parent_id) REFERENCES comments(id)
);

CREATE INDEX IF NOT EXISTS idx_comments_post ON comments(post_id);

CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS menu_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    title TEXT NOT NULL,
    label TEXT NOT NULL DEFAULT '',
    url TEXT NOT NULL,
    location TEXT NOT NULL DEFAULT '',
    "order" INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS social_links (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    name TEXT NOT NULL,
    url TEXT NOT NULL,
    "order" INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS post_tags (
    post_id INTEGER NOT NULL,
    tag_id INTEGER NOT NULL,
    PRIMARY KEY (post_id, tag_id),
    FOREIGN KEY (post_id) REFERENCES posts(id),
    FOREIGN KEY (tag_id) REFERENCES tags(id)
);
"""


@dataclass(frozen=True)
class TableSpec:
    """Column layout of one table and the model it maps to."""

    name: str
    model: type
    columns: tuple[str, ...]
    order_by: str
    time_columns: frozenset[str] = frozenset()
    bool_columns: frozenset[str] = frozenset()
    json_columns: frozenset[str] = frozenset()

    @property
    def column_list(self) -> str:
        return ", ".join(f'"{column}"' for column in self.columns)

    def insert_sql(self) -> str:
        placeholders = ", ".join("?" for _ in self.columns)
        return f"INSERT INTO {self.name} ({self.column_list}) VALUES ({placeholders})"

    def select_sql(self) -> str:
        return f"SELECT {self.column_list} FROM {self.name} ORDER BY {self.order_by}"

    def to_row(self, record: Any) -> tuple[Any, ...]:
        """Convert a model instance into a parameter tuple."""
        values = []
        for column in self.columns:
            value = getattr(record, column)
            if column in self.time_columns:
                value = format_time(value)
            elif column in self.bool_columns:
                value = 1 if value else 0
            elif column in self.json_columns:
                value = json.dumps(value if value is not None else [])
            values.append(value)
        return tuple(values)

    def from_row(self, row: sqlite3.Row) -> Any:
        """Convert a database row into a model instance."""
        kwargs: dict[str, Any] = {}
        for column in self.columns:
            value = row[column]
            if column in self.time_columns:
                value = parse_time(value)
            elif column in self.bool_columns:
                value = bool(value)
            elif column in self.json_columns:
                value = json.loads(value) if value else []
            kwargs[column] = value
        return self.model(**kwargs)


_BASE_TIMES = frozenset({"created_at", "updated_at", "deleted_at"})

USERS = TableSpec(
    name="users",
    model=User,
    columns=(
        "id", "created_at", "updated_at", "deleted_at",
        "username", "email", "password", "role", "status",
    ),
    order_by="id ASC",
    time_columns=_BASE_TIMES,
)

CATEGORIES = TableSpec(
    name="categories",
    model=Category,
    columns=(
        "id", "created_at", "updated_at", "deleted_at",
        "name", "slug", "description", "order",
    ),
    order_by="id ASC",
    time_columns=_BASE_TIMES,
)

TAGS = TableSpec(
    name="tags",
    model=Tag,
    columns=(
        "id", "created_at", "updated_at", "deleted_at",
        "name", "slug", "unused_since",
    ),
    order_by="id ASC",
    time_columns=_BASE_TIMES | {"unused_since"},
)

POSTS = TableSpec(
    name="posts",
    model=Post,
    columns=(
        "id", "created_at", "updated_at", "deleted_at",
        "title", "slug", "description", "content", "excerpt", "featured_img",
        "published", "publish_at", "published_at", "views", "sections",
        "template", "author_id", "category_id",
    ),
    order_by="id ASC",
    time_columns=_BASE_TIMES | {"publish_at", "published_at"},
    bool_columns=frozenset({"published"}),
    json_columns=frozenset({"sections"}),
)

PAGES = TableSpec(
    name="pages",
    model=Page,
    columns=(
        "id", "created_at", "updated_at", "deleted_at",
        "title", "slug", "path", "description", "featured_img", "published",
        "publish_at", "published_at", "content", "sections", "template",
        "hide_header", "order",
    ),
    order_by="id ASC",
    time_columns=_BASE_TIMES | {"publish_at", "published_at"},
    bool_columns=frozenset({"published", "hide_header"}),
    json_columns=frozenset({"sections"}),
)

COMMENTS = TableSpec(
    name="comments",
    model=Comment,
    columns=(
        "id", "created_at", "updated_at", "deleted_at",
        "content", "approved", "post_id", "author_id", "parent_id",
    ),
    order_by="id ASC",
    time_columns=_BASE_TIMES,
    bool_columns=frozenset({"approved"}),
)

SETTINGS = TableSpec(
    name="settings",
    model=Setting,
    columns=("key", "value", "created_at", "updated_at"),
    order_by="key ASC",
    time_columns=frozenset({"created_at", "updated_at"}),
)

MENU_ITEMS = TableSpec(
    name="menu_items",
    model=MenuItem,
    columns=(
        "id", "created_at", "updated_at", "deleted_at",
        "title", "label", "url", "location", "order",
    ),
    order_by="id ASC",
    time_columns=_BASE_TIMES,
)

SOCIAL_LINKS = TableSpec(
    name="social_links",
    model=SocialLink,
    columns=(
        "id", "created_at", "updated_at", "deleted_at",
        "name", "url", "order",
    ),
    order_by="id ASC",
    time_columns=_BASE_TIMES,
)

POST_TAGS = TableSpec(
    name="post_tags",
    model=PostTag,
    columns=("post_id", "tag_id"),
    order_by="post_id ASC, tag_id ASC",
)

# Child tables first so that deletes never trip a foreign key.
TRUNCATE_ORDER = (
    POST_TAGS,
    COMMENTS,
    POSTS,
    PAGES,
    MENU_ITEMS,
    SOCIAL_LINKS,
    SETTINGS,
    TAGS,
    CATEGORIES,
    USERS,
)


class StoreTransaction:
    """
    Write handle bound to one open transaction.

    Obtained from SiteStore.transaction(); every method runs on the
    transaction's connection and becomes visible only on commit.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def truncate_all(self) -> None:
        """Empty every site table and reset their identity sequences."""
        for spec in TRUNCATE_ORDER:
            self._conn.execute(f"DELETE FROM {spec.name}")  # noqa: S608
        names = [spec.name for spec in TRUNCATE_ORDER]
        placeholders = ", ".join("?" for _ in names)
        self._conn.execute(
            f"DELETE FROM sqlite_sequence WHERE name IN ({placeholders})",  # noqa: S608
            names,
        )

    def _insert(self, spec: TableSpec, records: Iterable[Any]) -> int:
        rows = [spec.to_row(record) for record in records]
        if rows:
            self._conn.executemany(spec.insert_sql(), rows)
        return len(rows)

    def insert_users(self, users: Sequence[User]) -> int:
        return self._insert(USERS, users)

    def insert_categories(self, categories: Sequence[Category]) -> int:
        return self._insert(CATEGORIES, categories)

    def insert_tags(self, tags: Sequence[Tag]) -> int:
        return self._insert(TAGS, tags)

    def insert_pages(self, pages: Sequence[Page]) -> int:
        return self._insert(PAGES, pages)

    def insert_posts(self, posts: Sequence[Post]) -> int:
        return self._insert(POSTS, posts)

    def insert_comments(self, comments: Sequence[Comment]) -> int:
        return self._insert(COMMENTS, comments)

    def insert_menu_items(self, items: Sequence[MenuItem]) -> int:
        return self._insert(MENU_ITEMS, items)

    def insert_social_links(self, links: Sequence[SocialLink]) -> int:
        return self._insert(SOCIAL_LINKS, links)

    def insert_settings(self, settings: Sequence[Setting]) -> int:
        return self._insert(SETTINGS, settings)

    def insert_post_tags(self, rows: Sequence[PostTag]) -> int:
        """Raw insert into the join table."""
        return self._insert(POST_TAGS, rows)


class SiteStore:
    """
    Persistent storage for site content.

    Example:
        store = SiteStore(Path("./data/site.db"))

        with store.transaction() as tx:
            tx.insert_users([User(id=1, username="admin", email="a@example.com")])

        users = store.fetch_users()

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: Path | str) -> None:
        """
        Initialize the site store.

        Args:
            db_path: Path to the SQLite database file. Parent directories
                are created when missing.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.executescript(CREATE_TABLES_SQL)

            cursor = conn.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = cursor.fetchone()

            if row is None:
                conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, datetime.now(UTC).isoformat()),
                )
                logger.info(f"Initialized database schema version {SCHEMA_VERSION}")

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get a database connection with proper settings.

        Yields:
            SQLite connection with row factory set.
        """
        conn = sqlite3.connect(
            str(self.db_path),
            isolation_level=None,  # Autocommit mode, we manage transactions manually
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Generator[StoreTransaction, None, None]:
        """
        Open a write transaction.

        Commits when the block exits normally and rolls back when it raises.
        sqlite3 errors are re-raised as StorageError; other exceptions
        (including cancellation) propagate unchanged after the rollback.
        """
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield StoreTransaction(conn)
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                raise StorageError(str(e)) from e
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                raise StorageError(f"Failed to commit transaction: {e}") from e

    def _fetch(self, spec: TableSpec) -> list[Any]:
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(spec.select_sql())
                return [spec.from_row(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise StorageError(f"Failed to load {spec.name}: {e}") from e

    def fetch_users(self) -> list[User]:
        return self._fetch(USERS)

    def fetch_categories(self) -> list[Category]:
        return self._fetch(CATEGORIES)

    def fetch_tags(self) -> list[Tag]:
        return self._fetch(TAGS)

    def fetch_posts(self) -> list[Post]:
        return self._fetch(POSTS)

    def fetch_pages(self) -> list[Page]:
        return self._fetch(PAGES)

    def fetch_comments(self) -> list[Comment]:
        return self._fetch(COMMENTS)

    def fetch_settings(self) -> list[Setting]:
        return self._fetch(SETTINGS)

    def fetch_menu_items(self) -> list[MenuItem]:
        return self._fetch(MENU_ITEMS)

    def fetch_social_links(self) -> list[SocialLink]:
        return self._fetch(SOCIAL_LINKS)

    def fetch_post_tags(self) -> list[PostTag]:
        """Raw read of the join table ordered by (post_id, tag_id)."""
        return self._fetch(POST_TAGS)

    def count_rows(self) -> dict[str, int]:
        """
        Get row counts for every site table.

        Returns:
            Mapping of table name to row count.
        """
        counts: dict[str, int] = {}
        with self._get_connection() as conn:
            for spec in reversed(TRUNCATE_ORDER):
                cursor = conn.execute(f"SELECT COUNT(*) FROM {spec.name}")  # noqa: S608
                (count,) = cursor.fetchone()
                counts[spec.name] = count
        return counts

    def get_setting(self, key: str) -> Setting | None:
        """
        Get a setting by key.

        Args:
            key: Setting key.

        Returns:
            Setting or None if not stored.
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"SELECT {SETTINGS.column_list} FROM settings WHERE key = ?",  # noqa: S608
                (key,),
            )
            row = cursor.fetchone()
            return SETTINGS.from_row(row) if row else None

    def set_setting(self, key: str, value: str) -> None:
        """
        Insert or update a setting.

        Args:
            key: Setting key.
            value: New value.
        """
        now = datetime.now(UTC).isoformat()
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO settings (key, value, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, value, now, now),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save setting {key}: {e}") from e
