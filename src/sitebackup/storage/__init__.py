"""
Site content storage.

This module provides the relational store the backup engine snapshots and
reloads: a SQLite database holding users, taxonomy, posts, pages, comments,
settings, navigation and the post/tag join table.

Features:
    - Ordered full-table reads per entity type
    - Transactional writes with truncate-and-reset of identity sequences
    - Batched inserts that preserve original primary keys
    - Foreign keys enforced as the consistency backstop

Usage:
    from sitebackup.storage import SiteStore

    store = SiteStore("data/site.db")
    with store.transaction() as tx:
        tx.truncate_all()
        tx.insert_users(users)
"""

from sitebackup.storage.models import (
    VALID_ROLES,
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
)
from sitebackup.storage.site_store import (
    SiteStore,
    StorageError,
    StoreTransaction,
)

__all__ = [
    # Main store class
    "SiteStore",
    "StoreTransaction",
    # Data models
    "User",
    "Category",
    "Tag",
    "Post",
    "Page",
    "Comment",
    "Setting",
    "MenuItem",
    "SocialLink",
    "PostTag",
    "VALID_ROLES",
    # Exceptions
    "StorageError",
]
