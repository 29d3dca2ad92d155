"""
Snapshot builder.

Walks the site store in a fixed entity order and produces a fresh Manifest
for every export. Nothing is cached between calls.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from sitebackup.archive.assets import list_assets
from sitebackup.archive.manifest import APPLICATION, SCHEMA_VERSION, BackupData, Manifest
from sitebackup.backup.context import OperationContext
from sitebackup.errors import SnapshotError
from sitebackup.storage.site_store import SiteStore, StorageError

logger = logging.getLogger(__name__)


# (manifest key, store reader name, human label) in snapshot order.
SNAPSHOT_ORDER: tuple[tuple[str, str, str], ...] = (
    ("users", "fetch_users", "users"),
    ("categories", "fetch_categories", "categories"),
    ("tags", "fetch_tags", "tags"),
    ("posts", "fetch_posts", "posts"),
    ("pages", "fetch_pages", "pages"),
    ("comments", "fetch_comments", "comments"),
    ("settings", "fetch_settings", "settings"),
    ("menu_items", "fetch_menu_items", "menu items"),
    ("social_links", "fetch_social_links", "social links"),
    ("post_tags", "fetch_post_tags", "post tags"),
)


def snapshot_data(store: SiteStore, context: OperationContext | None = None) -> BackupData:
    """
    Read every entity table into a BackupData.

    Records come back from the store ordered by primary key (settings by
    key, join rows by post then tag) with timestamps already in UTC.

    Raises:
        SnapshotError: If any read fails. No partial data is returned.
        OperationCancelledError: If the context is cancelled between reads.
    """
    data = BackupData()
    for key, reader, label in SNAPSHOT_ORDER:
        if context is not None:
            context.check("snapshot")
        try:
            records = getattr(store, reader)()
        except StorageError as e:
            raise SnapshotError(f"Failed to load {label}: {e}") from e
        setattr(data, key, records)
    return data


def build_manifest(
    store: SiteStore,
    upload_dir: Path | str | None,
    context: OperationContext | None = None,
    application: str = APPLICATION,
    clock: Callable[[], datetime] | None = None,
) -> Manifest:
    """
    Build a manifest of the whole site.

    Args:
        store: Store to snapshot.
        upload_dir: Uploads root; None packs no uploads.
        context: Optional cancellation context.
        application: Tag of the producing system.
        clock: Override for the generation timestamp (tests).

    Returns:
        Fully populated manifest.
    """
    generated_at = (clock or (lambda: datetime.now(UTC)))()
    data = snapshot_data(store, context)
    uploads = list_assets(upload_dir) if upload_dir else []

    manifest = Manifest(
        schema_version=SCHEMA_VERSION,
        generated_at=generated_at.astimezone(UTC),
        application=application,
        uploads=uploads,
        data=data,
    )

    counts = data.counts()
    logger.debug(
        f"Snapshot built: {sum(counts.values())} records, {len(uploads)} uploads"
    )
    return manifest
