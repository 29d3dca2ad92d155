"""
Tests for backup creation and restore.

Tests cover:
- Snapshot building and archive creation
- Archive handle lifecycle
- Full export and restore round trip
- Version gate and invalid archives
- Reload atomicity and cancellation
- Uploads promotion, copy fallback and rollback
- Restore gate
"""

from __future__ import annotations

import io
import logging
import os
import shutil
import tempfile
import threading
import unittest
import zipfile
from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

from sitebackup.archive import (
    APPLICATION,
    SCHEMA_VERSION,
    BackupData,
    Manifest,
    open_archive,
    read_manifest,
    write_manifest,
)
from sitebackup.backup import (
    BackupArchive,
    BackupService,
    OperationContext,
    RestoreGate,
    RestoreOrchestrator,
    build_manifest,
)
from sitebackup.backup.restore import normalize_users
from sitebackup.errors import (
    BackupError,
    InvalidArchiveError,
    OperationCancelledError,
    PromotionError,
    ReloadError,
    RestoreInProgressError,
    SnapshotError,
    UnsupportedVersionError,
)
from sitebackup.storage import (
    Category,
    Comment,
    MenuItem,
    Page,
    Post,
    PostTag,
    Setting,
    SiteStore,
    SocialLink,
    StorageError,
    Tag,
    User,
)

BASE_TIME = datetime(2024, 1, 15, 10, 30, 0, tzinfo=UTC)
GENERATED_AT = datetime(2024, 2, 1, 8, 15, 30, tzinfo=UTC)

UPLOAD_FILES = {
    "images/logo.png": b"\x89PNG fake image",
    "docs/readme.txt": b"uploaded document",
    "top.css": b"body { color: red; }",
}


def seed_site(store: SiteStore) -> None:
    """Populate a store with one of every entity type."""
    t = BASE_TIME
    with store.transaction() as tx:
        tx.insert_users([
            User(id=1, username="admin", email="admin@example.com", password="hash1",
                 role="admin", created_at=t, updated_at=t),
            User(id=2, username="writer", email="writer@example.com", password="hash2",
                 role="author", created_at=t, updated_at=t + timedelta(days=1)),
        ])
        tx.insert_categories([
            Category(id=1, name="News", slug="news", description="Latest", order=1,
                     created_at=t, updated_at=t),
        ])
        tx.insert_tags([
            Tag(id=1, name="Python", slug="python", created_at=t, updated_at=t),
            Tag(id=2, name="Old", slug="old", unused_since=t, created_at=t, updated_at=t),
        ])
        tx.insert_pages([
            Page(id=1, title="About", slug="about", path="/about", published=True,
                 published_at=t, sections=[{"type": "text", "content": "hi"}],
                 hide_header=True, order=2, created_at=t, updated_at=t),
        ])
        tx.insert_posts([
            Post(id=1, title="Hello", slug="hello", author_id=2, category_id=1,
                 content="Body", excerpt="Ex", published=True, published_at=t, views=42,
                 sections=[{"type": "hero"}], template="post", created_at=t, updated_at=t),
            Post(id=2, title="Draft", slug="draft", author_id=1, category_id=1,
                 publish_at=t + timedelta(days=7), created_at=t, updated_at=t,
                 deleted_at=t + timedelta(days=2)),
        ])
        tx.insert_comments([
            Comment(id=1, content="First", post_id=1, author_id=1, approved=True,
                    created_at=t, updated_at=t),
            Comment(id=2, content="Reply", post_id=1, author_id=2, parent_id=1,
                    created_at=t, updated_at=t),
        ])
        tx.insert_menu_items([
            MenuItem(id=1, title="Home", label="Home", url="/", location="header", order=1,
                     created_at=t, updated_at=t),
        ])
        tx.insert_social_links([
            SocialLink(id=1, name="GitHub", url="https://github.com/example", order=1,
                       created_at=t, updated_at=t),
        ])
        tx.insert_settings([
            Setting(key="site.name", value="Example", created_at=t, updated_at=t),
            Setting(key="site.theme", value="dark", created_at=t, updated_at=t),
        ])
        tx.insert_post_tags([
            PostTag(post_id=1, tag_id=1),
            PostTag(post_id=1, tag_id=2),
            PostTag(post_id=2, tag_id=1),
        ])


def seed_other_site(store: SiteStore) -> None:
    """Populate a store with data that differs from seed_site()."""
    with store.transaction() as tx:
        tx.insert_users([User(id=9, username="old", email="old@example.com", role="user")])
        tx.insert_settings([Setting(key="legacy", value="yes")])


def write_uploads(root: Path, files: dict[str, bytes]) -> None:
    for rel, payload in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)


def read_tree(root: Path) -> dict[str, bytes]:
    result = {}
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            path = Path(dirpath) / filename
            result[path.relative_to(root).as_posix()] = path.read_bytes()
    return result


def snapshot_store(store: SiteStore) -> BackupData:
    return BackupData(
        users=store.fetch_users(),
        categories=store.fetch_categories(),
        tags=store.fetch_tags(),
        posts=store.fetch_posts(),
        pages=store.fetch_pages(),
        comments=store.fetch_comments(),
        settings=store.fetch_settings(),
        menu_items=store.fetch_menu_items(),
        social_links=store.fetch_social_links(),
        post_tags=store.fetch_post_tags(),
    )


def build_archive(
    path: Path,
    data: BackupData | None = None,
    schema_version: str = SCHEMA_VERSION,
    entries: dict[str, bytes] | None = None,
) -> Path:
    """Write a hand-made archive for negative tests."""
    manifest = Manifest(
        schema_version=schema_version,
        generated_at=GENERATED_AT,
        application=APPLICATION,
        uploads=[],
        data=data or BackupData(),
    )
    with zipfile.ZipFile(path, "w") as archive:
        write_manifest(archive, manifest)
        for name, payload in (entries or {}).items():
            archive.writestr(zipfile.ZipInfo(name), payload)
    return path


class BackupTestCase(unittest.TestCase):
    """Shared fixture: source and target sites plus an isolated temp root."""

    def setUp(self) -> None:
        """Create temporary sites for tests."""
        self.temp_dir = Path(tempfile.mkdtemp())

        # Route engine temp files into a directory the tests can inspect.
        self.scratch_root = self.temp_dir / "tmp"
        self.scratch_root.mkdir()
        patcher = patch("tempfile.tempdir", str(self.scratch_root))
        patcher.start()
        self.addCleanup(patcher.stop)

        self.source_store = SiteStore(self.temp_dir / "source" / "site.db")
        self.source_uploads = self.temp_dir / "source" / "uploads"
        self.source = BackupService(self.source_store, self.source_uploads)

        self.target_store = SiteStore(self.temp_dir / "target" / "site.db")
        self.target_uploads = self.temp_dir / "target" / "uploads"
        self.target = BackupService(self.target_store, self.target_uploads)

    def tearDown(self) -> None:
        """Clean up temporary directory."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def export_source(self) -> Path:
        """Export the source site to a file and return its path."""
        return self.source.write_archive(self.temp_dir / "exports")

    def restore_target(self, archive_path: Path, **kwargs):
        with open(archive_path, "rb") as f:
            return self.target.restore_archive(f, **kwargs)

    def assert_no_scratch_left(self) -> None:
        self.assertEqual(list(self.scratch_root.iterdir()), [])


class TestSnapshot(BackupTestCase):
    """Tests for build_manifest."""

    def test_snapshot_contents(self) -> None:
        """Test snapshot holds every record and upload in order."""
        seed_site(self.source_store)
        write_uploads(self.source_uploads, UPLOAD_FILES)

        manifest = build_manifest(
            self.source_store, self.source_uploads, clock=lambda: GENERATED_AT
        )

        self.assertEqual(manifest.schema_version, "1")
        self.assertEqual(manifest.application, "constructor-script")
        self.assertEqual(manifest.generated_at, GENERATED_AT)
        self.assertEqual(manifest.uploads, ["docs/readme.txt", "images/logo.png", "top.css"])
        self.assertEqual(
            manifest.data.counts(),
            {
                "users": 2, "categories": 1, "tags": 2, "posts": 2, "pages": 1,
                "comments": 2, "settings": 2, "menu_items": 1, "social_links": 1,
                "post_tags": 3,
            },
        )
        self.assertEqual([s.key for s in manifest.data.settings], ["site.name", "site.theme"])

    def test_generated_at_converted_to_utc(self) -> None:
        """Test a non-UTC clock is normalized."""
        local = datetime(2024, 2, 1, 10, 15, 30, tzinfo=timezone(timedelta(hours=2)))
        manifest = build_manifest(self.source_store, None, clock=lambda: local)

        self.assertEqual(manifest.generated_at, GENERATED_AT)
        self.assertEqual(manifest.archive_filename, "backup-20240201-081530.zip")

    def test_snapshot_read_failure(self) -> None:
        """Test a failing read aborts with SnapshotError naming the entity."""
        with patch.object(
            self.source_store, "fetch_posts", side_effect=StorageError("disk I/O error")
        ):
            with self.assertRaises(SnapshotError) as ctx:
                build_manifest(self.source_store, self.source_uploads)

        self.assertIn("posts", str(ctx.exception))
        self.assertEqual(ctx.exception.phase, "snapshot")

    def test_snapshot_is_fresh_each_time(self) -> None:
        """Test no manifest state is cached between calls."""
        first = build_manifest(self.source_store, self.source_uploads)
        seed_site(self.source_store)
        second = build_manifest(self.source_store, self.source_uploads)

        self.assertEqual(first.data.counts()["users"], 0)
        self.assertEqual(second.data.counts()["users"], 2)


class TestCreateArchive(BackupTestCase):
    """Tests for BackupService.create_archive and the archive handle."""

    def test_create_archive(self) -> None:
        """Test the archive holds the manifest and every upload."""
        seed_site(self.source_store)
        write_uploads(self.source_uploads, UPLOAD_FILES)

        with self.source.create_archive() as archive:
            self.assertIsInstance(archive, BackupArchive)
            self.assertRegex(archive.filename, r"^backup-\d{8}-\d{6}\.zip$")
            self.assertEqual(archive.content_type, "application/zip")
            self.assertEqual(archive.summary.posts, 2)
            self.assertEqual(archive.summary.uploads, 3)
            self.assertGreater(archive.size(), 0)

            with zipfile.ZipFile(archive.file) as contents:
                names = sorted(contents.namelist())
                self.assertEqual(contents.read("uploads/images/logo.png"), UPLOAD_FILES["images/logo.png"])

        self.assertEqual(
            names,
            ["manifest.json", "uploads/docs/readme.txt", "uploads/images/logo.png", "uploads/top.css"],
        )

    def test_empty_store_export(self) -> None:
        """Test exporting an empty site with no uploads directory."""
        with self.source.create_archive() as archive:
            self.assertEqual(sum(archive.summary.counts().values()), 0)
            with zipfile.ZipFile(archive.file) as contents:
                self.assertEqual(contents.namelist(), ["manifest.json"])

    def test_handle_close_removes_file(self) -> None:
        """Test closing deletes the temporary file and is idempotent."""
        archive = self.source.create_archive()
        path = archive.path
        self.assertTrue(path.exists())
        self.assertTrue(path.name.startswith("constructor-backup-"))

        archive.close()
        archive.close()

        self.assertFalse(path.exists())
        self.assertTrue(archive.closed)
        self.assertIsNone(archive.file)
        self.assert_no_scratch_left()

    def test_handle_copy_to_rewinds(self) -> None:
        """Test copy_to streams everything and can be repeated."""
        with self.source.create_archive() as archive:
            first = io.BytesIO()
            second = io.BytesIO()
            copied = archive.copy_to(first)
            archive.copy_to(second)

            self.assertEqual(copied, archive.size())
            self.assertEqual(first.getvalue(), second.getvalue())

    def test_snapshot_failure_leaves_no_file(self) -> None:
        """Test a snapshot failure creates no temporary archive."""
        with patch.object(self.source_store, "fetch_users", side_effect=StorageError("locked")):
            with self.assertRaises(SnapshotError):
                self.source.create_archive()

        self.assert_no_scratch_left()

    def test_write_failure_removes_temp_file(self) -> None:
        """Test a failure while packing removes the temporary archive."""
        write_uploads(self.source_uploads, UPLOAD_FILES)
        with patch(
            "sitebackup.backup.service.write_assets", side_effect=OSError("disk full")
        ):
            with self.assertRaises(BackupError):
                self.source.create_archive()

        self.assert_no_scratch_left()

    def test_write_archive(self) -> None:
        """Test write_archive saves a named copy and removes the temp file."""
        seed_site(self.source_store)

        path = self.export_source()

        self.assertTrue(path.exists())
        self.assertEqual(path.parent, self.temp_dir / "exports")
        self.assertRegex(path.name, r"^backup-\d{8}-\d{6}\.zip$")
        with open_archive(path) as archive:
            self.assertEqual(read_manifest(archive).data.counts()["comments"], 2)
        self.assert_no_scratch_left()

    def test_write_archive_uploads(self) -> None:
        """Test write_archive hands the archive to the uploader when asked."""
        uploader = MagicMock()
        uploader.upload.return_value = "backups/backup.zip"
        service = BackupService(self.source_store, self.source_uploads, uploader=uploader)

        service.write_archive(self.temp_dir / "exports", upload=True)

        uploader.upload.assert_called_once()
        self.assertIsInstance(uploader.upload.call_args[0][0], BackupArchive)

    def test_cancelled_export(self) -> None:
        """Test a cancelled context aborts the export."""
        event = threading.Event()
        event.set()

        with self.assertRaises(OperationCancelledError):
            self.source.create_archive(OperationContext(cancel_event=event))

        self.assert_no_scratch_left()


class TestRestore(BackupTestCase):
    """Tests for BackupService.restore_archive."""

    def test_round_trip(self) -> None:
        """Test restoring an export reproduces the source site exactly."""
        seed_site(self.source_store)
        write_uploads(self.source_uploads, UPLOAD_FILES)
        seed_other_site(self.target_store)
        write_uploads(self.target_uploads, {"stale.txt": b"old"})

        archive_path = self.export_source()
        result = self.restore_target(archive_path)

        self.assertEqual(snapshot_store(self.target_store), snapshot_store(self.source_store))
        self.assertEqual(read_tree(self.target_uploads), UPLOAD_FILES)
        self.assertEqual(result.summary.users, 2)
        self.assertEqual(result.summary.post_tags, 3)
        self.assertEqual(result.summary.uploads, 3)
        self.assertIsNotNone(result.summary.restored_at)
        self.assertEqual(result.cleanup_warnings, [])

        # The aside copy of the old uploads is gone after success.
        self.assertEqual(sorted(p.name for p in self.target_uploads.parent.iterdir()),
                         ["site.db", "uploads"])
        self.assert_no_scratch_left()

    def test_round_trip_is_stable(self) -> None:
        """Test exporting a restored site yields the same data."""
        seed_site(self.source_store)
        self.restore_target(self.export_source())

        with self.target.create_archive() as archive:
            with zipfile.ZipFile(archive.file) as contents:
                restored = read_manifest(contents)

        self.assertEqual(restored.data, snapshot_store(self.source_store))

    def test_round_trip_colon_filename(self) -> None:
        """Test upload names containing a colon survive export and restore."""
        files = {"12:30-photo.png": b"img", "sub/a.png": b"a"}
        write_uploads(self.source_uploads, files)

        result = self.restore_target(self.export_source())

        self.assertEqual(read_tree(self.target_uploads), files)
        self.assertEqual(result.summary.uploads, 2)
        self.assert_no_scratch_left()

    def test_restore_empty_archive(self) -> None:
        """Test restoring an empty export empties the site and its uploads."""
        seed_other_site(self.target_store)
        write_uploads(self.target_uploads, {"stale.txt": b"old"})

        result = self.restore_target(self.export_source())

        self.assertTrue(all(c == 0 for c in self.target_store.count_rows().values()))
        self.assertTrue(self.target_uploads.is_dir())
        self.assertEqual(list(self.target_uploads.iterdir()), [])
        self.assertEqual(result.summary.uploads, 0)

    def test_restore_creates_missing_upload_dir(self) -> None:
        """Test restore works when the live uploads directory does not exist yet."""
        write_uploads(self.source_uploads, UPLOAD_FILES)

        self.restore_target(self.export_source())

        self.assertEqual(read_tree(self.target_uploads), UPLOAD_FILES)

    def test_unsupported_version(self) -> None:
        """Test a different schema version is refused before any change."""
        seed_other_site(self.target_store)
        before = snapshot_store(self.target_store)
        archive_path = build_archive(self.temp_dir / "v2.zip", schema_version="2")

        with self.assertRaises(UnsupportedVersionError) as ctx:
            self.restore_target(archive_path)

        self.assertEqual(ctx.exception.found, "2")
        self.assertEqual(ctx.exception.expected, "1")
        self.assertEqual(snapshot_store(self.target_store), before)
        self.assert_no_scratch_left()

    def test_not_a_zip(self) -> None:
        """Test arbitrary bytes are an invalid archive."""
        with self.assertRaises(InvalidArchiveError):
            self.target.restore_archive(io.BytesIO(b"definitely not a zip"))

        self.assert_no_scratch_left()

    def test_path_traversal_rejected(self) -> None:
        """Test an escaping upload path aborts the restore with nothing changed."""
        seed_other_site(self.target_store)
        write_uploads(self.target_uploads, {"keep.txt": b"keep"})
        before = snapshot_store(self.target_store)
        archive_path = build_archive(
            self.temp_dir / "evil.zip",
            entries={"uploads/ok.txt": b"ok", "uploads/../../escaped.txt": b"evil"},
        )

        with self.assertRaises(InvalidArchiveError):
            self.restore_target(archive_path)

        self.assertEqual(snapshot_store(self.target_store), before)
        self.assertEqual(read_tree(self.target_uploads), {"keep.txt": b"keep"})
        self.assertFalse((self.temp_dir / "escaped.txt").exists())
        self.assert_no_scratch_left()

    def test_reload_failure_rolls_back(self) -> None:
        """Test a constraint failure during reload leaves the store untouched."""
        seed_other_site(self.target_store)
        write_uploads(self.target_uploads, {"keep.txt": b"keep"})
        before = snapshot_store(self.target_store)
        data = BackupData(
            users=[User(id=1, username="u", email="u@example.com")],
            # Comment on a post that does not exist.
            comments=[Comment(id=1, content="orphan", post_id=404, author_id=1)],
        )
        archive_path = build_archive(
            self.temp_dir / "broken.zip", data=data, entries={"uploads/new.txt": b"new"}
        )

        with self.assertRaises(ReloadError) as ctx:
            self.restore_target(archive_path)

        self.assertIn("comments", str(ctx.exception))
        self.assertEqual(ctx.exception.phase, "reload")
        self.assertEqual(snapshot_store(self.target_store), before)
        self.assertEqual(read_tree(self.target_uploads), {"keep.txt": b"keep"})
        self.assert_no_scratch_left()

    def test_user_roles_normalized(self) -> None:
        """Test roles are trimmed and lowercased on restore."""
        data = BackupData(users=[User(id=1, username="u", email="u@example.com", role=" Editor ")])
        archive_path = build_archive(self.temp_dir / "roles.zip", data=data)

        self.restore_target(archive_path)

        self.assertEqual(self.target_store.fetch_users()[0].role, "editor")

    def test_invalid_user_role(self) -> None:
        """Test an unknown role is refused before the store changes."""
        seed_other_site(self.target_store)
        before = snapshot_store(self.target_store)
        data = BackupData(users=[User(id=1, username="u", email="u@example.com", role="superuser")])
        archive_path = build_archive(self.temp_dir / "roles.zip", data=data)

        with self.assertRaises(InvalidArchiveError):
            self.restore_target(archive_path)

        self.assertEqual(snapshot_store(self.target_store), before)

    def test_wrong_typed_user_role(self) -> None:
        """Test a numeric role is an invalid archive and the store is unchanged."""
        seed_other_site(self.target_store)
        before = snapshot_store(self.target_store)
        data = BackupData(users=[User(id=1, username="u", email="u@example.com", role=5)])
        archive_path = build_archive(self.temp_dir / "roles.zip", data=data)

        with self.assertRaises(InvalidArchiveError) as ctx:
            self.restore_target(archive_path)

        self.assertEqual(ctx.exception.phase, "stage")
        self.assertEqual(snapshot_store(self.target_store), before)
        self.assert_no_scratch_left()

    def test_normalize_users_rejects_non_string_role(self) -> None:
        """Test role normalization refuses a role that is not a string."""
        with self.assertRaises(InvalidArchiveError):
            normalize_users([User(id=1, username="u", email="u@example.com", role=None)])

    def test_null_setting_key(self) -> None:
        """Test a setting without a key is an invalid archive and the store is unchanged."""
        seed_other_site(self.target_store)
        before = snapshot_store(self.target_store)
        data = BackupData(settings=[Setting(key=None, value="x")])
        archive_path = build_archive(self.temp_dir / "settings.zip", data=data)

        with self.assertRaises(InvalidArchiveError):
            self.restore_target(archive_path)

        self.assertEqual(snapshot_store(self.target_store), before)

    def test_size_mismatch_only_warns(self) -> None:
        """Test a wrong declared size is logged but not fatal."""
        seed_site(self.source_store)
        archive_path = self.export_source()

        with self.assertLogs("sitebackup.backup.restore", level=logging.WARNING) as logs:
            result = self.restore_target(archive_path, expected_size=1)

        self.assertTrue(any("size mismatch" in line for line in logs.output))
        self.assertEqual(result.summary.users, 2)

    def test_cancelled_during_reload_rolls_back(self) -> None:
        """Test cancellation between reload batches rolls the store back."""

        class CancelDuringReload(OperationContext):
            def __init__(self) -> None:
                super().__init__()
                self.reload_checks = 0

            def check(self, phase: str) -> None:
                if phase == "reload":
                    self.reload_checks += 1
                    if self.reload_checks == 3:
                        raise OperationCancelledError("cancelled", phase=phase)

        seed_site(self.source_store)
        archive_path = self.export_source()
        seed_other_site(self.target_store)
        before = snapshot_store(self.target_store)

        with self.assertRaises(OperationCancelledError):
            self.restore_target(archive_path, context=CancelDuringReload())

        self.assertEqual(snapshot_store(self.target_store), before)
        self.assert_no_scratch_left()

    def test_deadline_exceeded(self) -> None:
        """Test an expired deadline stops the restore."""
        seed_site(self.source_store)
        archive_path = self.export_source()
        context = OperationContext(deadline=datetime.now(UTC) - timedelta(seconds=1))

        with self.assertRaises(OperationCancelledError):
            self.restore_target(archive_path, context=context)

        self.assertEqual(self.target_store.fetch_users(), [])

    def test_concurrent_restore_rejected(self) -> None:
        """Test a second restore through the same gate is refused."""
        seed_site(self.source_store)
        archive_path = self.export_source()

        with self.target.gate.hold():
            with self.assertRaises(RestoreInProgressError):
                self.restore_target(archive_path)

        self.assertEqual(self.target_store.fetch_users(), [])
        # Gate is free again afterwards.
        self.restore_target(archive_path)
        self.assertEqual(len(self.target_store.fetch_users()), 2)


class TestPromotion(BackupTestCase):
    """Tests for swapping restored uploads into place."""

    def setUp(self) -> None:
        """Prepare a source export and a target with existing uploads."""
        super().setUp()
        seed_site(self.source_store)
        write_uploads(self.source_uploads, UPLOAD_FILES)
        write_uploads(self.target_uploads, {"previous.txt": b"previous"})
        self.archive_path = self.export_source()

    def test_copy_fallback_when_rename_fails(self) -> None:
        """Test uploads are copied when the staged directory cannot be renamed."""
        real_rename = os.rename
        calls = []

        def rename(src, dst):
            calls.append((Path(src), Path(dst)))
            if Path(dst) == self.target_uploads and len(calls) == 2:
                raise OSError(18, "Invalid cross-device link")
            return real_rename(src, dst)

        with patch("sitebackup.backup.restore.os.rename", side_effect=rename):
            result = self.restore_target(self.archive_path)

        self.assertEqual(read_tree(self.target_uploads), UPLOAD_FILES)
        self.assertEqual(result.summary.uploads, 3)
        self.assert_no_scratch_left()

    def test_promotion_failure_restores_previous_uploads(self) -> None:
        """Test a failed swap puts the previous uploads back and reports it."""
        real_rename = os.rename
        calls = []

        def rename(src, dst):
            calls.append((Path(src), Path(dst)))
            if len(calls) == 2:
                raise OSError(18, "Invalid cross-device link")
            return real_rename(src, dst)

        with patch("sitebackup.backup.restore.os.rename", side_effect=rename), patch(
            "sitebackup.backup.restore.copy_directory", side_effect=OSError("no space left")
        ):
            with self.assertRaises(PromotionError) as ctx:
                self.restore_target(self.archive_path)

        error = ctx.exception
        self.assertEqual(error.phase, "promote")
        self.assertTrue(error.store_committed)
        self.assertTrue(error.restored_previous)
        self.assertNotIsInstance(error, ReloadError)

        # Store reload had already committed.
        self.assertEqual(len(self.target_store.fetch_users()), 2)
        # Previous uploads are back in place and the aside copy is gone.
        self.assertEqual(read_tree(self.target_uploads), {"previous.txt": b"previous"})
        self.assertEqual(
            sorted(p.name for p in self.target_uploads.parent.iterdir()), ["site.db", "uploads"]
        )
        self.assert_no_scratch_left()

    def test_set_aside_failure(self) -> None:
        """Test failure to move the live directory aside leaves it untouched."""
        with patch(
            "sitebackup.backup.restore.os.rename", side_effect=OSError("permission denied")
        ):
            with self.assertRaises(PromotionError):
                self.restore_target(self.archive_path)

        self.assertEqual(read_tree(self.target_uploads), {"previous.txt": b"previous"})
        self.assert_no_scratch_left()

    def test_backup_removal_failure_is_a_warning(self) -> None:
        """Test failing to delete the aside copy does not fail the restore."""
        real_rmtree = shutil.rmtree

        def rmtree(path, *args, **kwargs):
            if ".bak-" in Path(path).name:
                raise OSError("busy")
            return real_rmtree(path, *args, **kwargs)

        with patch("sitebackup.backup.restore.shutil.rmtree", side_effect=rmtree):
            result = self.restore_target(self.archive_path)

        self.assertEqual(len(result.cleanup_warnings), 1)
        self.assertIn(".bak-", result.cleanup_warnings[0].path.name)
        self.assertEqual(read_tree(self.target_uploads), UPLOAD_FILES)


class TestOrchestrator(BackupTestCase):
    """Tests for RestoreOrchestrator used directly."""

    def test_without_upload_dir(self) -> None:
        """Test a restore with no uploads directory only reloads the store."""
        seed_site(self.source_store)
        write_uploads(self.source_uploads, UPLOAD_FILES)
        archive_path = self.export_source()

        orchestrator = RestoreOrchestrator(self.target_store, None)
        with open(archive_path, "rb") as f:
            result = orchestrator.run(f)

        self.assertEqual(result.summary.uploads, 3)
        self.assertEqual(len(self.target_store.fetch_posts()), 2)
        self.assertFalse(self.target_uploads.exists())
        self.assert_no_scratch_left()


class TestRestoreGate(unittest.TestCase):
    """Tests for RestoreGate."""

    def test_hold_and_release(self) -> None:
        """Test the gate is busy only while held."""
        gate = RestoreGate()
        self.assertFalse(gate.busy)
        with gate.hold():
            self.assertTrue(gate.busy)
        self.assertFalse(gate.busy)

    def test_second_holder_rejected(self) -> None:
        """Test a second hold fails immediately instead of waiting."""
        gate = RestoreGate()
        with gate.hold():
            with self.assertRaises(RestoreInProgressError):
                with gate.hold():
                    pass

    def test_released_after_exception(self) -> None:
        """Test the gate is released when the block raises."""
        gate = RestoreGate()
        with self.assertRaises(ValueError):
            with gate.hold():
                raise ValueError("boom")
        self.assertFalse(gate.busy)


class TestOperationContext(unittest.TestCase):
    """Tests for OperationContext."""

    def test_default_never_cancels(self) -> None:
        """Test an empty context never raises."""
        context = OperationContext()
        context.check("stage")
        self.assertFalse(context.cancelled)

    def test_cancel_event(self) -> None:
        """Test setting the event cancels with the phase recorded."""
        event = threading.Event()
        context = OperationContext(cancel_event=event)
        event.set()

        with self.assertRaises(OperationCancelledError) as ctx:
            context.check("extract")

        self.assertEqual(ctx.exception.phase, "extract")
        self.assertTrue(context.cancelled)

    def test_with_timeout(self) -> None:
        """Test with_timeout sets a future deadline."""
        context = OperationContext.with_timeout(60)
        self.assertGreater(context.deadline, datetime.now(UTC))
        context.check("reload")


if __name__ == "__main__":
    unittest.main()
