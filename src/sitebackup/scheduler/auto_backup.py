"""
Automatic backups on a fixed interval.

The schedule (enabled flag and interval) is persisted as JSON in the site's
settings table under ``site.backup.auto`` so it survives restarts and travels
with the site's own backups. Runtime state (last and next run) lives only in
the running process.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from sitebackup.backup.context import OperationContext
from sitebackup.backup.service import BackupService
from sitebackup.config.settings import MAX_INTERVAL_HOURS, MIN_INTERVAL_HOURS
from sitebackup.storage.site_store import SiteStore, StorageError

logger = logging.getLogger(__name__)

SETTING_KEY = "site.backup.auto"
DEFAULT_INTERVAL_HOURS = 24
DEFAULT_TIMEOUT_MINUTES = 15


class AutoBackupError(Exception):
    """Base exception for automatic backup errors."""

    pass


class InvalidBackupSettingsError(AutoBackupError):
    """Raised when requested automatic backup settings are out of range."""

    pass


@dataclass
class BackupSettings:
    """
    Automatic backup schedule.

    Attributes:
        enabled: Whether automatic backups run.
        interval_hours: Hours between runs (1 to 168).
        last_run: When the last run finished, in this process.
        next_run: When the next run is due, while enabled.
    """

    enabled: bool = False
    interval_hours: int = DEFAULT_INTERVAL_HOURS
    last_run: datetime | None = None
    next_run: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary."""
        return {
            "enabled": self.enabled,
            "interval_hours": self.interval_hours,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
        }

    def to_json(self) -> str:
        """Serialize the persisted part of the settings."""
        return json.dumps({"enabled": self.enabled, "interval_hours": self.interval_hours})

    @classmethod
    def from_json(cls, payload: str) -> BackupSettings:
        """
        Parse persisted settings.

        A missing or non-positive interval falls back to the default.

        Raises:
            AutoBackupError: If the payload is not a JSON object.
        """
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise AutoBackupError(f"Failed to parse backup settings: {e}") from e
        if not isinstance(data, dict):
            raise AutoBackupError("Failed to parse backup settings: not an object")

        interval = data.get("interval_hours")
        if not isinstance(interval, int) or interval <= 0:
            interval = DEFAULT_INTERVAL_HOURS
        return cls(enabled=bool(data.get("enabled", False)), interval_hours=interval)


class AutoBackupScheduler:
    """
    Runs BackupService.write_archive() on an interval in a daemon thread.

    Usage:
        scheduler = AutoBackupScheduler(service, store, Path("uploads/auto-backups"))
        scheduler.initialize()          # resume the persisted schedule
        scheduler.update_settings(True, 12)
        ...
        scheduler.shutdown()
    """

    def __init__(
        self,
        service: BackupService,
        store: SiteStore,
        target_dir: Path | str,
        timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES,
        upload: bool = False,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            service: Service used to create archives.
            store: Store holding the persisted schedule.
            target_dir: Directory archives are written to.
            timeout_minutes: Deadline for a single run.
            upload: Also push each archive through the service's uploader.
        """
        self.service = service
        self.store = store
        self.target_dir = Path(target_dir)
        self.timeout_minutes = timeout_minutes
        self.upload = upload

        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._stop_event: threading.Event | None = None
        self._enabled = False
        self._interval_hours = 0
        self._last_run: datetime | None = None
        self._next_run: datetime | None = None

    @property
    def running(self) -> bool:
        """True while the background loop is alive."""
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def load_settings(self) -> BackupSettings:
        """
        Read the persisted schedule.

        Returns the default (disabled, 24 hours) when nothing is stored.

        Raises:
            AutoBackupError: If the stored value cannot be read or parsed.
        """
        try:
            record = self.store.get_setting(SETTING_KEY)
        except StorageError as e:
            raise AutoBackupError(f"Failed to load backup settings: {e}") from e

        if record is None or not record.value.strip():
            return BackupSettings()
        return BackupSettings.from_json(record.value)

    def get_settings(self) -> BackupSettings:
        """Get the persisted schedule merged with this process's runtime state."""
        settings = self.load_settings()

        with self._lock:
            settings.enabled = self._enabled
            if self._interval_hours > 0:
                settings.interval_hours = self._interval_hours
            settings.last_run = self._last_run
            settings.next_run = self._next_run if self._enabled else None

        return settings

    def update_settings(self, enabled: bool, interval_hours: int) -> BackupSettings:
        """
        Persist a new schedule and apply it immediately.

        Raises:
            InvalidBackupSettingsError: If interval_hours is outside 1..168.
            AutoBackupError: If the schedule cannot be persisted.
        """
        if not MIN_INTERVAL_HOURS <= interval_hours <= MAX_INTERVAL_HOURS:
            raise InvalidBackupSettingsError(
                f"Interval must be between {MIN_INTERVAL_HOURS} and "
                f"{MAX_INTERVAL_HOURS} hours, got {interval_hours}"
            )

        settings = BackupSettings(enabled=enabled, interval_hours=interval_hours)
        try:
            self.store.set_setting(SETTING_KEY, settings.to_json())
        except StorageError as e:
            raise AutoBackupError(f"Failed to persist backup settings: {e}") from e

        self.apply(settings)
        return self.get_settings()

    def initialize(self) -> None:
        """Start the loop if the persisted schedule is enabled."""
        try:
            settings = self.load_settings()
        except AutoBackupError as e:
            logger.error(f"Failed to load automatic backup settings: {e}")
            return
        self.apply(settings)

    def apply(self, settings: BackupSettings) -> None:
        """Stop any running loop and start a new one if settings are enabled."""
        interval_hours = settings.interval_hours
        if interval_hours <= 0:
            interval_hours = DEFAULT_INTERVAL_HOURS

        with self._lock:
            self._stop_locked()

            if not settings.enabled:
                self._enabled = False
                self._interval_hours = 0
                self._next_run = None
                logger.info("Automatic backups disabled")
                return

            interval = timedelta(hours=interval_hours)
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._enabled = True
            self._interval_hours = interval_hours
            self._next_run = datetime.now(UTC) + interval
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(stop_event, interval),
                name="sitebackup-auto-backup",
                daemon=True,
            )
            self._thread.start()

        logger.info(f"Automatic backups enabled every {interval_hours} hours")

    def join(self, timeout: float | None = None) -> None:
        """Wait for the background loop to exit, up to timeout seconds."""
        with self._lock:
            thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def shutdown(self) -> None:
        """Stop the loop. The persisted schedule is left unchanged."""
        with self._lock:
            self._stop_locked()
            self._enabled = False
            self._interval_hours = 0
            self._next_run = None

    def _stop_locked(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        self._stop_event = None
        self._thread = None

    def _run_loop(self, stop_event: threading.Event, interval: timedelta) -> None:
        """Background loop; one run per interval until stop_event is set."""
        while not stop_event.wait(interval.total_seconds()):
            try:
                self.run_once(stop_event)
            except Exception as e:
                logger.error(f"Failed to create automatic backup: {e}")

            now = datetime.now(UTC)
            with self._lock:
                if self._stop_event is stop_event:
                    self._last_run = now
                    self._next_run = now + interval

    def run_once(self, cancel_event: threading.Event | None = None) -> Path:
        """
        Create one archive in the target directory.

        Args:
            cancel_event: Optional event that aborts the run when set.

        Returns:
            Path of the written archive.

        Raises:
            BackupError: If the archive cannot be created, saved or uploaded.
        """
        context = OperationContext.with_timeout(
            self.timeout_minutes * 60, cancel_event=cancel_event
        )
        path = self.service.write_archive(self.target_dir, context=context, upload=self.upload)
        logger.info(f"Automatic site backup created: {path}")
        return path
