"""
Command-line interface for SiteBackup.

Provides commands to export a site to a backup archive, restore a site from
one, inspect an archive without restoring it, and manage automatic backups.

Uses Python's argparse module (no external CLI libraries).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import NoReturn

from sitebackup import __version__
from sitebackup.archive.manifest import BackupSummary
from sitebackup.backup.service import BackupService
from sitebackup.config.settings import ConfigurationError, Settings, load_config
from sitebackup.errors import BackupError, PromotionError
from sitebackup.storage.site_store import SiteStore

# Set up logging
logger = logging.getLogger(__name__)

# Exit codes
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_PROMOTION = 3
EXIT_INTERRUPTED = 130

# Global verbosity settings (set during main() based on args)
_quiet_mode = False


def set_output_mode(quiet: bool = False) -> None:
    """Set the output mode for the CLI."""
    global _quiet_mode
    _quiet_mode = quiet


def output(message: str = "", force: bool = False) -> None:
    """
    Print a message to stdout, respecting quiet mode.

    Args:
        message: The message to print.
        force: If True, print even in quiet mode (for essential output like JSON).
    """
    if force or not _quiet_mode:
        print(message)


def output_error(message: str) -> None:
    """Print an error message (always shown, even in quiet mode)."""
    print(message, file=sys.stderr)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for SiteBackup CLI."""
    parser = argparse.ArgumentParser(
        prog="sitebackup",
        description="Full-site backup and restore",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"sitebackup {__version__}",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Override config file location (default: ~/.sitebackup/config.yaml)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (can be repeated)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )

    # export command
    export_parser = subparsers.add_parser(
        "export",
        help="Create a backup archive",
        description="Snapshot the site's data and uploads into a zip archive.",
    )
    export_parser.add_argument(
        "--output",
        "-o",
        metavar="DIR",
        help="Output directory for the archive (default: from config)",
    )
    export_parser.add_argument(
        "--upload",
        action="store_true",
        help="Also upload the archive to the configured S3 bucket",
    )
    export_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the archive summary as JSON",
    )
    export_parser.set_defaults(func=cmd_export)

    # restore command
    restore_parser = subparsers.add_parser(
        "restore",
        help="Restore from a backup archive",
        description="Replace the site's data and uploads with an archive's contents.",
    )
    restore_parser.add_argument(
        "backup_file",
        metavar="FILE",
        help="Path to backup archive (.zip)",
    )
    restore_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompt",
    )
    restore_parser.set_defaults(func=cmd_restore)

    # inspect command
    inspect_parser = subparsers.add_parser(
        "inspect",
        help="Show what a backup archive contains",
        description="Read an archive's manifest without restoring it.",
    )
    inspect_parser.add_argument(
        "backup_file",
        metavar="FILE",
        help="Path to backup archive (.zip)",
    )
    inspect_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the summary as JSON",
    )
    inspect_parser.set_defaults(func=cmd_inspect)

    # auto-backup command
    auto_parser = subparsers.add_parser(
        "auto-backup",
        help="Manage automatic backups",
        description="Show, change or run the automatic backup schedule.",
    )
    auto_parser.add_argument(
        "action",
        choices=["status", "enable", "disable", "run"],
        help="status: show schedule; enable/disable: change it; run: run the scheduler",
    )
    auto_parser.add_argument(
        "--interval",
        type=int,
        metavar="HOURS",
        help="Hours between backups, 1-168 (with enable)",
    )
    auto_parser.add_argument(
        "--once",
        action="store_true",
        help="Create a single backup and exit (with run)",
    )
    auto_parser.set_defaults(func=cmd_auto_backup)

    return parser


def setup_logging(verbose: int, quiet: bool) -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.WARNING
    elif verbose == 0:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _load_settings(args: argparse.Namespace) -> Settings:
    config_path = Path(args.config) if args.config else None
    return load_config(config_path)


def build_service(settings: Settings, with_uploader: bool = False) -> BackupService:
    """
    Create a BackupService from settings.

    Args:
        settings: Loaded configuration.
        with_uploader: Attach an S3 uploader (requires s3 to be enabled).

    Raises:
        ConfigurationError: If an uploader is requested but s3 is not enabled.
    """
    uploader = None
    if with_uploader:
        if not settings.s3.enabled:
            raise ConfigurationError("Upload requested but s3 is not enabled in config")
        from sitebackup.remote.s3 import S3Uploader

        uploader = S3Uploader(settings.s3)

    store = SiteStore(settings.database_path)
    return BackupService(store, settings.upload_dir, uploader=uploader)


def print_summary(summary: BackupSummary) -> None:
    """Print a backup summary as an indented listing."""
    output(f"  Generated: {summary.generated_at.isoformat()}")
    if summary.restored_at is not None:
        output(f"  Restored: {summary.restored_at.isoformat()}")
    output(f"  Application: {summary.application}")
    output(f"  Schema version: {summary.schema_version}")
    output()
    for key, count in summary.counts().items():
        output(f"  {key.replace('_', ' ').capitalize():<14} {count:>8,}")


def cmd_export(args: argparse.Namespace) -> int:
    """Create a backup archive."""
    settings = _load_settings(args)
    service = build_service(settings, with_uploader=args.upload)

    output_dir = Path(args.output) if args.output else Path(settings.output_dir)

    output("SiteBackup Export")
    output("=" * 50)
    output()
    output(f"Database: {settings.database_path}")
    output(f"Uploads: {settings.upload_dir}")
    output(f"Output directory: {output_dir}")
    output()

    try:
        path = service.write_archive(output_dir, upload=args.upload)
        summary = service.inspect_archive(path)
    except BackupError as e:
        output_error(f"Export failed: {e}")
        return EXIT_FAILURE

    if args.json:
        payload = summary.to_dict()
        payload["path"] = str(path)
        output(json.dumps(payload, indent=2), force=True)
        return EXIT_OK

    size = path.stat().st_size
    output("Backup created successfully!")
    output()
    output(f"  File: {path}")
    output(f"  Size: {size:,} bytes ({size / 1024 / 1024:.2f} MB)")
    print_summary(summary)
    output()
    output("To restore from this backup, run:")
    output(f"  sitebackup restore {path}")
    return EXIT_OK


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore from a backup archive."""
    backup_path = Path(args.backup_file)

    if not backup_path.exists():
        output_error(f"Error: Backup file not found: {backup_path}")
        return EXIT_FAILURE

    settings = _load_settings(args)
    service = build_service(settings)

    output("SiteBackup Restore")
    output("=" * 50)
    output()
    output(f"Backup file: {backup_path}")
    output()

    try:
        info = service.inspect_archive(backup_path)
    except BackupError as e:
        output_error(f"Backup cannot be restored: {e}")
        return EXIT_FAILURE

    output("Backup information:")
    print_summary(info)
    output()

    if not args.force:
        output("WARNING: This will replace ALL site data and uploads.")
        output()
        response = input("Proceed with restore? [y/N]: ").strip().lower()
        if response not in ("y", "yes"):
            output("Restore cancelled.")
            return EXIT_OK

    output("Restoring...")
    try:
        with open(backup_path, "rb") as f:
            result = service.restore_archive(f, expected_size=backup_path.stat().st_size)
    except PromotionError as e:
        output_error(f"Restore incomplete: {e}")
        output_error("Site data was restored but the uploads directory was not replaced.")
        if not e.restored_previous:
            output_error(
                f"The previous uploads could not be put back; check {settings.upload_dir} "
                "and any .bak- directory next to it."
            )
        return EXIT_PROMOTION
    except BackupError as e:
        output_error(f"Restore failed ({e.phase or 'unknown'} phase): {e}")
        output_error("No changes were made to the site.")
        return EXIT_FAILURE

    output()
    output("Restore completed successfully!")
    output()
    print_summary(result.summary)
    for warning in result.cleanup_warnings:
        output(f"  Warning: could not remove {warning}")
    return EXIT_OK


def cmd_inspect(args: argparse.Namespace) -> int:
    """Show the contents of a backup archive."""
    backup_path = Path(args.backup_file)

    if not backup_path.exists():
        output_error(f"Error: Backup file not found: {backup_path}")
        return EXIT_FAILURE

    settings = _load_settings(args)
    service = build_service(settings)

    try:
        summary = service.inspect_archive(backup_path)
    except BackupError as e:
        output_error(f"Invalid backup archive: {e}")
        return EXIT_FAILURE

    if args.json:
        output(json.dumps(summary.to_dict(), indent=2), force=True)
        return EXIT_OK

    output(f"Backup archive: {backup_path}")
    print_summary(summary)
    return EXIT_OK


def cmd_auto_backup(args: argparse.Namespace) -> int:
    """Show, change or run the automatic backup schedule."""
    from sitebackup.scheduler import AutoBackupError, AutoBackupScheduler

    settings = _load_settings(args)
    service = build_service(settings, with_uploader=settings.s3.enabled)
    scheduler = AutoBackupScheduler(
        service,
        service.store,
        settings.auto_backup_dir,
        timeout_minutes=settings.auto_backup.timeout_minutes,
        upload=settings.s3.enabled,
    )

    try:
        if args.action == "status":
            current = scheduler.load_settings()
            output(f"Automatic backups: {'enabled' if current.enabled else 'disabled'}")
            output(f"  Interval: every {current.interval_hours} hours")
            output(f"  Target directory: {scheduler.target_dir}")
            output(f"  Upload to S3: {'yes' if scheduler.upload else 'no'}")
            return EXIT_OK

        if args.action in ("enable", "disable"):
            interval = args.interval
            if interval is None:
                interval = scheduler.load_settings().interval_hours
            updated = scheduler.update_settings(args.action == "enable", interval)
            scheduler.shutdown()
            state = "enabled" if updated.enabled else "disabled"
            output(f"Automatic backups {state} (every {updated.interval_hours} hours)")
            if updated.enabled:
                output("Run 'sitebackup auto-backup run' to start the scheduler.")
            return EXIT_OK

        if args.once:
            path = scheduler.run_once()
            output(f"Backup created: {path}")
            return EXIT_OK

        current = scheduler.load_settings()
        if not current.enabled:
            output_error("Automatic backups are disabled. Enable them first.")
            return EXIT_FAILURE

        scheduler.apply(current)
        output(f"Scheduler running every {current.interval_hours} hours. Press Ctrl+C to stop.")
        try:
            while scheduler.running:
                # Short joins so Ctrl+C is delivered promptly.
                scheduler.join(timeout=1)
        finally:
            scheduler.shutdown()
        return EXIT_OK

    except AutoBackupError as e:
        output_error(f"Automatic backup error: {e}")
        return EXIT_FAILURE
    except BackupError as e:
        output_error(f"Backup failed: {e}")
        return EXIT_FAILURE


def main() -> NoReturn:
    """Main entry point for SiteBackup CLI."""
    parser = create_parser()
    args = parser.parse_args()

    # Set up logging and output mode
    setup_logging(args.verbose, args.quiet)
    set_output_mode(args.quiet)

    if args.command is None:
        parser.print_help()
        sys.exit(EXIT_OK)

    try:
        exit_code = args.func(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        output("\nOperation cancelled.")
        sys.exit(EXIT_INTERRUPTED)
    except ConfigurationError as e:
        output_error(f"Configuration error: {e}")
        sys.exit(EXIT_CONFIG)
    except Exception as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
