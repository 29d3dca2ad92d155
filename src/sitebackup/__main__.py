"""
Entry point for running SiteBackup as a module.

Usage:
    python -m sitebackup [command] [options]
"""

from sitebackup.cli import main

if __name__ == "__main__":
    main()
