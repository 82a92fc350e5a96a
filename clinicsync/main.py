"""
Clinic sync entry point.

Usage:
    python -m clinicsync.main serve     # Run the reconciliation server
    python -m clinicsync.main sync      # Push pending local changes once
    python -m clinicsync.main status    # Show local sync status

Settings come from CLINICSYNC_* environment variables (see AppConfig.from_env).
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .app.sync_application import SyncApplication
from .config.app_config import AppConfig
from .errors import ClinicSyncError
from .server.api import run_server

logger = logging.getLogger(__name__)


def run_sync_once(config: AppConfig) -> int:
    """Sync pending changes once and print the outcome."""
    config.sync.auto_sync = False
    with SyncApplication(config) as app:
        try:
            result = app.sync_now()
        except ClinicSyncError as e:
            print(f"Sync failed: {e}")
            return 1

        print(f"Accepted: {result.accepted}, conflicted: {result.conflicted}")
        for conflict in result.conflicts:
            print(f"  conflict {conflict.local_id} ({conflict.entity_type}): "
                  f"server has {json.dumps(conflict.existing)}")
    return 0


def show_status(config: AppConfig) -> int:
    """Print the local status summary as JSON."""
    config.sync.auto_sync = False
    with SyncApplication(config) as app:
        print(json.dumps(app.get_status_summary(), indent=2, default=str))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the sync tools.

    Returns:
        Process exit code
    """
    parser = argparse.ArgumentParser(
        description="Clinic offline sync",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("command", choices=["serve", "sync", "status"])
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    config = AppConfig.from_env()
    if args.command == "serve":
        run_server(config.server)
        return 0
    if args.command == "sync":
        return run_sync_once(config)
    return show_status(config)


if __name__ == "__main__":
    sys.exit(main())
