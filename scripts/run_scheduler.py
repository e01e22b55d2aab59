#!/usr/bin/env python3
"""
Scheduled delta sync - runs the sync on SYNC_INTERVAL_SEC until stopped.

Runs share the database lease with the API and run_sync.py, so a tick that
lands while another sync is active is skipped.
"""

import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.config import DB_PATH, get_sync_interval, is_sync_schedule_enabled
from src.core.dao import KVStore
from src.core.scheduler import SyncScheduler
from src.core.sync import build_sync_runner
from src.core.upstream import UpstreamClient


def build_scheduler(db_path: str = DB_PATH) -> SyncScheduler:
    store = KVStore(db_path)
    runner = build_sync_runner(store, UpstreamClient())
    return SyncScheduler(runner, get_sync_interval())


def main():
    """Main entry point for the scheduler script."""
    if not is_sync_schedule_enabled():
        print("❌ Scheduled sync requires SYNC_SCHEDULE_ENABLED=true")
        return 1

    try:
        scheduler = build_scheduler()
        print(f"🏃 Configuring delta sync task (every {scheduler.interval_sec} seconds)")
        scheduler.start()
    except ValueError as e:
        print(f"❌ Scheduler failed: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
