#!/usr/bin/env python3
"""
Run one delta sync of the HS code table from the upstream nomenclature API.
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core import config
from src.core.dao import KVStore
from src.core.sync import build_sync_runner
from src.core.upstream import UpstreamClient


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run a delta sync of the HS code table")
    parser.add_argument("--db-path", default=config.DB_PATH, help=f"SQLite database path (default: {config.DB_PATH})")
    parser.add_argument("--pages", type=int, default=config.UPSTREAM_TOTAL_PAGES, help="Number of upstream pages to fetch")
    parser.add_argument("--delay", type=float, default=config.UPSTREAM_PAGE_DELAY_SEC, help="Seconds to wait between pages")
    parser.add_argument("--json", action="store_true", help="Print the sync report as JSON")
    args = parser.parse_args(argv)

    issues = config.validate_sync_config()
    if issues:
        print(f"❌ Invalid configuration: {issues}")
        return 1

    store = KVStore(args.db_path)
    client = UpstreamClient()
    try:
        runner = build_sync_runner(store, client, total_pages=args.pages, page_delay_sec=args.delay)
        report = runner.run()
    finally:
        client.close()

    if report is None:
        print("⏭️  Another sync is running against this database, nothing to do")
        return 2

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    else:
        icon = "✅" if report.success else "❌"
        print(f"{icon} {report.message}")
        print(f"   Pages: {report.successful_pages}/{args.pages} (skipped: {report.failed_pages or 'none'})")
        print(f"   Added: {report.added}  Updated: {report.updated}  Removed: {report.removed}  Unchanged: {report.unchanged}")
        print(f"   Total records: {report.total_records}  Duration: {report.duration_ms / 1000:.1f}s")

    return 0 if report.success else 1


if __name__ == "__main__":
    sys.exit(main())
