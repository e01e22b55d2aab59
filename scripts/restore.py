#!/usr/bin/env python3
"""
Roll the code table back to the backup slot written by the last sync.

Command-line restore utility with dry-run validation.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.backup import restore_previous, RestoreError
from src.core.config import DB_PATH
from src.core.dao import KVStore


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Restore the previous HS code table from the backup slot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --dry-run   # Show what would change without writing
  %(prog)s --force     # Restore without confirmation

The restore swaps the current and backup tables, so running it twice
returns to the original state. Sync metadata is rewritten with
syncType=rollback.
        """
    )

    parser.add_argument(
        "--db-path",
        default=DB_PATH,
        help=f"SQLite database path (default: {DB_PATH})"
    )

    parser.add_argument(
        "--dry-run", "-n",
        action="store_true",
        help="Validate the backup without performing the restore"
    )

    parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Skip the confirmation prompt"
    )

    args = parser.parse_args(argv)
    store = KVStore(args.db_path)

    try:
        if not args.dry_run and not args.force:
            preview = restore_previous(store, dry_run=True)
            print("WARNING: This will replace the current code table!")
            print(f"Target database: {args.db_path}")
            print(f"Current records: {preview.replaced_records}, backup records: {preview.restored_records}")
            print()

            response = input("Are you sure you want to proceed? (type 'yes' to continue): ")
            if response.lower() != 'yes':
                print("Operation cancelled by user.")
                return 0

        report = restore_previous(store, dry_run=args.dry_run)

    except RestoreError as e:
        print(f"ERROR: Restore failed: {e}")
        return 1

    changes = report.changes
    if args.dry_run:
        print("DRY RUN - Backup validation completed successfully")
    else:
        print("Restore completed successfully")
    print(f"Backup records: {report.restored_records}")
    print(f"Replaced records: {report.replaced_records}")
    print(f"Changes: +{changes.added} ~{changes.updated} -{changes.removed} ={changes.unchanged}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
