#!/usr/bin/env python3
"""
Manage the sanctions and SANEPID restriction lists in the local store.

Code files hold one fixed-length code per line; lines starting with # are comments.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.config import DB_PATH, STATUS_CODE_LENGTH
from src.core.dao import KVStore, StorageUnavailable
from src.core.status import LIST_KEYS, StatusRegistry, load_codes_from_file


def cmd_list(registry: StatusRegistry, args) -> int:
    for list_type in sorted(LIST_KEYS):
        status_list = registry.get(list_type)
        print(f"✅ {list_type} ({status_list.count} codes)")
        for index, code in enumerate(sorted(status_list.prefixes), start=1):
            print(f"   {index}. {code}")
        if status_list.last_updated:
            print(f"   📅 Last updated: {status_list.last_updated.isoformat()}")
        print()
    return 0


def cmd_update(registry: StatusRegistry, args) -> int:
    codes = []
    for path in args.files:
        try:
            loaded = load_codes_from_file(path, STATUS_CODE_LENGTH)
        except OSError as e:
            print(f"❌ Cannot read {path}: {e}")
            return 1
        print(f"📄 Loaded {len(loaded)} codes from {path}")
        codes.extend(loaded)

    codes = list(dict.fromkeys(codes))
    if not codes:
        print("❌ No codes to update")
        return 1

    print()
    print("📊 Summary:")
    print(f"   • Type: {args.type}")
    print(f"   • Files: {', '.join(args.files)}")
    print(f"   • Unique codes: {len(codes)}")
    print(f"   • Examples: {', '.join(codes[:5])}{'...' if len(codes) > 5 else ''}")

    if not args.yes:
        response = input("Replace the current list? (type 'yes' to continue): ")
        if response.lower() != 'yes':
            print("Operation cancelled by user.")
            return 0

    try:
        result = registry.replace(args.type, codes, updated_by="manage_status")
    except StorageUnavailable as e:
        print(f"❌ Update failed: {e}")
        return 1

    print(f"✅ {args.type} list replaced: {result.accepted}/{result.submitted} codes accepted")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="Manage sanctions / SANEPID code lists")
    parser.add_argument("--db-path", default=DB_PATH, help=f"SQLite database path (default: {DB_PATH})")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="Show current lists")

    update = subparsers.add_parser("update", help="Replace a list from code files")
    update.add_argument("type", choices=sorted(LIST_KEYS), help="List to replace")
    update.add_argument("files", nargs="+", help="Files with one code per line")
    update.add_argument("--yes", "-y", action="store_true", help="Skip the confirmation prompt")

    args = parser.parse_args(argv)
    registry = StatusRegistry(KVStore(args.db_path))

    if args.command == "list":
        return cmd_list(registry, args)
    return cmd_update(registry, args)


if __name__ == "__main__":
    sys.exit(main())
