"""
Rollback of the code table to the backup slot written by the last sync.

The swap keeps both tables: the restored backup becomes current and the
replaced table takes its place in the backup slot, so a restore can itself
be undone by restoring again.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .config import BACKUP_TABLE_KEY, CURRENT_TABLE_KEY, METADATA_KEY
from .dao import KVStore, StorageUnavailable, load_code_table
from .schema import ChangeSummary
from .sync import SyncMetadata, diff_tables
from util.logging import logger

SYNC_TYPE_ROLLBACK = "rollback"


class RestoreError(Exception):
    """Custom exception for restore operations."""
    pass


@dataclass
class RestoreReport:
    restored_records: int
    replaced_records: int
    changes: ChangeSummary
    dry_run: bool
    restored_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "restored_records": self.restored_records,
            "replaced_records": self.replaced_records,
            "changes": self.changes.to_dict(),
            "dry_run": self.dry_run,
            "restored_at": self.restored_at.isoformat() if self.restored_at else None,
        }


def restore_previous(store: KVStore, dry_run: bool = False) -> RestoreReport:
    """Make the backup table current.

    Raises:
        RestoreError: no backup exists or the store cannot be read/written
    """
    try:
        backup = load_code_table(store, BACKUP_TABLE_KEY)
        current = load_code_table(store, CURRENT_TABLE_KEY)
    except StorageUnavailable as e:
        raise RestoreError(f"Cannot read tables: {e}") from e

    if len(backup) == 0:
        raise RestoreError("No backup table available to restore")

    changes = diff_tables(current.entries, backup.entries)
    report = RestoreReport(
        restored_records=len(backup),
        replaced_records=len(current),
        changes=changes,
        dry_run=dry_run,
    )

    if dry_run:
        logger.log_operation("restore.validate", "success", report.to_dict())
        return report

    now = datetime.now(timezone.utc)
    swapped = False
    try:
        if len(current) > 0:
            store.put_json(BACKUP_TABLE_KEY, current.to_wire())
            swapped = True
        store.put_json(CURRENT_TABLE_KEY, backup.to_wire())
    except StorageUnavailable as e:
        logger.log_operation("restore", "failed", {"error": str(e)[:100]})
        if swapped:
            # Current slot is unchanged; put the original backup back
            try:
                store.put_json(BACKUP_TABLE_KEY, backup.to_wire())
            except StorageUnavailable as undo_error:
                logger.error(f"Backup slot could not be reinstated: {undo_error}")
        raise RestoreError(f"Restore write failed: {e}") from e

    metadata = SyncMetadata(
        last_sync=now,
        total_records=len(backup),
        changes=changes,
        sync_type=SYNC_TYPE_ROLLBACK,
    )
    try:
        store.put_json(METADATA_KEY, metadata.to_dict())
    except StorageUnavailable as e:
        logger.warning(f"Rollback metadata write failed: {e}")

    report.restored_at = now
    logger.log_operation("restore", "success", report.to_dict())
    return report
