"""
Delta synchronization - full re-fetch of the upstream nomenclature, diffed
against the stored table and persisted with a rollback backup.

Write order during persist is fixed: backup of the old table, then the new
table, then metadata. The new table is never written before the backup has
been attempted.
"""

import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .config import (
    BACKUP_TABLE_KEY,
    CURRENT_TABLE_KEY,
    METADATA_KEY,
    SYNC_LEASE_TTL_SEC,
    UPSTREAM_PAGE_DELAY_SEC,
    UPSTREAM_TOTAL_PAGES,
    VERSION,
)
from .dao import KVStore, StorageUnavailable, load_code_table
from .schema import ChangeSummary, CodeRecord, CodeTable
from .upstream import UpstreamClient
from util.logging import logger

SYNC_TYPE_DELTA = "delta"
SYNC_TYPE_NONE = "none"
SYNC_TYPE_ERROR_FALLBACK = "error_fallback"

SYNC_LEASE_NAME = "delta_sync"


class UpstreamUnavailable(Exception):
    """No page of the upstream dataset could be fetched."""

    def __init__(self, message: str, failed_pages: Sequence[int] = (), successful_pages: int = 0):
        super().__init__(message)
        self.failed_pages = list(failed_pages)
        self.successful_pages = successful_pages


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DIFFING = "diffing"
    PERSISTING = "persisting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class SyncReport:
    success: bool
    message: str
    added: int = 0
    updated: int = 0
    removed: int = 0
    unchanged: int = 0
    total_records: int = 0
    duration_ms: int = 0
    successful_pages: int = 0
    failed_pages: List[int] = field(default_factory=list)
    backup_written: bool = False
    table_written: bool = False
    error: Optional[str] = None
    error_type: Optional[str] = None
    finished_at: Optional[datetime] = None

    @property
    def partial(self) -> bool:
        return bool(self.failed_pages) and self.successful_pages > 0

    @property
    def changes(self) -> ChangeSummary:
        return ChangeSummary(self.added, self.updated, self.removed, self.unchanged)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "changes": self.changes.to_dict(),
            "totalRecords": self.total_records,
            "durationMs": self.duration_ms,
            "successfulPages": self.successful_pages,
            "failedPages": list(self.failed_pages),
            "partial": self.partial,
            "error": self.error,
            "errorType": self.error_type,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class SyncMetadata:
    last_sync: datetime
    total_records: int
    changes: ChangeSummary
    sync_type: str
    successful_pages: int = 0
    failed_pages: List[int] = field(default_factory=list)
    error: Optional[str] = None
    version: str = VERSION

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "lastSync": self.last_sync.isoformat(),
            "totalRecords": self.total_records,
            "changes": self.changes.to_dict(),
            "version": self.version,
            "syncType": self.sync_type,
            "successfulPages": self.successful_pages,
            "failedPages": list(self.failed_pages),
        }
        if self.error:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SyncMetadata":
        changes = data.get("changes") or {}
        return cls(
            last_sync=datetime.fromisoformat(data["lastSync"].replace("Z", "+00:00")),
            total_records=int(data.get("totalRecords", 0)),
            changes=ChangeSummary(**{k: int(changes.get(k, 0)) for k in ("added", "updated", "removed", "unchanged")}),
            sync_type=data.get("syncType", "unknown"),
            successful_pages=int(data.get("successfulPages", 0)),
            failed_pages=list(data.get("failedPages") or []),
            error=data.get("error"),
            version=data.get("version", VERSION),
        )


def flatten_tree(node: Mapping[str, Any], parents: Tuple[str, ...] = ()) -> List[CodeRecord]:
    """Walk a nomenclature tree depth-first into flat records.

    A node's description extends the breadcrumb for itself and its children.
    A node with a code yields a record whether or not it has children.
    """
    records = []

    labels = parents
    description = node.get("description")
    if isinstance(description, str) and description.strip():
        labels = parents + (description.strip(),)

    code = node.get("code")
    if code:
        records.append(CodeRecord(code=str(code).strip(), labels=labels))

    children = node.get("subgroup")
    if isinstance(children, list):
        for child in children:
            if isinstance(child, Mapping):
                records.extend(flatten_tree(child, labels))

    return records


def diff_tables(old: Mapping[str, Any], new: Mapping[str, Any]) -> ChangeSummary:
    """Count added / updated / removed / unchanged codes over the key union."""
    added = updated = removed = unchanged = 0

    for code in set(old) | set(new):
        in_old = code in old
        in_new = code in new
        if in_new and not in_old:
            added += 1
        elif in_old and not in_new:
            removed += 1
        elif old[code] != new[code]:
            updated += 1
        else:
            unchanged += 1

    return ChangeSummary(added=added, updated=updated, removed=removed, unchanged=unchanged)


def read_metadata(store: KVStore) -> Optional[SyncMetadata]:
    """Last written sync metadata, or None when never synced or unreadable."""
    try:
        data = store.get_json(METADATA_KEY)
    except StorageUnavailable as e:
        logger.warning(f"Sync metadata unavailable: {e}")
        return None

    if not data:
        return None
    try:
        return SyncMetadata.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Sync metadata malformed: {e}")
        return None


class SyncEngine:
    """One delta-sync run against the store. Not safe to run concurrently; see SyncRunner."""

    def __init__(self, store: KVStore, client: UpstreamClient, total_pages: int = UPSTREAM_TOTAL_PAGES,
                 page_delay_sec: float = UPSTREAM_PAGE_DELAY_SEC, sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
                 timer: Callable[[], float] = time.monotonic):
        self.store = store
        self.client = client
        self.total_pages = total_pages
        self.page_delay_sec = page_delay_sec
        self.sleep = sleep
        self.clock = clock
        self.timer = timer
        self.state = SyncState.IDLE

    def fetch_all(self) -> Tuple[Dict[str, Tuple[str, ...]], int, List[int]]:
        """Fetch pages 1..N sequentially. Failed pages are skipped, never retried."""
        table: Dict[str, Tuple[str, ...]] = {}
        successful = 0
        failed: List[int] = []

        for page in range(1, self.total_pages + 1):
            try:
                records = flatten_tree(self.client.fetch_page(page))
            except Exception as e:
                failed.append(page)
                logger.log_sync_page(page, self.total_pages, status="skipped", error=str(e))
            else:
                for record in records:
                    table[record.code] = record.labels
                successful += 1
                logger.log_sync_page(page, self.total_pages, records=len(records))

            if page < self.total_pages and self.page_delay_sec > 0:
                self.sleep(self.page_delay_sec)

        if successful == 0:
            raise UpstreamUnavailable(
                f"No pages fetched from upstream ({len(failed)}/{self.total_pages} failed)", failed_pages=failed
            )

        # A 200 with an error body or an unfamiliar shape flattens to nothing
        if not table:
            raise UpstreamUnavailable(
                f"Upstream returned no codes ({successful} pages fetched)", failed_pages=failed, successful_pages=successful
            )

        return table, successful, failed

    def _persist(self, old: CodeTable, new: CodeTable, changes: ChangeSummary,
                 successful: int, failed: List[int], report: SyncReport) -> None:
        now = self.clock()

        if changes.total_changes > 0:
            if len(old) > 0:
                try:
                    self.store.put_json(BACKUP_TABLE_KEY, old.to_wire())
                    report.backup_written = True
                except StorageUnavailable as e:
                    logger.log_operation("sync.backup", "degraded", {"error": str(e)[:100]})

            # Fatal on failure: the previous table (and its backup) stay in place
            self.store.put_json(CURRENT_TABLE_KEY, new.to_wire())
            report.table_written = True
            sync_type = SYNC_TYPE_DELTA
        else:
            sync_type = SYNC_TYPE_NONE

        metadata = SyncMetadata(
            last_sync=now,
            total_records=len(new),
            changes=changes,
            sync_type=sync_type,
            successful_pages=successful,
            failed_pages=failed,
        )
        try:
            self.store.put_json(METADATA_KEY, metadata.to_dict())
        except StorageUnavailable as e:
            logger.log_operation("sync.metadata", "degraded", {"error": str(e)[:100]})

    def _write_fallback_metadata(self, old: Optional[CodeTable], error: Exception) -> None:
        total = len(old) if old is not None else 0
        metadata = SyncMetadata(
            last_sync=self.clock(),
            total_records=total,
            changes=ChangeSummary(unchanged=total),
            sync_type=SYNC_TYPE_ERROR_FALLBACK,
            error=str(error),
        )
        try:
            self.store.put_json(METADATA_KEY, metadata.to_dict())
        except Exception as e:
            logger.error(f"Fallback metadata write failed: {e}")

    def run(self) -> SyncReport:
        start_time = self.timer()
        old: Optional[CodeTable] = None
        successful, failed = 0, []

        try:
            # Absent slot is a first run; an unreadable one fails the run
            old = load_code_table(self.store)
            logger.info(f"Sync starting with {len(old)} existing codes")

            self.state = SyncState.FETCHING
            entries, successful, failed = self.fetch_all()

            self.state = SyncState.DIFFING
            changes = diff_tables(old.entries, entries)
            new = CodeTable(entries, last_sync=self.clock(), change_summary=changes)

            self.state = SyncState.PERSISTING
            report = SyncReport(success=True, message="")
            self._persist(old, new, changes, successful, failed, report)

        except Exception as e:
            self.state = SyncState.FAILED
            if isinstance(e, UpstreamUnavailable):
                failed = e.failed_pages
                successful = e.successful_pages
            end_time = self.timer()
            self._write_fallback_metadata(old, e)
            logger.log_sync_summary(start_time, end_time, status="failed", details={"error": str(e)[:200]})
            return SyncReport(
                success=False,
                message=f"Delta sync failed: {e}",
                total_records=len(old) if old is not None else 0,
                unchanged=len(old) if old is not None else 0,
                duration_ms=int((end_time - start_time) * 1000),
                successful_pages=successful,
                failed_pages=failed,
                error=str(e),
                error_type=type(e).__name__,
                finished_at=self.clock(),
            )

        self.state = SyncState.SUCCEEDED
        end_time = self.timer()
        report.added = changes.added
        report.updated = changes.updated
        report.removed = changes.removed
        report.unchanged = changes.unchanged
        report.total_records = len(new)
        report.duration_ms = int((end_time - start_time) * 1000)
        report.successful_pages = successful
        report.failed_pages = failed
        report.finished_at = self.clock()
        report.message = "Delta sync completed" if changes.total_changes else "Delta sync completed, no changes"
        if failed:
            report.message += f" ({len(failed)} of {self.total_pages} pages skipped)"

        logger.log_sync_summary(start_time, end_time, details={
            "total_records": len(new),
            "changes": changes.to_dict(),
            "failed_pages": failed,
        })
        return report


class SyncLease:
    """Store-backed run slot shared by every process syncing against the same database.

    A holder that dies without releasing blocks other runs until the lease
    expires.
    """

    def __init__(self, store: KVStore, name: str = SYNC_LEASE_NAME, ttl_sec: float = SYNC_LEASE_TTL_SEC,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.name = name
        self.ttl_sec = ttl_sec
        self.clock = clock
        self._owner: Optional[str] = None

    def acquire(self) -> bool:
        owner = uuid.uuid4().hex
        if not self.store.claim_lease(self.name, owner, self.ttl_sec, self.clock()):
            return False
        self._owner = owner
        return True

    def release(self) -> None:
        if self._owner is None:
            return
        try:
            self.store.release_lease(self.name, self._owner)
        except StorageUnavailable as e:
            logger.warning(f"Sync lease release failed, it expires within {self.ttl_sec}s: {e}")
        finally:
            self._owner = None

    def is_held(self) -> bool:
        """True while any process holds an unexpired lease."""
        return self.store.lease_holder(self.name, self.clock()) is not None


class SyncRunner:
    """Single slot for sync runs: a thread lock within the process, plus the store lease across processes."""

    def __init__(self, engine_factory: Callable[[], SyncEngine],
                 on_success: Optional[Callable[[SyncReport], None]] = None,
                 lease: Optional[SyncLease] = None):
        self.engine_factory = engine_factory
        self.on_success = on_success
        self.lease = lease
        self.last_report: Optional[SyncReport] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        if self._lock.locked():
            return True
        if self.lease is None:
            return False
        try:
            return self.lease.is_held()
        except StorageUnavailable:
            return False

    def try_start(self) -> bool:
        """Claim the slot. False when a run is already in progress here or in another process."""
        if not self._lock.acquire(blocking=False):
            return False
        if self.lease is None:
            return True

        try:
            claimed = self.lease.acquire()
        except Exception:
            self._lock.release()
            raise

        if not claimed:
            self._lock.release()
            logger.log_operation("sync.run", "skipped", {"reason": "lease held by another process"})
        return claimed

    def run_claimed(self) -> SyncReport:
        """Execute a run in a slot already claimed by try_start(), then release it."""
        try:
            report = self.engine_factory().run()
            self.last_report = report
            if report.success and self.on_success:
                self.on_success(report)
            return report
        finally:
            if self.lease is not None:
                self.lease.release()
            self._lock.release()

    def run(self) -> Optional[SyncReport]:
        """Claim the slot and run. None when another run holds it."""
        if not self.try_start():
            logger.log_operation("sync.run", "skipped", {"reason": "already running"})
            return None
        return self.run_claimed()


def build_sync_runner(store: KVStore, client: UpstreamClient,
                      on_success: Optional[Callable[[SyncReport], None]] = None, **engine_options) -> SyncRunner:
    """Runner whose runs are serialized with every other process using `store`."""
    return SyncRunner(
        lambda: SyncEngine(store, client, **engine_options),
        on_success=on_success,
        lease=SyncLease(store),
    )
