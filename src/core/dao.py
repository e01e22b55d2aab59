"""
Key-value access layer over SQLite.

Every call returns a value or raises StorageUnavailable; callers on the
resolution path decide to degrade, the sync engine decides what is fatal.
"""

import json
import sqlite3
from typing import Any, List, Optional

from .config import CURRENT_TABLE_KEY, DB_PATH
from .db import get_db, health_check, init_db
from .schema import CodeTable
from util.logging import logger


class StorageUnavailable(Exception):
    """Raised when the durable store cannot be read or written."""
    pass


class KVStore:
    """Durable key-value store keyed by slot name (current table, backup, metadata, lists)."""

    def __init__(self, db_path: str = None):
        self.db_path = db_path or DB_PATH
        init_db(self.db_path)

    def get(self, key: str) -> Optional[str]:
        """Get the raw value for a key, or None when absent."""
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT value FROM kv WHERE key = ?", (key,))
                row = cursor.fetchone()
        except sqlite3.Error as e:
            logger.log_store_operation("get", key, status="failed")
            raise StorageUnavailable(f"Failed to read '{key}': {e}") from e

        return row[0] if row else None

    def put(self, key: str, value: str) -> None:
        """Insert or overwrite a key."""
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP",
                    (key, value)
                )
                conn.commit()
        except sqlite3.Error as e:
            logger.log_store_operation("put", key, size=len(value), status="failed")
            raise StorageUnavailable(f"Failed to write '{key}': {e}") from e

        logger.log_store_operation("put", key, size=len(value))

    def delete(self, key: str) -> bool:
        """Delete a key. Returns False when it was not present."""
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("DELETE FROM kv WHERE key = ?", (key,))
                conn.commit()
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Failed to delete '{key}': {e}") from e

    def list_keys(self, prefix: str = "") -> List[str]:
        """List stored keys, optionally filtered by prefix."""
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT key FROM kv ORDER BY key")
                keys = [row[0] for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Failed to list keys: {e}") from e

        return [k for k in keys if k.startswith(prefix)]

    def get_json(self, key: str) -> Optional[Any]:
        """Get and decode a JSON value. Corrupt JSON is treated as unavailable."""
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageUnavailable(f"Corrupt JSON stored under '{key}': {e}") from e

    def put_json(self, key: str, value: Any) -> None:
        """Encode a value as JSON and store it."""
        self.put(key, json.dumps(value, ensure_ascii=False))

    def claim_lease(self, name: str, owner: str, ttl_sec: float, now: float) -> bool:
        """Claim a named lease unless another owner holds an unexpired one.

        The expired-row cleanup and the insert share one write transaction,
        so two processes racing for the same name cannot both succeed.
        """
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("BEGIN IMMEDIATE")
                cursor.execute("DELETE FROM leases WHERE name = ? AND expires_at <= ?", (name, now))
                cursor.execute(
                    "INSERT INTO leases (name, owner, expires_at) VALUES (?, ?, ?) "
                    "ON CONFLICT(name) DO NOTHING",
                    (name, owner, now + ttl_sec)
                )
                claimed = cursor.rowcount == 1
                conn.commit()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Failed to claim lease '{name}': {e}") from e

        logger.log_operation(f"lease.{name}", "success" if claimed else "skipped", {"owner": owner})
        return claimed

    def release_lease(self, name: str, owner: str) -> bool:
        """Release a lease held by `owner`. Returns False when it was not held."""
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("DELETE FROM leases WHERE name = ? AND owner = ?", (name, owner))
                conn.commit()
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Failed to release lease '{name}': {e}") from e

    def lease_holder(self, name: str, now: float) -> Optional[str]:
        """Owner of an unexpired lease, or None."""
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT owner FROM leases WHERE name = ? AND expires_at > ?", (name, now))
                row = cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Failed to read lease '{name}': {e}") from e

        return row[0] if row else None

    def health_check(self) -> bool:
        """Check the underlying database."""
        return health_check(self.db_path)


def load_code_table(store: KVStore, key: str = CURRENT_TABLE_KEY) -> CodeTable:
    """Read a stored code table snapshot. Absent slot yields an empty table."""
    data = store.get_json(key)
    if not data:
        return CodeTable.empty()
    if not isinstance(data, dict):
        raise StorageUnavailable(f"Unexpected code table format under '{key}'")
    return CodeTable.from_wire(data)
