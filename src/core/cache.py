"""
Time-bounded cache of the current code table snapshot.
"""

import threading
import time
from typing import Callable, Optional

from .config import CACHE_TTL_SEC
from .schema import CodeTable
from util.logging import logger


class CodeTableCache:
    """Holds one snapshot and refreshes it from the loader once the TTL has passed.

    The snapshot reference is swapped, never mutated, so readers see either
    the old or the new table. A failing loader yields an empty table.
    """

    def __init__(self, loader: Callable[[], CodeTable], ttl_sec: float = CACHE_TTL_SEC,
                 clock: Callable[[], float] = time.monotonic):
        self.loader = loader
        self.ttl_sec = ttl_sec
        self.clock = clock
        self._snapshot: Optional[CodeTable] = None
        self._loaded_at: Optional[float] = None
        self._lock = threading.Lock()

    def _is_fresh(self) -> bool:
        return self._loaded_at is not None and (self.clock() - self._loaded_at) < self.ttl_sec

    def get(self) -> CodeTable:
        if self._snapshot is not None and self._is_fresh():
            return self._snapshot

        with self._lock:
            # Another reader may have refreshed while we waited
            if self._snapshot is not None and self._is_fresh():
                return self._snapshot

            try:
                snapshot = self.loader()
                logger.log_cache_refresh(len(snapshot))
            except Exception as e:
                logger.log_cache_refresh(0, status="degraded", error=str(e))
                snapshot = CodeTable.empty()

            self._snapshot = snapshot
            self._loaded_at = self.clock()
            return snapshot

    def invalidate(self) -> None:
        """Force the next get() to reload."""
        with self._lock:
            self._loaded_at = None

    @property
    def age(self) -> Optional[float]:
        if self._loaded_at is None:
            return None
        return self.clock() - self._loaded_at
