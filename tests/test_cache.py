"""
Code table cache - TTL, invalidation and degraded loads.
"""

import pytest
from unittest.mock import MagicMock

from src.core.cache import CodeTableCache
from src.core.dao import StorageUnavailable
from src.core.schema import CodeTable


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestCodeTableCache:
    """Test snapshot caching behaviour."""

    def test_within_ttl_returns_same_snapshot(self, clock):
        loader = MagicMock(return_value=CodeTable({"0101": ("A",)}))
        cache = CodeTableCache(loader, ttl_sec=300, clock=clock)

        first = cache.get()
        clock.advance(299)
        second = cache.get()

        assert first is second
        loader.assert_called_once()

    def test_expired_ttl_triggers_one_reload(self, clock):
        loader = MagicMock(side_effect=[CodeTable({"0101": ("A",)}), CodeTable({"0102": ("B",)})])
        cache = CodeTableCache(loader, ttl_sec=300, clock=clock)

        first = cache.get()
        clock.advance(300)
        second = cache.get()
        third = cache.get()

        assert "0102" in second
        assert second is third
        assert first is not second
        assert loader.call_count == 2

    def test_invalidate_forces_reload(self, clock):
        loader = MagicMock(return_value=CodeTable.empty())
        cache = CodeTableCache(loader, ttl_sec=300, clock=clock)

        cache.get()
        cache.invalidate()
        cache.get()

        assert loader.call_count == 2

    def test_loader_failure_yields_empty_table(self, clock):
        loader = MagicMock(side_effect=StorageUnavailable("database is locked"))
        cache = CodeTableCache(loader, ttl_sec=300, clock=clock)

        table = cache.get()

        assert len(table) == 0
        # The empty result is held for the TTL like any other snapshot
        cache.get()
        assert loader.call_count == 1

    def test_recovers_after_failure_once_ttl_passes(self, clock):
        loader = MagicMock(side_effect=[RuntimeError("boom"), CodeTable({"0101": ("A",)})])
        cache = CodeTableCache(loader, ttl_sec=60, clock=clock)

        assert len(cache.get()) == 0
        clock.advance(61)
        assert "0101" in cache.get()

    def test_age(self, clock):
        cache = CodeTableCache(MagicMock(return_value=CodeTable.empty()), ttl_sec=60, clock=clock)
        assert cache.age is None

        cache.get()
        clock.advance(12)
        assert cache.age == 12
