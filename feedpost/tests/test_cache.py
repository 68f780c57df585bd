"""
Tests for the in-memory TTL cache.
"""

import pytest

from feedpost.cache import MemoryCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestMemoryCache:
    """Tests for MemoryCache."""

    def test_set_and_get(self):
        """Stored values are returned."""
        cache = MemoryCache()
        cache.set("a", 1)
        assert cache.get("a") == 1
        assert cache.get("missing") is None

    def test_ttl_expiry(self):
        """Entries expire after their TTL."""
        clock = FakeClock()
        cache = MemoryCache(default_ttl=10, clock=clock)
        cache.set("a", "body")
        clock.now += 9.9
        assert cache.get("a") == "body"
        clock.now += 0.2
        assert cache.get("a") is None
        assert cache.size == 0

    def test_per_entry_ttl(self):
        """An explicit TTL overrides the default."""
        clock = FakeClock()
        cache = MemoryCache(default_ttl=100, clock=clock)
        cache.set("a", 1, ttl=1)
        clock.now += 2
        assert cache.get("a") is None

    def test_zero_ttl_expires_immediately(self):
        """A zero TTL disables caching."""
        cache = MemoryCache(default_ttl=0, clock=FakeClock())
        cache.set("a", 1)
        assert cache.get("a") is None

    def test_oldest_evicted(self):
        """The oldest entry is evicted at capacity."""
        cache = MemoryCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_expired_evicted_first(self):
        """Expired entries make room before live ones are evicted."""
        clock = FakeClock()
        cache = MemoryCache(max_size=2, clock=clock)
        cache.set("live", 1)
        cache.set("short", 2, ttl=1)
        clock.now += 5
        cache.set("new", 3)
        assert cache.get("live") == 1
        assert cache.get("new") == 3

    def test_reinsert_refreshes_position(self):
        """Re-setting a key makes it the newest entry."""
        cache = MemoryCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)
        cache.set("c", 3)
        assert cache.get("a") == 10
        assert cache.get("b") is None

    def test_delete_and_clear(self):
        """Entries can be removed one by one or all at once."""
        cache = MemoryCache()
        cache.set("a", 1)
        cache.set("b", 2)
        cache.delete("a")
        assert cache.get("a") is None
        cache.clear()
        assert cache.size == 0

    def test_invalid_size(self):
        """max_size must be positive."""
        with pytest.raises(ValueError):
            MemoryCache(max_size=0)
