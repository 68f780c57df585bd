"""
Cache - bounded in-memory TTL cache.

Used by the feed fetcher to share fetch results (and in-flight fetches)
per URL. Expired entries are dropped lazily on read and eagerly before
an insert that would exceed the capacity.
"""

import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable


@dataclass
class CacheEntry:
    key: str
    value: Any
    created_at: float
    expires_at: float | None


class CacheBackend(ABC):
    """Abstract base class for cache backends."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Get a value from cache."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Set a value in cache with optional TTL in seconds."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete a value from cache."""

    @abstractmethod
    def clear(self) -> None:
        """Clear all values from cache."""


class MemoryCache(CacheBackend):
    """In-memory cache with TTL and oldest-first eviction."""

    def __init__(
        self,
        max_size: int = 100,
        default_ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self._is_expired(entry):
            self.delete(key)
            return None

        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        now = self._clock()
        expires_at = now + ttl if ttl is not None else None

        # Re-inserting refreshes the entry's position
        self._entries.pop(key, None)

        if len(self._entries) >= self.max_size:
            self.prune_expired()
        while len(self._entries) >= self.max_size:
            self._entries.popitem(last=False)

        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            expires_at=expires_at,
        )

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def prune_expired(self) -> int:
        """Remove expired entries. Returns count of removed entries."""
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _is_expired(self, entry: CacheEntry) -> bool:
        return entry.expires_at is not None and entry.expires_at <= self._clock()

    @property
    def size(self) -> int:
        return len(self._entries)
