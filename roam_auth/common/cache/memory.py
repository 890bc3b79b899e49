"""
Memory Cache Backend Module

This module implements an in-memory cache backend using a dictionary-based
storage with thread safety and LRU eviction. It does not survive a process
restart and is meant for tests and ephemeral sessions.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, Optional, TypeVar

from .base import CacheBackend, CacheResult
from .entry import CacheEntry

logger = logging.getLogger(__name__)

V = TypeVar('V')


class MemoryCacheBackend(CacheBackend[V]):
    """
    In-memory cache backend implementation.

    Features:
    - Thread-safe operations
    - LRU eviction when reaching maximum size
    - Lazy removal of expired entries on access
    - Hit/miss statistics
    """

    def __init__(self, max_size: int = 1000, name: str = "memory"):
        """
        Initialize the memory cache backend.

        Args:
            max_size: Maximum number of entries to store (default: 1000)
            name: Name for this cache backend (default: "memory")
        """
        self._cache: "OrderedDict[str, CacheEntry[V]]" = OrderedDict()
        self._lock = threading.RLock()
        self._max_size = max_size
        self._name = name

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    @property
    def name(self) -> str:
        return self._name

    async def get(self, key: str) -> CacheResult[V]:
        with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                self._misses += 1
                return CacheResult(success=False, hit=False, source=self.name, error="Key not found")

            if entry.is_expired():
                del self._cache[key]
                self._expirations += 1
                self._misses += 1
                return CacheResult(success=False, hit=False, source=self.name, error="Entry expired")

            entry.access()
            self._cache.move_to_end(key)
            self._hits += 1

            return CacheResult(
                success=True,
                value=entry.value,
                hit=True,
                ttl=entry.get_ttl(),
                source=self.name
            )

    async def set(self, key: str, value: V, ttl: float = 0) -> CacheResult[V]:
        with self._lock:
            entry = CacheEntry(value, ttl=ttl)

            if key not in self._cache and len(self._cache) >= self._max_size:
                self._evict_entries()

            self._cache[key] = entry
            self._cache.move_to_end(key)

            return CacheResult(
                success=True,
                value=value,
                hit=False,
                ttl=entry.get_ttl(),
                source=self.name
            )

    async def delete(self, key: str) -> bool:
        with self._lock:
            if key in self._cache:
                del self._cache[key]
                return True
            return False

    async def has(self, key: str) -> bool:
        with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                return False

            if entry.is_expired():
                del self._cache[key]
                self._expirations += 1
                return False

            return True

    async def clear(self) -> bool:
        with self._lock:
            self._cache.clear()
            return True

    async def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                'backend': 'memory',
                'size': len(self._cache),
                'max_size': self._max_size,
                'hits': self._hits,
                'misses': self._misses,
                'hit_rate': self._hits / total if total > 0 else 0,
                'evictions': self._evictions,
                'expirations': self._expirations
            }

    def _evict_entries(self) -> None:
        """Evict least recently used entries until the cache has room."""
        while len(self._cache) >= self._max_size:
            key, _ = self._cache.popitem(last=False)
            self._evictions += 1
            logger.debug(f"Evicted cache entry {key}")

    def cleanup_expired(self, now: Optional[float] = None) -> int:
        """
        Remove expired entries from the cache.

        Returns:
            Number of entries removed
        """
        now = now if now is not None else time.time()
        with self._lock:
            expired_keys = [key for key, entry in self._cache.items() if entry.is_expired(now)]
            for key in expired_keys:
                del self._cache[key]
                self._expirations += 1
            return len(expired_keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
