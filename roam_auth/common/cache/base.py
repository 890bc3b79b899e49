"""
Base Cache Module

This module defines the core interface for the key-value stores backing the
persisted session cache, together with the result type every backend returns.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, TypeVar

# Type variable for cached values
V = TypeVar('V')


class CacheError(Exception):
    """Base exception for cache-related errors."""
    pass


@dataclass
class CacheResult(Generic[V]):
    """
    Result of a cache operation.

    Attributes:
        success: Whether the operation was successful
        value: The value retrieved or stored
        hit: Whether the value was found in cache (for get operations)
        ttl: Remaining time-to-live in seconds
        source: Source of the cached value (e.g., 'memory', 'redis')
        error: Optional error message if the operation failed
    """
    success: bool
    value: Optional[V] = None
    hit: bool = False
    ttl: Optional[float] = None
    source: Optional[str] = None
    error: Optional[str] = None


class CacheBackend(Generic[V], ABC):
    """
    Abstract interface for cache backends.

    Keys are plain strings. Backends never raise for a missing key; ``get``
    reports a miss through ``CacheResult.hit``.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the name of this cache backend."""
        pass

    @abstractmethod
    async def get(self, key: str) -> CacheResult[V]:
        """
        Retrieve a value from the cache.

        Args:
            key: The cache key

        Returns:
            CacheResult with the value and metadata
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: V, ttl: float = 0) -> CacheResult[V]:
        """
        Store a value in the cache.

        Args:
            key: The cache key
            value: The value to cache
            ttl: Time-to-live in seconds (0 means no expiration)

        Returns:
            CacheResult indicating success/failure
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete a value from the cache.

        Returns:
            True if the value was deleted, False otherwise
        """
        pass

    @abstractmethod
    async def has(self, key: str) -> bool:
        """Check if a key exists in the cache."""
        pass

    @abstractmethod
    async def clear(self) -> bool:
        """Clear all entries owned by this backend."""
        pass

    async def get_many(self, keys: List[str]) -> Dict[str, CacheResult[V]]:
        """
        Retrieve multiple values from the cache.

        Args:
            keys: List of cache keys

        Returns:
            Dictionary mapping keys to CacheResults
        """
        results = {}
        for key in keys:
            results[key] = await self.get(key)
        return results

    async def delete_many(self, keys: List[str]) -> Dict[str, bool]:
        """
        Delete multiple values from the cache.

        Args:
            keys: List of cache keys

        Returns:
            Dictionary mapping keys to deletion success status
        """
        results = {}
        for key in keys:
            results[key] = await self.delete(key)
        return results

    @abstractmethod
    async def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the cache."""
        pass

    async def close(self) -> None:
        """Release any connection held by the backend."""
        return None
