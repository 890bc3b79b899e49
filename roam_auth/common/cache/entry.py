"""
Cache Entry Module

This module provides the CacheEntry class, which wraps a cached value with the
metadata needed for expiration and access tracking.
"""

import time
from typing import Generic, Optional, TypeVar

# Type variable for cached value
V = TypeVar('V')


class CacheEntry(Generic[V]):
    """
    Represents a cached value with metadata.

    Attributes:
        value: The cached value
        created_at: When the entry was created (epoch time)
        expires_at: When the entry expires (epoch time), or None for no expiration
        access_count: Number of times the entry has been accessed
        last_accessed: When the entry was last accessed (epoch time)
    """

    def __init__(self, value: V, ttl: Optional[float] = None):
        """
        Initialize a cache entry with a value and optional TTL.

        Args:
            value: The value to cache
            ttl: Time-to-live in seconds; None or 0 means no expiration
        """
        self.value = value
        self.created_at = time.time()
        self.expires_at = self.created_at + ttl if ttl else None
        self.access_count = 0
        self.last_accessed = self.created_at

    def is_expired(self, now: Optional[float] = None) -> bool:
        """
        Check if the entry has expired.

        Returns:
            True if the entry has expired, False otherwise
        """
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) > self.expires_at

    def access(self) -> None:
        """Record an access to this entry."""
        self.access_count += 1
        self.last_accessed = time.time()

    def get_ttl(self) -> Optional[float]:
        """
        Get the remaining TTL in seconds.

        Returns:
            Remaining TTL in seconds, or None if no expiration
        """
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.time())
