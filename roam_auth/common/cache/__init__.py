"""
Session Cache Backends

This package provides the key-value stores that back the persisted session
cache: an in-memory backend for tests and ephemeral use, and a Redis backend
for sessions that must survive a restart.
"""

from roam_auth.common.cache.base import (
    CacheBackend,
    CacheResult,
    CacheError
)

from roam_auth.common.cache.entry import CacheEntry

from roam_auth.common.cache.memory import MemoryCacheBackend

from roam_auth.common.cache.redis import RedisCacheBackend


def create_cache_backend(backend: str = "memory", **options) -> CacheBackend:
    """
    Build a cache backend by name.

    Args:
        backend: "memory" or "redis"
        **options: Keyword arguments forwarded to the backend constructor

    Returns:
        The constructed backend
    """
    if backend == "memory":
        return MemoryCacheBackend(**options)
    if backend == "redis":
        return RedisCacheBackend(**options)
    raise CacheError(f"Unknown cache backend: {backend}")


__all__ = [
    'CacheBackend',
    'CacheResult',
    'CacheError',
    'CacheEntry',
    'MemoryCacheBackend',
    'RedisCacheBackend',
    'create_cache_backend',
]
