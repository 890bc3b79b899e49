"""
Redis Cache Backend Module

This module implements a Redis cache backend. Redis outlives the process, so
this is the durable store used for persisted sessions on a device or host.
"""

import logging
from typing import Any, Dict, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .base import CacheBackend, CacheResult

logger = logging.getLogger(__name__)


class RedisCacheBackend(CacheBackend[str]):
    """
    Redis cache backend implementation.

    Values are stored as UTF-8 strings under a configurable key prefix so
    several apps can share one Redis database. Redis failures are logged and
    reported through ``CacheResult``; they are never raised to callers.
    """

    def __init__(
        self,
        redis_client: Optional[Redis] = None,
        url: str = "redis://localhost:6379/0",
        key_prefix: str = "roam:",
        name: str = "redis"
    ):
        """
        Initialize the Redis cache backend.

        Args:
            redis_client: Optional existing asyncio Redis client to use
            url: Redis connection URL used when no client is given
            key_prefix: Prefix for all Redis keys (default: "roam:")
            name: Name for this cache backend (default: "redis")
        """
        self._key_prefix = key_prefix
        self._name = name
        self._owns_client = redis_client is None
        self._redis = redis_client or Redis.from_url(url, decode_responses=False)

        self._hits = 0
        self._misses = 0
        self._errors = 0

    @property
    def name(self) -> str:
        return self._name

    def _build_key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    @staticmethod
    def _decode(data: Any) -> Optional[str]:
        if data is None:
            return None
        if isinstance(data, bytes):
            return data.decode("utf-8")
        return str(data)

    async def get(self, key: str) -> CacheResult[str]:
        redis_key = self._build_key(key)
        try:
            data = await self._redis.get(redis_key)
            if data is None:
                self._misses += 1
                return CacheResult(success=False, hit=False, source=self.name, error="Key not found")

            ttl = await self._redis.ttl(redis_key)
            self._hits += 1
            return CacheResult(
                success=True,
                value=self._decode(data),
                hit=True,
                ttl=ttl if ttl and ttl > 0 else None,
                source=self.name
            )
        except (RedisError, UnicodeDecodeError) as e:
            self._errors += 1
            logger.error(f"Redis error in get for {redis_key}: {e}")
            return CacheResult(success=False, hit=False, source=self.name, error=str(e))

    async def set(self, key: str, value: str, ttl: float = 0) -> CacheResult[str]:
        redis_key = self._build_key(key)
        try:
            if ttl and ttl > 0:
                await self._redis.set(redis_key, value.encode("utf-8"), ex=int(ttl))
            else:
                await self._redis.set(redis_key, value.encode("utf-8"))
            return CacheResult(
                success=True,
                value=value,
                ttl=ttl if ttl and ttl > 0 else None,
                source=self.name
            )
        except RedisError as e:
            self._errors += 1
            logger.error(f"Redis error in set for {redis_key}: {e}")
            return CacheResult(success=False, source=self.name, error=str(e))

    async def delete(self, key: str) -> bool:
        redis_key = self._build_key(key)
        try:
            return bool(await self._redis.delete(redis_key))
        except RedisError as e:
            self._errors += 1
            logger.error(f"Redis error in delete for {redis_key}: {e}")
            return False

    async def has(self, key: str) -> bool:
        redis_key = self._build_key(key)
        try:
            return bool(await self._redis.exists(redis_key))
        except RedisError as e:
            self._errors += 1
            logger.error(f"Redis error in has for {redis_key}: {e}")
            return False

    async def clear(self) -> bool:
        """Delete every key under this backend's prefix."""
        try:
            keys = [key async for key in self._redis.scan_iter(match=f"{self._key_prefix}*")]
            if keys:
                await self._redis.delete(*keys)
            return True
        except RedisError as e:
            self._errors += 1
            logger.error(f"Redis error in clear: {e}")
            return False

    async def get_stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        return {
            'backend': 'redis',
            'key_prefix': self._key_prefix,
            'hits': self._hits,
            'misses': self._misses,
            'hit_rate': self._hits / total if total > 0 else 0,
            'errors': self._errors
        }

    async def close(self) -> None:
        if self._owns_client:
            await self._redis.close()
