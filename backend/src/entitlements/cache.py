"""Redis read-through cache for catalog lookups.

The cache is best effort: every failure is logged and treated as a miss, so
a Redis outage only costs database reads. Usage counters are never cached.
"""
import json
from typing import Any, Optional

import redis.asyncio as redis
import structlog

from entitlements.config import settings

logger = structlog.get_logger(__name__)


class RedisCache:
    """Redis-based caching layer."""

    def __init__(self, url: Optional[str] = None, enabled: Optional[bool] = None):
        """Initialize lazily; the connection is opened on first use."""
        self.url = url or str(settings.redis_url)
        self.enabled = settings.cache_enabled if enabled is None else enabled
        self.redis_client: Optional[redis.Redis] = None

    async def _ensure_connection(self) -> redis.Redis:
        if self.redis_client is None:
            client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
            await client.ping()
            self.redis_client = client
            logger.info("redis_connected")
        return self.redis_client

    async def get(self, key: str) -> Optional[Any]:
        """
        Get a JSON value from cache.

        Returns:
            Cached value, or None on a miss, when disabled, or on Redis errors
        """
        if not self.enabled:
            return None

        try:
            client = await self._ensure_connection()
            value = await client.get(key)
        except redis.RedisError as e:
            logger.warning("cache_get_failed", key=key, error=str(e))
            return None

        if value is None:
            logger.debug("cache_miss", key=key)
            return None

        logger.debug("cache_hit", key=key)
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.warning("cache_value_corrupt", key=key)
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Store a JSON-serializable value.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time-to-live in seconds (default: plan_cache_ttl_seconds)

        Returns:
            True if stored
        """
        if not self.enabled:
            return False

        ttl = ttl if ttl is not None else settings.plan_cache_ttl_seconds
        try:
            client = await self._ensure_connection()
            await client.setex(key, ttl, json.dumps(value))
        except redis.RedisError as e:
            logger.warning("cache_set_failed", key=key, error=str(e))
            return False

        logger.debug("cache_set", key=key, ttl=ttl)
        return True

    async def delete(self, key: str) -> bool:
        """Delete a key; True if it existed."""
        if not self.enabled:
            return False

        try:
            client = await self._ensure_connection()
            result = await client.delete(key)
        except redis.RedisError as e:
            logger.warning("cache_delete_failed", key=key, error=str(e))
            return False

        return bool(result)

    async def invalidate_pattern(self, pattern: str) -> int:
        """
        Invalidate all keys matching a pattern.

        Args:
            pattern: Key pattern (e.g., "plan:*", "plan_list:*")

        Returns:
            Number of keys deleted
        """
        if not self.enabled:
            return 0

        deleted = 0
        try:
            client = await self._ensure_connection()
            async for key in client.scan_iter(match=pattern):
                await client.delete(key)
                deleted += 1
        except redis.RedisError as e:
            logger.warning("cache_pattern_invalidation_failed", pattern=pattern, error=str(e))
            return deleted

        logger.info("cache_pattern_invalidated", pattern=pattern, count=deleted)
        return deleted

    async def close(self) -> None:
        """Close Redis connection."""
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("redis_closed")


# Global cache instance
cache = RedisCache()


def cache_key(entity_type: str, entity_id: str, suffix: str = "") -> str:
    """
    Generate consistent cache key.

    Args:
        entity_type: Entity type (plan, plan_list, ...)
        entity_id: Entity ID
        suffix: Optional suffix for variations

    Returns:
        Cache key string
    """
    if suffix:
        return f"{entity_type}:{entity_id}:{suffix}"
    return f"{entity_type}:{entity_id}"
