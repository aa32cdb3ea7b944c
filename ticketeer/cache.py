"""
Redis read-through cache for event reads.

The cache is optional. When it is disabled or Redis cannot be reached every
read is a miss and every write is a no-op, so callers never need to check.
"""

import hashlib
import json
import logging
from typing import Any, Mapping, Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import RedisError

from .config import Settings

logger = logging.getLogger(__name__)


class CacheKeyBuilder:
    """Helper class for building consistent cache keys."""

    EVENT_LIST_PATTERN = "events:list:*"

    @staticmethod
    def event_detail(event_id: Any) -> str:
        return f"event:detail:{event_id}"

    @staticmethod
    def event_list(params: Mapping[str, Any]) -> str:
        """Key for a list query; equal parameter sets map to the same key."""
        canonical = json.dumps(
            {key: value for key, value in params.items() if value is not None},
            sort_keys=True,
            default=str,
            separators=(",", ":"),
        )
        digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
        return f"events:list:{digest}"

    @staticmethod
    def category_list() -> str:
        return "categories:all"

    @staticmethod
    def category_detail(slug: str) -> str:
        return f"category:detail:{slug}"


class CacheTTL:
    """Cache TTL constants in seconds."""

    EVENT_DETAIL = 600
    EVENT_LIST = 120
    CATEGORY = 3600


class RedisCache:
    """Redis cache manager with connection handling and operations."""

    def __init__(self, settings: Settings, client: Optional[Redis] = None):
        self.settings = settings
        self.client: Optional[Redis] = client
        self._owns_client = client is None

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def initialize(self) -> None:
        """Connect to Redis, degrading to a no-op cache on failure."""
        if not self.settings.cache_enabled:
            logger.info("Response cache disabled by configuration")
            self.client = None
            return

        if self.client is None:
            self.client = redis.from_url(
                self.settings.redis_url,
                retry_on_timeout=True,
                health_check_interval=30,
            )

        try:
            await self.client.ping()
            logger.info("Redis cache initialized successfully")
        except (RedisError, OSError) as e:
            logger.warning("Redis unavailable, continuing without cache: %s", e)
            await self.close()

    async def close(self) -> None:
        if self.client is not None and self._owns_client:
            try:
                await self.client.aclose()
            except (RedisError, OSError) as e:
                logger.warning("Error closing Redis client: %s", e)
            logger.info("Redis cache connections closed")
        self.client = None

    async def get(self, key: str) -> Optional[Any]:
        if not self.client:
            return None

        try:
            value = await self.client.get(key)
            if value is None:
                return None
            if isinstance(value, bytes):
                value = value.decode("utf-8")
            return json.loads(value)
        except (RedisError, OSError, ValueError) as e:
            logger.warning("Failed to get cache key %s: %s", key, e)
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.client:
            return False

        try:
            serialized_value = json.dumps(value, default=str)
            if ttl:
                await self.client.setex(key, ttl, serialized_value)
            else:
                await self.client.set(key, serialized_value)
            return True
        except (RedisError, OSError, TypeError) as e:
            logger.warning("Failed to set cache key %s: %s", key, e)
            return False

    async def delete(self, key: str) -> bool:
        if not self.client:
            return False

        try:
            await self.client.delete(key)
            return True
        except (RedisError, OSError) as e:
            logger.warning("Failed to delete cache key %s: %s", key, e)
            return False

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching a glob pattern.

        Args:
            pattern: Pattern to match (e.g., "events:list:*")

        Returns:
            Number of keys deleted
        """
        if not self.client:
            return 0

        try:
            keys = [key async for key in self.client.scan_iter(match=pattern)]
            if keys:
                await self.client.delete(*keys)
            return len(keys)
        except (RedisError, OSError) as e:
            logger.warning("Failed to delete keys with pattern %s: %s", pattern, e)
            return 0


class CacheInvalidator:
    """Drops cached event reads after an event or its inventory changes."""

    def __init__(self, cache: RedisCache):
        self.cache = cache

    async def invalidate_event(self, event_id: Any) -> None:
        if not self.cache.enabled:
            return
        await self.cache.delete(CacheKeyBuilder.event_detail(event_id))
        await self.cache.delete_pattern(CacheKeyBuilder.EVENT_LIST_PATTERN)
        logger.debug("Invalidated caches for event %s", event_id)

    async def invalidate_event_lists(self) -> None:
        await self.cache.delete_pattern(CacheKeyBuilder.EVENT_LIST_PATTERN)

    async def invalidate_category(self, slug: str) -> None:
        await self.cache.delete(CacheKeyBuilder.category_detail(slug))
        await self.cache.delete(CacheKeyBuilder.category_list())
