"""
Redis client for caching calculated field results.
"""
import json
from typing import Optional, Any
import redis.asyncio as redis
from redis.asyncio import Redis

from webhook_pipeline.core.config import settings
from webhook_pipeline.core.logging import get_logger

logger = get_logger(__name__)


class RedisClient:
    """
    Async Redis client for caching.

    Every operation degrades to a cache miss when Redis is disabled or
    unreachable; callers never see a cache error.
    """

    def __init__(self, url: Optional[str] = None, enabled: Optional[bool] = None):
        self.client: Optional[Redis] = None
        self.url = url or settings.REDIS_URL
        self.enabled = settings.CACHE_ENABLED if enabled is None else enabled
        if self.enabled:
            self._connect()

    def _connect(self):
        """Connect to Redis."""
        try:
            self.client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True
            )
            logger.info("Redis cache client configured")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self.client = None

    async def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Args:
            key: Cache key

        Returns:
            Cached value or None
        """
        if not self.client:
            return None

        try:
            value = await self.client.get(key)
            if value is None:
                return None
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return value
        except Exception as e:
            logger.error(f"Error getting from cache: {e}")
            return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None
    ) -> bool:
        """
        Set value in cache.

        Args:
            key: Cache key
            value: JSON-serializable value to cache
            ttl: Time to live in seconds (uses default if None)

        Returns:
            True if successful, False otherwise
        """
        if not self.client:
            return False

        try:
            ttl = ttl or settings.REDIS_CACHE_TTL
            await self.client.setex(key, ttl, json.dumps(value, default=str))
            return True
        except Exception as e:
            logger.error(f"Error setting cache: {e}")
            return False

    async def clear_pattern(self, pattern: str) -> int:
        """
        Clear all keys matching pattern.

        Args:
            pattern: Redis key pattern (e.g., "calc:<dataset_id>:*")

        Returns:
            Number of keys deleted
        """
        if not self.client:
            return 0

        try:
            keys = []
            async for key in self.client.scan_iter(match=pattern):
                keys.append(key)

            if keys:
                return await self.client.delete(*keys)
            return 0
        except Exception as e:
            logger.error(f"Error clearing cache pattern: {e}")
            return 0

    async def ping(self) -> bool:
        if not self.client:
            return False
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self):
        """Close Redis connection."""
        if self.client:
            await self.client.aclose()
            self.client = None


# Global instance
redis_client = RedisClient()
