"""Async Redis cache manager with connection pooling and retry logic."""

import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError, RedisError, TimeoutError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import Settings

logger = logging.getLogger(__name__)

redis_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    retry=retry_if_exception_type((ConnectionError, TimeoutError)),
    reraise=True,
)


class CacheManager:
    """
    Redis cache manager used by the AI and logbook services.

    - Connection pooling through a shared redis.asyncio client
    - Retry with exponential backoff on transient connection errors
    - Graceful degradation: when Redis is unavailable every read is a miss
      and every write is a no-op, callers never depend on a hit
    - Pub/sub publishing for realtime notifications
    """

    def __init__(self, settings: Settings, client: Optional[aioredis.Redis] = None):
        self.settings = settings
        self.enabled = settings.CACHE_ENABLED
        self.prefix = settings.CACHE_KEY_PREFIX
        self._client: Optional[aioredis.Redis] = client
        self._owns_client = client is None
        self._is_connected = client is not None

        logger.info(f"CacheManager initialized. Enabled: {self.enabled}")

    async def connect(self) -> None:
        """Establish the Redis connection, falling back to degraded mode."""
        if not self.enabled:
            logger.info("Cache is disabled. Skipping Redis connection.")
            return

        try:
            if self._client is None:
                self._client = aioredis.from_url(
                    self.settings.REDIS_URL,
                    max_connections=self.settings.REDIS_MAX_CONNECTIONS,
                    socket_timeout=self.settings.REDIS_SOCKET_TIMEOUT,
                    health_check_interval=self.settings.REDIS_HEALTH_CHECK_INTERVAL,
                    decode_responses=True,
                )
            await self._client.ping()
            self._is_connected = True
            logger.info("Redis cache connected successfully")

        except (RedisError, OSError) as e:
            logger.error(f"Failed to connect to Redis cache: {e}")
            logger.warning("Cache will operate in degraded mode (no caching)")
            self._is_connected = False
            self.enabled = False

    async def disconnect(self) -> None:
        """Close the Redis client if this manager created it."""
        if self._client is not None and self._owns_client:
            try:
                await self._client.aclose()
                logger.info("Redis cache connection closed")
            except RedisError as e:
                logger.error(f"Error closing Redis connection: {e}")
        self._is_connected = False

    @property
    def available(self) -> bool:
        return self.enabled and self._client is not None

    def make_key(self, key: str) -> str:
        return f"{self.prefix}:{key}" if self.prefix else key

    @redis_retry
    async def _get_raw(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    @redis_retry
    async def _setex_raw(self, key: str, ttl: int, value: str) -> Any:
        return await self._client.setex(key, ttl, value)

    async def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Args:
            key: Cache key (without prefix)

        Returns:
            Cached value (deserialized from JSON) or None if not found/error
        """
        if not self.available:
            logger.debug(f"Cache disabled, returning None for key: {key}")
            return None

        full_key = self.make_key(key)
        try:
            value = await self._get_raw(full_key)
        except RedisError as e:
            logger.warning(f"Redis error getting key '{key}': {e}. Continuing without cache.")
            return None

        if value is None:
            logger.debug(f"Cache MISS: {key}")
            return None

        try:
            logger.debug(f"Cache HIT: {key}")
            return json.loads(value)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to deserialize cached value for key '{key}': {e}")
            await self.delete(key)
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Set value in cache with optional TTL.

        Args:
            key: Cache key (without prefix)
            value: Value to cache (will be JSON serialized)
            ttl: Time-to-live in seconds (None = use default TTL)

        Returns:
            True if successful, False otherwise
        """
        if not self.available:
            return False

        ttl = ttl or self.settings.CACHE_DEFAULT_TTL
        try:
            serialized_value = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to serialize value for key '{key}': {e}")
            return False

        try:
            result = await self._setex_raw(self.make_key(key), ttl, serialized_value)
            logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
            return bool(result)
        except RedisError as e:
            logger.warning(f"Redis error setting key '{key}': {e}. Continuing without cache.")
            return False

    async def delete(self, key: str) -> bool:
        if not self.available:
            return False
        try:
            return bool(await self._client.delete(self.make_key(key)))
        except RedisError as e:
            logger.error(f"Redis error deleting key '{key}': {e}")
            return False

    async def publish(self, channel: str, message: Any) -> bool:
        """Publish a JSON message on a pub/sub channel (best-effort)."""
        if not self.available:
            return False
        try:
            await self._client.publish(self.make_key(channel), json.dumps(message, default=str))
            return True
        except (RedisError, TypeError, ValueError) as e:
            logger.warning(f"Failed to publish to channel '{channel}': {e}")
            return False

    async def get_stats(self) -> dict:
        """Return basic cache statistics for the health endpoint."""
        if not self.available:
            return {"enabled": False, "connected": False}

        try:
            info = await self._client.info("stats")
            hits = info.get("keyspace_hits", 0)
            misses = info.get("keyspace_misses", 0)
            return {
                "enabled": True,
                "connected": self._is_connected,
                "keyspace_hits": hits,
                "keyspace_misses": misses,
                "hit_rate": hits / (hits + misses) if (hits + misses) > 0 else 0,
            }
        except RedisError as e:
            logger.error(f"Error getting cache stats: {e}")
            return {"enabled": True, "connected": False, "error": str(e)}
