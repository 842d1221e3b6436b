"""
Redis cache configuration and utilities.
"""
import json
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.logging import get_logger
from app.domain.interfaces.storage import ICacheService

logger = get_logger(__name__)

# Redis connection pool
redis_pool: Optional[redis.ConnectionPool] = None


async def get_redis_pool() -> redis.ConnectionPool:
    """
    Get or create Redis connection pool.

    Returns:
        Redis connection pool
    """
    global redis_pool

    if redis_pool is None:
        redis_pool = redis.ConnectionPool.from_url(
            str(settings.REDIS_URL),
            decode_responses=True,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
        )

    return redis_pool


async def get_redis() -> redis.Redis:
    """
    Get Redis client instance.

    Returns:
        Redis client
    """
    pool = await get_redis_pool()
    return redis.Redis(connection_pool=pool)


async def close_redis() -> None:
    """Disconnect the shared connection pool."""
    global redis_pool

    if redis_pool is not None:
        await redis_pool.disconnect()
        redis_pool = None


class RedisCache(ICacheService):
    """
    Redis-backed cache used for rate-limit counters, metric samples
    and cached usage figures.

    Read and write failures are logged and reported as misses; counter
    failures propagate so callers can decide how to degrade.
    """

    def __init__(self, prefix: Optional[str] = None):
        self.prefix = prefix or settings.REDIS_KEY_PREFIX

    def _make_key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            client = await get_redis()
            value = await client.get(self._make_key(key))

            if value:
                return json.loads(value)

            return None
        except (RedisError, json.JSONDecodeError) as e:
            logger.error("Redis get error", key=key, error=str(e))
            return None

    async def set(
        self,
        key: str,
        value: Any,
        expire: Optional[int] = None,
    ) -> bool:
        try:
            client = await get_redis()
            serialized = json.dumps(value, default=str)

            if expire:
                await client.setex(self._make_key(key), expire, serialized)
            else:
                await client.set(self._make_key(key), serialized)

            return True
        except (RedisError, TypeError, ValueError) as e:
            logger.error("Redis set error", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        try:
            client = await get_redis()
            await client.delete(self._make_key(key))
            return True
        except RedisError as e:
            logger.error("Redis delete error", key=key, error=str(e))
            return False

    async def exists(self, key: str) -> bool:
        try:
            client = await get_redis()
            return bool(await client.exists(self._make_key(key)))
        except RedisError as e:
            logger.error("Redis exists error", key=key, error=str(e))
            return False

    async def ping(self) -> bool:
        """Ping the server; connection errors propagate."""
        client = await get_redis()
        return bool(await client.ping())

    async def increment(
        self,
        key: str,
        expire: Optional[int] = None,
    ) -> int:
        """
        Increment a counter and set its TTL on first creation.

        INCR and EXPIRE NX run in one MULTI/EXEC transaction, so a counter
        can never be left without an expiry.
        """
        try:
            client = await get_redis()
            full_key = self._make_key(key)

            async with client.pipeline(transaction=True) as pipe:
                pipe.incr(full_key)
                if expire:
                    pipe.expire(full_key, expire, nx=True)
                results = await pipe.execute()

            return int(results[0])
        except RedisError as e:
            logger.error("Redis increment error", key=key, error=str(e))
            raise

    async def clear_pattern(self, pattern: str) -> int:
        """
        Clear all keys matching pattern.

        Args:
            pattern: Key pattern (e.g., "storage_metric:*")

        Returns:
            Number of keys deleted
        """
        try:
            client = await get_redis()
            full_pattern = self._make_key(pattern)

            keys = []
            async for key in client.scan_iter(match=full_pattern):
                keys.append(key)

            if keys:
                return await client.delete(*keys)

            return 0
        except RedisError as e:
            logger.error("Redis clear_pattern error", pattern=pattern, error=str(e))
            return 0
