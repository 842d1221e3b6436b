"""
Tests for the Redis cache adapter.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError, RedisError

from app.infrastructure.cache.redis import RedisCache


@pytest.fixture
def redis_client():
    client = MagicMock()
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[3, True])
    client.pipeline.return_value.__aenter__.return_value = pipe
    client.pipe = pipe
    return client


@pytest.fixture
def cache(redis_client):
    with patch(
        "app.infrastructure.cache.redis.get_redis",
        AsyncMock(return_value=redis_client),
    ):
        yield RedisCache(prefix="test")


class TestRedisCache:
    """Test Redis cache operations."""

    @pytest.mark.asyncio
    async def test_get_decodes_json(self, cache, redis_client):
        redis_client.get = AsyncMock(return_value=json.dumps({"count": 2}))

        assert await cache.get("usage") == {"count": 2}
        redis_client.get.assert_awaited_once_with("test:usage")

    @pytest.mark.asyncio
    async def test_get_miss(self, cache, redis_client):
        redis_client.get = AsyncMock(return_value=None)

        assert await cache.get("usage") is None

    @pytest.mark.asyncio
    async def test_get_errors_are_misses(self, cache, redis_client):
        redis_client.get = AsyncMock(side_effect=RedisError("connection refused"))

        assert await cache.get("usage") is None

    @pytest.mark.asyncio
    async def test_set_with_expiry(self, cache, redis_client):
        redis_client.setex = AsyncMock()

        assert await cache.set("usage", {"total": 1}, expire=300) is True
        redis_client.setex.assert_awaited_once_with("test:usage", 300, '{"total": 1}')

    @pytest.mark.asyncio
    async def test_set_error(self, cache, redis_client):
        redis_client.set = AsyncMock(side_effect=RedisError("read only"))

        assert await cache.set("usage", 1) is False

    @pytest.mark.asyncio
    async def test_increment_sets_expiry_once(self, cache, redis_client):
        count = await cache.increment("rate_limit:10.0.0.1", expire=3600)

        assert count == 3
        redis_client.pipeline.assert_called_once_with(transaction=True)
        redis_client.pipe.incr.assert_called_once_with("test:rate_limit:10.0.0.1")
        redis_client.pipe.expire.assert_called_once_with(
            "test:rate_limit:10.0.0.1", 3600, nx=True
        )

    @pytest.mark.asyncio
    async def test_increment_errors_propagate(self, cache, redis_client):
        redis_client.pipe.execute = AsyncMock(side_effect=RedisError("down"))

        with pytest.raises(RedisError):
            await cache.increment("rate_limit:10.0.0.1", expire=3600)

    @pytest.mark.asyncio
    async def test_clear_pattern(self, cache, redis_client):
        async def scan_iter(match):
            assert match == "test:storage_metric:*"
            for key in ("test:storage_metric:a", "test:storage_metric:b"):
                yield key

        redis_client.scan_iter = scan_iter
        redis_client.delete = AsyncMock(return_value=2)

        assert await cache.clear_pattern("storage_metric:*") == 2
        redis_client.delete.assert_awaited_once_with(
            "test:storage_metric:a", "test:storage_metric:b"
        )

    @pytest.mark.asyncio
    async def test_exists_errors_are_misses(self, cache, redis_client):
        redis_client.exists = AsyncMock(side_effect=RedisConnectionError("connection refused"))

        assert await cache.exists("readiness") is False

    @pytest.mark.asyncio
    async def test_ping(self, cache, redis_client):
        redis_client.ping = AsyncMock(return_value=True)

        assert await cache.ping() is True

    @pytest.mark.asyncio
    async def test_ping_errors_propagate(self, cache, redis_client):
        redis_client.ping = AsyncMock(side_effect=RedisConnectionError("connection refused"))

        with pytest.raises(RedisConnectionError):
            await cache.ping()
