"""
Test suite for RedisService.

The Redis client is mocked; no server is needed.

Run tests:
    pytest tests/services/test_redis_service.py -v
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from tierkeeper.core.services.redis_service import RedisService


@pytest.fixture
def redis_client():
    client = MagicMock()
    client.set = AsyncMock(return_value=True)
    client.eval = AsyncMock(return_value=1)
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    with patch.object(RedisService, "_client", client):
        yield client


class TestRedisServiceNotInitialized:
    """Calls made before init()."""

    @pytest.mark.asyncio
    async def test_acquire_lock_returns_none(self):
        with patch.object(RedisService, "_client", None):
            assert await RedisService.acquire_lock("k", "tok", 10) is None

    @pytest.mark.asyncio
    async def test_ping_and_release_are_false(self):
        with patch.object(RedisService, "_client", None):
            assert await RedisService.ping() is False
            assert await RedisService.release_lock("k", "tok") is False
            assert RedisService.is_connected() is False


class TestRedisServiceLocks:
    """Test suite for the owned-lock primitives."""

    @pytest.mark.asyncio
    async def test_acquire_stores_token_with_nx_ex(self, redis_client):
        assert await RedisService.acquire_lock("lock", "tok", 30) is True
        redis_client.set.assert_awaited_once_with("lock", "tok", nx=True, ex=30)

    @pytest.mark.asyncio
    async def test_acquire_taken(self, redis_client):
        redis_client.set.return_value = None
        assert await RedisService.acquire_lock("lock", "tok", 30) is False

    @pytest.mark.asyncio
    async def test_acquire_unreachable(self, redis_client):
        redis_client.set.side_effect = RedisConnectionError("down")
        assert await RedisService.acquire_lock("lock", "tok", 30) is None

    @pytest.mark.asyncio
    async def test_release_checks_token(self, redis_client):
        assert await RedisService.release_lock("lock", "tok") is True

        args = redis_client.eval.await_args.args
        assert args[1:] == (1, "lock", "tok")
        assert 'redis.call("GET", KEYS[1]) == ARGV[1]' in args[0]

    @pytest.mark.asyncio
    async def test_release_after_expiry(self, redis_client):
        redis_client.eval.return_value = 0
        assert await RedisService.release_lock("lock", "tok") is False

    @pytest.mark.asyncio
    async def test_release_unreachable(self, redis_client):
        redis_client.eval.side_effect = RedisConnectionError("down")
        assert await RedisService.release_lock("lock", "tok") is False


class TestRedisServiceLifecycle:
    @pytest.mark.asyncio
    async def test_ping_failure(self, redis_client):
        redis_client.ping.side_effect = RedisConnectionError("down")
        assert await RedisService.ping() is False

    @pytest.mark.asyncio
    async def test_aclose_clears_client(self, redis_client):
        await RedisService.aclose()
        redis_client.aclose.assert_awaited_once()
        assert RedisService._client is None

    @pytest.mark.asyncio
    async def test_init_replaces_client(self, redis_client):
        new_client = MagicMock()
        with patch.object(RedisService, "_url", RedisService._url), patch(
            "tierkeeper.core.services.redis_service.Redis.from_url",
            return_value=new_client,
        ) as mock_from_url:
            await RedisService.init("redis://cache:6379/1")

        redis_client.aclose.assert_awaited_once()
        mock_from_url.assert_called_once_with(
            "redis://cache:6379/1", decode_responses=True
        )
        assert RedisService._client is new_client
