"""
Test suite for the per-user billing operation lock.

Run tests:
    pytest tests/apps/tiers/services/test_operation_lock.py -v
"""

from unittest.mock import AsyncMock, patch

import pytest

from tierkeeper.apps.tiers.services.operation_lock import (
    BillingOperationLock,
    MemoryLockBackend,
    RedisLockBackend,
)
from tierkeeper.core.exceptions.types import (
    BillingOperationInProgressException,
    StoreUnavailableException,
)


class TestMemoryLockBackend:
    @pytest.mark.asyncio
    async def test_acquire_release(self):
        backend = MemoryLockBackend()

        token = await backend.acquire("u1", ttl=60)
        assert token is not None
        assert await backend.acquire("u1", ttl=60) is None
        assert await backend.acquire("u2", ttl=60) is not None

        await backend.release("u1", token)
        assert await backend.acquire("u1", ttl=60) is not None

    @pytest.mark.asyncio
    async def test_expired_lock_can_be_taken(self):
        backend = MemoryLockBackend()

        assert await backend.acquire("u1", ttl=0) is not None
        assert await backend.acquire("u1", ttl=0) is not None

    @pytest.mark.asyncio
    async def test_stale_token_does_not_release_new_holder(self):
        backend = MemoryLockBackend()
        stale = await backend.acquire("u1", ttl=0)
        await backend.acquire("u1", ttl=60)

        await backend.release("u1", stale)

        assert await backend.acquire("u1", ttl=60) is None


class TestRedisLockBackend:
    @pytest.mark.asyncio
    async def test_uses_prefixed_key_and_token(self):
        with patch(
            "tierkeeper.apps.tiers.services.operation_lock.RedisService"
        ) as mock_redis:
            mock_redis.acquire_lock = AsyncMock(return_value=True)
            mock_redis.release_lock = AsyncMock(return_value=True)
            backend = RedisLockBackend()

            token = await backend.acquire("u1", ttl=30)
            await backend.release("u1", token)

        assert token
        mock_redis.acquire_lock.assert_awaited_once_with(
            "tierkeeper:billing_op:u1", token, 30
        )
        mock_redis.release_lock.assert_awaited_once_with(
            "tierkeeper:billing_op:u1", token
        )

    @pytest.mark.asyncio
    async def test_held_elsewhere(self):
        with patch(
            "tierkeeper.apps.tiers.services.operation_lock.RedisService"
        ) as mock_redis:
            mock_redis.acquire_lock = AsyncMock(return_value=False)

            assert await RedisLockBackend().acquire("u1", ttl=30) is None

    @pytest.mark.asyncio
    async def test_unreachable_redis(self):
        with patch(
            "tierkeeper.apps.tiers.services.operation_lock.RedisService"
        ) as mock_redis:
            mock_redis.acquire_lock = AsyncMock(return_value=None)

            with pytest.raises(StoreUnavailableException):
                await RedisLockBackend().acquire("u1", ttl=30)


class TestBillingOperationLock:
    """Test suite for BillingOperationLock.hold."""

    @pytest.mark.asyncio
    async def test_hold_is_exclusive_per_user(self):
        async with BillingOperationLock.hold("u1"):
            with pytest.raises(BillingOperationInProgressException):
                async with BillingOperationLock.hold("u1"):
                    pass
            async with BillingOperationLock.hold("u2"):
                pass

        async with BillingOperationLock.hold("u1"):
            pass

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        with pytest.raises(RuntimeError):
            async with BillingOperationLock.hold("u1"):
                raise RuntimeError("boom")

        async with BillingOperationLock.hold("u1"):
            pass

    def test_init_selects_backend(self):
        BillingOperationLock.init("redis", ttl=15)

        assert isinstance(BillingOperationLock._backend, RedisLockBackend)
        assert BillingOperationLock._ttl == 15
        assert BillingOperationLock.is_initialized()

    @pytest.mark.asyncio
    async def test_lazy_init(self):
        BillingOperationLock._reset()

        async with BillingOperationLock.hold("u1"):
            pass

        assert isinstance(BillingOperationLock._backend, MemoryLockBackend)
