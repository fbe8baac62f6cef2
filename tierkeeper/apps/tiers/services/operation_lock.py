"""
Per-user lock serializing billing operations.

Two billing operations for the same user (checkout, cancel, portal) must not
interleave. The memory backend covers a single process; the Redis backend
uses ``SET NX EX`` so several API instances share the lock.

Every acquisition returns an ownership token. Releasing with a stale token
(the lock expired and someone else took it) leaves the new holder's lock in
place.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
import secrets
import time
from typing import AsyncIterator, Literal

from tierkeeper.core.config import billing_logger, settings
from tierkeeper.core.exceptions.types import (
    BillingOperationInProgressException,
    StoreUnavailableException,
)
from tierkeeper.core.services.base import SingletonService
from tierkeeper.core.services.redis_service import RedisService


def _new_token() -> str:
    return secrets.token_hex(16)


class OperationLockBackend(ABC):
    """Abstract base class for billing operation lock backends."""

    @abstractmethod
    async def acquire(self, key: str, ttl: int) -> str | None:
        """Take the lock. Returns the ownership token, or None if it is held."""

    @abstractmethod
    async def release(self, key: str, token: str) -> None:
        """Release the lock if ``token`` still owns it."""


class MemoryLockBackend(OperationLockBackend):
    """
    In-process lock table with expiry.

    Note:
        Not suitable for multi-process or multi-instance deployments.
    """

    def __init__(self) -> None:
        self._locks: dict[str, tuple[str, float]] = {}

    async def acquire(self, key: str, ttl: int) -> str | None:
        now = time.monotonic()
        held = self._locks.get(key)
        if held is not None and held[1] > now:
            return None
        token = _new_token()
        self._locks[key] = (token, now + ttl)
        return token

    async def release(self, key: str, token: str) -> None:
        held = self._locks.get(key)
        if held is not None and held[0] == token:
            del self._locks[key]


class RedisLockBackend(OperationLockBackend):
    """Redis-based lock shared by all API instances."""

    KEY_PREFIX = "tierkeeper:billing_op:"

    async def acquire(self, key: str, ttl: int) -> str | None:
        token = _new_token()
        taken = await RedisService.acquire_lock(f"{self.KEY_PREFIX}{key}", token, ttl)
        if taken is None:
            raise StoreUnavailableException("Billing operation lock is unavailable.")
        return token if taken else None

    async def release(self, key: str, token: str) -> None:
        await RedisService.release_lock(f"{self.KEY_PREFIX}{key}", token)


class BillingOperationLock(SingletonService):
    """Class-level lock registry for billing operations.

    Example:
        >>> async with BillingOperationLock.hold(user_id):
        ...     await do_billing()
    """

    _backend: OperationLockBackend | None = None
    _ttl: int = settings.OPERATION_LOCK_TTL_SECONDS

    @classmethod
    def _reset(cls) -> None:
        super()._reset()
        cls._backend = None
        cls._ttl = settings.OPERATION_LOCK_TTL_SECONDS

    @classmethod
    def init(
        cls,
        backend: Literal["memory", "redis"] = "memory",
        ttl: int | None = None,
    ) -> None:
        """
        Select the lock backend.

        Args:
            backend: "memory" for a single instance, "redis" for several.
            ttl: Seconds after which a lock left by a crashed operation expires.
        """
        cls._backend = RedisLockBackend() if backend == "redis" else MemoryLockBackend()
        if ttl is not None:
            cls._ttl = ttl
        cls._initialized = True
        billing_logger.info(f"BillingOperationLock initialized with {backend} backend")

    @classmethod
    @asynccontextmanager
    async def hold(cls, user_id: str) -> AsyncIterator[None]:
        """
        Hold the user's billing lock for the duration of the block.

        Raises:
            BillingOperationInProgressException: Another operation holds it.
            StoreUnavailableException: The Redis backend cannot be reached.
        """
        if cls._backend is None:
            cls.init(settings.OPERATION_LOCK_BACKEND)
        assert cls._backend is not None

        token = await cls._backend.acquire(user_id, cls._ttl)
        if token is None:
            billing_logger.warning(f"Billing operation already running for {user_id}")
            raise BillingOperationInProgressException()

        try:
            yield
        finally:
            await cls._backend.release(user_id, token)


__all__ = [
    "BillingOperationLock",
    "MemoryLockBackend",
    "OperationLockBackend",
    "RedisLockBackend",
]
