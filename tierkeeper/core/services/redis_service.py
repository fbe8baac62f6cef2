"""
Redis client shared across the process.

Redis only backs the billing operation lock, so the service exposes the
owned-lock primitives that lock needs and nothing else.
"""

from redis.asyncio import Redis
from redis.exceptions import RedisError

from tierkeeper.core.config import redis_logger, settings

# Delete the key only while it still holds the caller's token
_RELEASE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


class RedisService:
    """
    Class-level async Redis client.

    Example:
        >>> await RedisService.init("redis://localhost:6379/0")
        >>> if await RedisService.acquire_lock("billing:u1", token, ttl=60):
        ...     await RedisService.release_lock("billing:u1", token)
        >>> await RedisService.aclose()
    """

    _client: Redis | None = None
    _url: str = settings.REDIS_URL

    @classmethod
    async def init(cls, url: str | None = None) -> None:
        """Connect to ``url`` (default ``REDIS_URL``), replacing any open client."""
        await cls.aclose()
        cls._url = url or cls._url
        try:
            cls._client = Redis.from_url(cls._url, decode_responses=True)
        except (RedisError, ValueError) as e:
            redis_logger.error(f"Could not create Redis client for {cls._url}: {e}")
            raise
        redis_logger.info(f"Redis client ready at {cls._url}")

    @classmethod
    async def aclose(cls) -> None:
        client, cls._client = cls._client, None
        if client is None:
            return
        try:
            await client.aclose()
            redis_logger.info("Redis client closed")
        except RedisError as e:
            redis_logger.warning(f"Error closing Redis client: {e}")

    @classmethod
    def is_connected(cls) -> bool:
        return cls._client is not None

    @classmethod
    async def ping(cls) -> bool:
        """True when the server answers; used by the health check."""
        if cls._client is None:
            return False
        try:
            return bool(await cls._client.ping())  # type: ignore[misc]
        except RedisError as e:
            redis_logger.error(f"Redis ping failed: {e}")
            return False

    @classmethod
    async def acquire_lock(cls, key: str, token: str, ttl: int) -> bool | None:
        """
        Store ``token`` under ``key`` unless the key exists (``SET NX EX``).

        Returns:
            True if the lock was taken, False if someone else holds it, and
            None when Redis cannot be reached or was never initialized.
        """
        if cls._client is None:
            redis_logger.warning(f"Lock {key} requested before Redis was initialized")
            return None
        try:
            taken = await cls._client.set(key, token, nx=True, ex=ttl)
        except RedisError as e:
            redis_logger.error(f"Acquiring lock {key} failed: {e}")
            return None
        return bool(taken)

    @classmethod
    async def release_lock(cls, key: str, token: str) -> bool:
        """
        Delete ``key`` if it still holds ``token``.

        A lock that expired and was taken by another holder is left alone.
        Returns True only when this call removed the key.
        """
        if cls._client is None:
            return False
        try:
            removed = await cls._client.eval(_RELEASE_SCRIPT, 1, key, token)  # type: ignore[misc]
        except RedisError as e:
            redis_logger.error(f"Releasing lock {key} failed: {e}")
            return False
        if not removed:
            redis_logger.warning(f"Lock {key} expired before release")
        return bool(removed)


__all__ = ["RedisService"]
