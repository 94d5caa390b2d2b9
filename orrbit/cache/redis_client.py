"""
Redis client configuration and connection management.
"""

from typing import Optional, Union

import redis.asyncio as redis
from redis.asyncio import Redis

from orrbit.core.config import settings

import structlog

logger = structlog.get_logger(__name__)

# Delete a key only when it still holds the caller's token
COMPARE_AND_DELETE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""

# Refresh the TTL only when the key still holds the caller's token
COMPARE_AND_EXPIRE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("EXPIRE", KEYS[1], ARGV[2])
end
return 0
"""


class RedisClient:
    """Async Redis client wrapper with connection management."""

    def __init__(self, url: Optional[str] = None, prefix: Optional[str] = None):
        self.url = url or settings.redis_url
        self.prefix = settings.redis_prefix if prefix is None else prefix
        self._client: Optional[Redis] = None
        self._pool: Optional[redis.ConnectionPool] = None

    def key(self, name: str) -> str:
        """Namespace a key with the application prefix."""
        return f"{self.prefix}{name}"

    async def connect(self) -> None:
        """Establish Redis connection."""
        try:
            if self._client is None:
                self._pool = redis.ConnectionPool.from_url(
                    self.url,
                    decode_responses=True,
                    max_connections=20,
                    retry_on_timeout=True,
                    socket_keepalive=True,
                )
                self._client = Redis(connection_pool=self._pool)

                await self._client.ping()
                logger.info("Redis connection established", url=self.url)

        except Exception as e:
            logger.error("Failed to connect to Redis", url=self.url, error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close Redis connection."""
        try:
            if self._client:
                await self._client.aclose()
                self._client = None
                logger.info("Redis connection closed")
        except Exception as e:
            logger.error("Error closing Redis connection", error=str(e))

    @property
    def client(self) -> Redis:
        """Get Redis client instance."""
        if self._client is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self._client

    async def set(
        self,
        key: str,
        value: Union[str, bytes, int, float],
        ex: Optional[int] = None,
        nx: bool = False
    ) -> bool:
        """Set key-value with optional expiration; with nx only if absent."""
        return bool(await self.client.set(self.key(key), value, ex=ex, nx=nx))

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        """Atomically delete key if it still holds the expected value."""
        deleted = await self.client.eval(COMPARE_AND_DELETE_SCRIPT, 1, self.key(key), expected)
        return bool(deleted)

    async def compare_and_expire(self, key: str, expected: str, ttl_seconds: int) -> bool:
        """Reset the TTL of key if it still holds the expected value."""
        extended = await self.client.eval(COMPARE_AND_EXPIRE_SCRIPT, 1, self.key(key), expected, ttl_seconds)
        return bool(extended)


# Global Redis client instance
_redis_client: Optional[RedisClient] = None


async def get_redis_client() -> RedisClient:
    """Get global Redis client instance."""
    global _redis_client

    if _redis_client is None:
        _redis_client = RedisClient()
        await _redis_client.connect()

    return _redis_client


async def close_redis_client() -> None:
    """Close global Redis client."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.disconnect()
        _redis_client = None
