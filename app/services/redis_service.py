"""Redis service for webhook idempotency and dispatch notifications."""

import redis.asyncio as redis

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

# Global Redis connection pool
_redis_pool: redis.ConnectionPool | None = None
_redis_client: redis.Redis | None = None


async def init_redis() -> None:
    """Initialize Redis connection pool."""
    global _redis_pool, _redis_client

    _redis_pool = redis.ConnectionPool.from_url(
        str(settings.redis_url),
        decode_responses=True,
        max_connections=50,
    )
    _redis_client = redis.Redis(connection_pool=_redis_pool)

    # Verify connection
    await _redis_client.ping()
    logger.info("redis_connected")


async def close_redis() -> None:
    """Close Redis connections."""
    global _redis_pool, _redis_client

    if _redis_client:
        await _redis_client.aclose()
    if _redis_pool:
        await _redis_pool.disconnect()

    _redis_client = None
    _redis_pool = None
    logger.info("redis_closed")


def get_redis() -> redis.Redis:
    """Get Redis client instance."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


class RedisService:
    """Redis operations used by the telephony flow."""

    def __init__(self, client: redis.Redis | None = None) -> None:
        self.client = client or get_redis()

    async def set_if_absent(self, key: str, ttl_seconds: int, value: str = "1") -> bool:
        """Atomically set ``key`` unless it exists. Returns True if it was set."""
        return bool(await self.client.set(key, value, nx=True, ex=ttl_seconds))

    async def publish(self, channel: str, message: str) -> None:
        """Publish message to channel."""
        await self.client.publish(channel, message)
