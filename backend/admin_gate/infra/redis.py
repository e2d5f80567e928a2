import logging

from redis.asyncio import Redis as AsyncRedis

logger = logging.getLogger("admin_gate.redis")


def get_async_redis_client(redis_url: str | None) -> AsyncRedis:
    """Create an async Redis client for the given URL."""
    if not redis_url:
        raise ValueError("REDIS_URL must be set to use the Redis role cache")
    return AsyncRedis.from_url(redis_url, decode_responses=True)
