import logging
from redis.asyncio import Redis

from tunesync.core.config import settings

logger = logging.getLogger(__name__)

_client: Redis | None = None


async def get_redis_client() -> Redis:
    """Process-wide Redis connection pool, created on first use."""
    global _client
    if _client is None:
        _client = Redis.from_url(settings.REDIS_URL, decode_responses=True)
        logger.info(f"Redis client created for {settings.REDIS_URL}")
    return _client


async def close_redis_client():
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
        logger.info("Redis client closed")
