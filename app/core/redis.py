"""Shared Redis connection for channel conversation state."""

import logging
from urllib.parse import urlsplit

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.config import settings

logger = logging.getLogger(__name__)

_client: Redis | None = None


def get_redis_client(url: str | None = None) -> Redis:
    """Process-wide client; the first caller picks the URL."""
    global _client
    if _client is None:
        url = url or settings.redis_url
        _client = Redis.from_url(url, decode_responses=True, health_check_interval=30)
        logger.debug("Redis client created", extra={"host": urlsplit(url).hostname})
    return _client


async def redis_available(client: Redis | None = None) -> bool:
    """Whether Redis answers PING. Never raises."""
    try:
        return bool(await (client or get_redis_client()).ping())
    except (RedisError, OSError) as e:
        logger.warning("Redis unavailable", extra={"error": str(e)})
        return False


async def close_redis() -> None:
    global _client
    if _client is None:
        return

    await _client.aclose()
    _client = None
    logger.info("Redis connection closed")
