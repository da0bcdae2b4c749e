"""Tests for the Redis availability probe."""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.core.redis import redis_available


class _PingingRedis:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error

    async def ping(self) -> bool:
        if self.error is not None:
            raise self.error
        return True


@pytest.mark.asyncio
async def test_redis_available_when_ping_succeeds() -> None:
    assert await redis_available(_PingingRedis()) is True  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_redis_unavailable_on_connection_error() -> None:
    probe = _PingingRedis(RedisConnectionError("connection refused"))

    assert await redis_available(probe) is False  # type: ignore[arg-type]
