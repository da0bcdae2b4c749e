"""Per-channel conversation state with TTL eviction."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol

from redis.asyncio import Redis

from app.config import settings
from app.core.locks import KeyedLocks
from app.core.redis import get_redis_client
from app.schemas.conversation import ActivityEntry, ConversationState

logger = logging.getLogger(__name__)


class ConversationStateStore(Protocol):
    """Storage for channel states that expire after a period of inactivity."""

    async def get(self, channel_id: str) -> ConversationState | None:
        """Return the unexpired state for ``channel_id``."""

    async def save(self, state: ConversationState) -> None:
        """Persist ``state`` and restart its TTL."""

    async def evict_expired(self) -> int:
        """Drop expired states and return how many were removed."""


class InMemoryConversationStateStore:
    """Process-local store; expiry is checked on read and on ``evict_expired``."""

    def __init__(
        self,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = (
            ttl_seconds if ttl_seconds is not None else settings.conversation_state_ttl_seconds
        )
        self._clock = clock
        self._states: dict[str, tuple[float, ConversationState]] = {}

    def _expired(self, saved_at: float) -> bool:
        return self.ttl_seconds > 0 and self._clock() - saved_at >= self.ttl_seconds

    async def get(self, channel_id: str) -> ConversationState | None:
        entry = self._states.get(channel_id)
        if entry is None:
            return None
        saved_at, state = entry
        if self._expired(saved_at):
            del self._states[channel_id]
            return None
        return state.model_copy(deep=True)

    async def save(self, state: ConversationState) -> None:
        self._states[state.channel_id] = (self._clock(), state.model_copy(deep=True))

    async def evict_expired(self) -> int:
        expired = [
            channel_id
            for channel_id, (saved_at, _state) in self._states.items()
            if self._expired(saved_at)
        ]
        for channel_id in expired:
            del self._states[channel_id]
        if expired:
            logger.info("Evicted expired conversation states", extra={"count": len(expired)})
        return len(expired)


class RedisConversationStateStore:
    """Redis-backed store; Redis expires keys itself."""

    def __init__(
        self,
        redis: Redis | None = None,
        ttl_seconds: int | None = None,
        key_prefix: str = "topictriage:conversation",
    ) -> None:
        self._redis = redis or get_redis_client()
        self.ttl_seconds = (
            ttl_seconds if ttl_seconds is not None else settings.conversation_state_ttl_seconds
        )
        self._key_prefix = key_prefix

    def _key(self, channel_id: str) -> str:
        return f"{self._key_prefix}:{channel_id}"

    async def get(self, channel_id: str) -> ConversationState | None:
        raw = await self._redis.get(self._key(channel_id))
        if raw is None:
            return None
        return ConversationState.model_validate_json(raw)

    async def save(self, state: ConversationState) -> None:
        payload = state.model_dump_json()
        if self.ttl_seconds > 0:
            await self._redis.set(self._key(state.channel_id), payload, ex=int(self.ttl_seconds))
        else:
            await self._redis.set(self._key(state.channel_id), payload)

    async def evict_expired(self) -> int:
        return 0


class ConversationTracker:
    """Serializes state updates per channel."""

    def __init__(
        self,
        store: ConversationStateStore | None = None,
        activity_limit: int | None = None,
    ) -> None:
        self.store = store or InMemoryConversationStateStore()
        self.activity_limit = (
            activity_limit
            if activity_limit is not None
            else settings.conversation_recent_activity_limit
        )
        self._locks = KeyedLocks()

    async def get(self, channel_id: str) -> ConversationState | None:
        return await self.store.get(channel_id)

    async def record(self, channel_id: str, entry: ActivityEntry) -> ConversationState:
        """Append ``entry`` to the channel's activity and make its topic current."""
        async with self._locks.hold(channel_id):
            state = await self.store.get(channel_id) or ConversationState(channel_id=channel_id)
            state.record(entry, self.activity_limit)
            await self.store.save(state)
            return state
