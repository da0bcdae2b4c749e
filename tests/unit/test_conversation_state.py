"""Unit tests for per-channel conversation state."""

from __future__ import annotations

import pytest

from app.schemas.conversation import ActivityEntry, ConversationState
from app.services.conversation_state import (
    ConversationTracker,
    InMemoryConversationStateStore,
    RedisConversationStateStore,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class FakeRedis:
    """Minimal async Redis double recording expirations."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.expirations: dict[str, int | None] = {}

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        self.values[key] = value
        self.expirations[key] = ex


def entry(ts: str, topic_id: str = "t-1", topic_name: str = "Topic") -> ActivityEntry:
    return ActivityEntry(ts=ts, message_id=f"C1:{ts}", topic_id=topic_id, topic_name=topic_name)


def test_record_keeps_last_twenty_and_sets_current_topic() -> None:
    state = ConversationState(channel_id="C1")

    for i in range(25):
        state.record(entry(str(i), topic_id=f"t-{i}", topic_name=f"Topic {i}"))

    assert len(state.recent_activity) == 20
    assert state.recent_activity[0].ts == "5"
    assert state.recent_activity[-1].ts == "24"
    assert state.current_topic_id == "t-24"
    assert state.current_topic_name == "Topic 24"


def test_topic_for_ts_prefers_latest_entry() -> None:
    state = ConversationState(channel_id="C1")
    state.record(entry("1", topic_id="t-old"))
    state.record(entry("1", topic_id="t-new"))

    found = state.topic_for_ts("1")
    assert found is not None
    assert found.topic_id == "t-new"
    assert state.topic_for_ts("2") is None


@pytest.mark.asyncio
async def test_in_memory_state_expires_after_ttl() -> None:
    clock = FakeClock()
    store = InMemoryConversationStateStore(ttl_seconds=60, clock=clock)
    await store.save(ConversationState(channel_id="C1", current_topic_id="t-1"))

    clock.now += 59
    assert await store.get("C1") is not None

    clock.now += 1
    assert await store.get("C1") is None


@pytest.mark.asyncio
async def test_evict_expired_counts_removed_channels() -> None:
    clock = FakeClock()
    store = InMemoryConversationStateStore(ttl_seconds=60, clock=clock)
    await store.save(ConversationState(channel_id="C1"))
    clock.now += 30
    await store.save(ConversationState(channel_id="C2"))

    clock.now += 31
    assert await store.evict_expired() == 1
    assert await store.get("C1") is None
    assert await store.get("C2") is not None


@pytest.mark.asyncio
async def test_in_memory_store_returns_copies() -> None:
    store = InMemoryConversationStateStore(ttl_seconds=60)
    await store.save(ConversationState(channel_id="C1"))

    state = await store.get("C1")
    assert state is not None
    state.record(entry("1"))

    fresh = await store.get("C1")
    assert fresh is not None
    assert fresh.recent_activity == []


@pytest.mark.asyncio
async def test_redis_store_sets_ttl_and_roundtrips() -> None:
    redis = FakeRedis()
    store = RedisConversationStateStore(redis=redis, ttl_seconds=120)  # type: ignore[arg-type]
    state = ConversationState(channel_id="C1")
    state.record(entry("1", topic_id="t-9", topic_name="Redis Memory Leak"))

    await store.save(state)
    loaded = await store.get("C1")

    assert redis.expirations == {"topictriage:conversation:C1": 120}
    assert loaded is not None
    assert loaded.current_topic_name == "Redis Memory Leak"
    assert await store.get("C2") is None
    assert await store.evict_expired() == 0


@pytest.mark.asyncio
async def test_tracker_record_creates_and_updates_state() -> None:
    tracker = ConversationTracker(InMemoryConversationStateStore(ttl_seconds=60), activity_limit=2)

    await tracker.record("C1", entry("1", topic_id="t-1"))
    await tracker.record("C1", entry("2", topic_id="t-2"))
    state = await tracker.record("C1", entry("3", topic_id="t-3"))

    assert [item.ts for item in state.recent_activity] == ["2", "3"]
    stored = await tracker.get("C1")
    assert stored is not None
    assert stored.current_topic_id == "t-3"
