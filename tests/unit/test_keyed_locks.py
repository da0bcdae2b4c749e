"""Unit tests for per-key locks."""

import asyncio

import pytest

from app.core.locks import KeyedLocks
from app.schemas.conversation import ActivityEntry
from app.services.conversation_state import ConversationTracker, InMemoryConversationStateStore


@pytest.mark.asyncio
async def test_same_key_is_serialized_and_entry_dropped_after_release() -> None:
    locks = KeyedLocks()
    active = 0
    peak = 0

    async def critical() -> None:
        nonlocal active, peak
        async with locks.hold("t-1"):
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

    await asyncio.gather(*(critical() for _ in range(5)))

    assert peak == 1
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_entry_released_when_holder_raises() -> None:
    locks = KeyedLocks()

    with pytest.raises(RuntimeError):
        async with locks.hold("t-1"):
            raise RuntimeError("boom")

    assert len(locks) == 0


@pytest.mark.asyncio
async def test_tracker_does_not_keep_locks_for_idle_channels() -> None:
    tracker = ConversationTracker(InMemoryConversationStateStore(ttl_seconds=600))

    await asyncio.gather(
        *(
            tracker.record(
                f"C{i}",
                ActivityEntry(ts="1.0", message_id=f"C{i}:1.0", topic_id="t-1", topic_name="T"),
            )
            for i in range(10)
        )
    )

    assert len(tracker._locks) == 0
