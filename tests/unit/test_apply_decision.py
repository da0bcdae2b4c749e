"""Unit tests for the apply step."""

from __future__ import annotations

import asyncio

import pytest

from app.core.exceptions import PersistenceError
from app.persistence.topic_store import InMemoryTopicStore
from app.schemas.categorization import Decision
from app.schemas.message import IncomingMessage
from app.schemas.topic import ProposedTopic, Topic, TopicUpdate
from app.services.categorization.apply import DecisionApplier
from app.services.conversation_state import ConversationTracker, InMemoryConversationStateStore

REDIS = Topic(
    id="t-redis",
    name="Redis Memory Leak",
    description="Redis instances running out of memory",
    keywords=["redis", "memory", "leak"],
    message_count=4,
    sample_utterances=["first"],
    contributors=["ana"],
)


class FailingLinkStore(InMemoryTopicStore):
    async def link_message(self, topic_id: str, message_ref: str) -> None:
        raise PersistenceError("link table unavailable")


class SlowUpdateStore(InMemoryTopicStore):
    async def update(self, topic_id: str, fields: TopicUpdate) -> None:
        await asyncio.sleep(1.0)
        await super().update(topic_id, fields)


def make_applier(store: InMemoryTopicStore, timeout: float = 1.0) -> DecisionApplier:
    tracker = ConversationTracker(InMemoryConversationStateStore(ttl_seconds=600))
    return DecisionApplier(store, tracker, timeout=timeout)


def message(text: str = "redis keeps growing", ts: str = "100.0", user: str = "U2") -> IncomingMessage:
    return IncomingMessage(channel_id="C1", ts=ts, text=text, user=user, user_name=None)


def assign(**overrides: object) -> Decision:
    payload: dict[str, object] = {
        "action": "assign",
        "reasoning": "match",
        "target_topic_id": "t-redis",
        "target_topic_name": "Redis Memory Leak",
    }
    payload.update(overrides)
    return Decision(**payload)


@pytest.mark.asyncio
async def test_assign_updates_counts_samples_contributors_and_links() -> None:
    store = InMemoryTopicStore([REDIS])
    applier = make_applier(store)

    applied = await applier.apply(assign(), message())

    topic = await store.get("t-redis")
    assert topic is not None
    assert applied.topic_id == "t-redis"
    assert topic.message_count == 5
    assert topic.sample_utterances == ["first", "redis keeps growing"]
    assert topic.contributors == ["ana", "U2"]
    assert store.linked_messages("t-redis") == ["C1:100.0"]
    state = await applier.tracker.get("C1")
    assert state is not None
    assert state.current_topic_id == "t-redis"
    assert state.recent_activity[-1].message_id == "C1:100.0"


@pytest.mark.asyncio
async def test_sample_utterances_are_bounded_and_truncated() -> None:
    store = InMemoryTopicStore([REDIS])
    applier = make_applier(store)

    for i in range(12):
        await applier.apply(assign(), message(text=f"{i} " + "x" * 120, ts=f"{i}.0"))

    topic = await store.get("t-redis")
    assert topic is not None
    assert len(topic.sample_utterances) == 10
    assert topic.sample_utterances[-1].startswith("11 ")
    assert all(len(sample) <= 103 for sample in topic.sample_utterances)
    assert topic.sample_utterances[-1].endswith("...")
    assert topic.message_count == 16


@pytest.mark.asyncio
async def test_improved_name_and_description_are_applied() -> None:
    store = InMemoryTopicStore([REDIS])

    applied = await make_applier(store).apply(
        assign(improved_name="Redis Memory Growth", improved_description="Memory growth in Redis"),
        message(),
    )

    topic = await store.get("t-redis")
    assert topic is not None
    assert applied.topic_name == "Redis Memory Growth"
    assert topic.name == "Redis Memory Growth"
    assert topic.description == "Memory growth in Redis"


@pytest.mark.asyncio
async def test_create_adds_topic_with_default_description() -> None:
    store = InMemoryTopicStore()

    applied = await make_applier(store).apply(
        Decision(
            action="create",
            reasoning="new",
            proposed_topic=ProposedTopic(name="Payment API Timeout", keywords=["stripe"]),
        ),
        message("stripe charges time out"),
    )

    topic = await store.get(applied.topic_id)
    assert topic is not None
    assert applied.action == "create"
    assert topic.description == "Messages about Payment API Timeout"
    assert topic.message_count == 1


@pytest.mark.asyncio
async def test_duplicate_create_is_rerouted_to_existing_topic() -> None:
    store = InMemoryTopicStore([REDIS])

    applied = await make_applier(store).apply(
        Decision(
            action="create",
            reasoning="planner saw an older taxonomy",
            proposed_topic=ProposedTopic(
                name="Redis Memory Leak",
                description="Redis instances running out of memory",
                keywords=["redis", "memory", "leak"],
            ),
        ),
        message(),
    )

    assert applied.rerouted_from_create is True
    assert applied.action == "assign"
    assert applied.topic_id == "t-redis"
    assert len(await store.list()) == 1
    topic = await store.get("t-redis")
    assert topic is not None
    assert topic.message_count == 5


@pytest.mark.asyncio
async def test_concurrent_duplicate_creates_yield_one_topic() -> None:
    store = InMemoryTopicStore()
    applier = make_applier(store)
    decision = Decision(
        action="create",
        reasoning="new",
        proposed_topic=ProposedTopic(
            name="Kafka Consumer Lag", description="Lagging consumers", keywords=["kafka", "lag"]
        ),
    )

    results = await asyncio.gather(
        *(applier.apply(decision, message(ts=f"{i}.0")) for i in range(5))
    )

    assert len(await store.list()) == 1
    assert sum(1 for applied in results if applied.rerouted_from_create) == 4
    topic = (await store.list())[0]
    assert topic.message_count == 5


@pytest.mark.asyncio
async def test_concurrent_assigns_do_not_lose_updates() -> None:
    store = InMemoryTopicStore([REDIS])
    applier = make_applier(store)

    await asyncio.gather(*(applier.apply(assign(), message(ts=f"{i}.0")) for i in range(8)))

    topic = await store.get("t-redis")
    assert topic is not None
    assert topic.message_count == 12
    assert len(applier.locks.topic_locks) == 0


@pytest.mark.asyncio
async def test_persistence_error_leaves_store_and_state_unchanged() -> None:
    store = FailingLinkStore([REDIS])
    applier = make_applier(store)

    with pytest.raises(PersistenceError):
        await applier.apply(assign(), message())

    topic = await store.get("t-redis")
    assert topic == REDIS
    assert await applier.tracker.get("C1") is None


@pytest.mark.asyncio
async def test_apply_timeout_is_a_persistence_error() -> None:
    store = SlowUpdateStore([REDIS])

    with pytest.raises(PersistenceError, match="timed out"):
        await make_applier(store, timeout=0.01).apply(assign(), message())

    assert await store.get("t-redis") == REDIS


@pytest.mark.asyncio
async def test_assign_to_vanished_topic_is_a_persistence_error() -> None:
    with pytest.raises(PersistenceError):
        await make_applier(InMemoryTopicStore()).apply(assign(), message())
