"""Unit tests for parallel retrieval, fusion and scoring behind find_topics."""

from __future__ import annotations

import asyncio

import pytest

from app.core.exceptions import PersistenceError
from app.persistence.topic_store import InMemoryTopicStore
from app.schemas.topic import Topic
from app.services.categorization.fusion import RankedHit
from app.services.categorization.retrieval import TopicRetriever

STRATEGIES = ["hybrid", "vector", "lexical"]

MIGRATION = Topic(
    id="t-db",
    name="Database Migration",
    description="Moving data between database engines",
    keywords=["postgres", "migration"],
    message_count=50,
)
REDIS = Topic(
    id="t-redis",
    name="Redis Memory Leak",
    description="Redis running out of memory",
    keywords=["redis", "memory"],
    message_count=3,
)


class FakeSearch:
    """Search service returning canned hits, errors or delays per strategy."""

    def __init__(self, results: dict[str, object], delay: dict[str, float] | None = None) -> None:
        self.results = results
        self.delay = delay or {}
        self.calls: list[tuple[str, str, int]] = []

    async def search(self, strategy: str, query: str, limit: int) -> list[RankedHit]:
        self.calls.append((strategy, query, limit))
        if strategy in self.delay:
            await asyncio.sleep(self.delay[strategy])
        outcome = self.results.get(strategy, [])
        if isinstance(outcome, Exception):
            raise outcome
        return [RankedHit(topic_id=topic_id, rank=i) for i, topic_id in enumerate(outcome, start=1)]


def make_retriever(search: FakeSearch, store: InMemoryTopicStore, **kwargs: object) -> TopicRetriever:
    return TopicRetriever(search, store, strategies=STRATEGIES, search_timeout=0.5, **kwargs)


@pytest.mark.asyncio
async def test_migration_query_is_assigned_with_high_confidence() -> None:
    store = InMemoryTopicStore([MIGRATION, REDIS])
    search = FakeSearch({strategy: ["t-db", "t-redis"] for strategy in STRATEGIES})

    result = await make_retriever(search, store).find_topics("let's migrate to postgres")

    assert result.query_keywords == ["migrate", "postgres"]
    assert result.strategies_failed == []
    top = result.matches[0]
    assert top.topic_id == "t-db"
    assert top.confidence >= 0.8
    assert result.recommendation.action == "assign"
    assert result.recommendation.suggested_topic_id == "t-db"
    assert {call[2] for call in search.calls} == {15}


@pytest.mark.asyncio
async def test_empty_taxonomy_recommends_create() -> None:
    result = await make_retriever(FakeSearch({}), InMemoryTopicStore()).find_topics("anything new")

    assert result.matches == []
    assert result.recommendation.action == "create"
    assert result.recommendation.confidence == 0.0


@pytest.mark.asyncio
async def test_failed_and_slow_strategies_degrade_to_empty_lists() -> None:
    store = InMemoryTopicStore([MIGRATION])
    search = FakeSearch(
        {
            "hybrid": RuntimeError("index unavailable"),
            "vector": ["t-db"],
            "lexical": ["t-db"],
        },
        delay={"vector": 1.0},
    )

    result = await make_retriever(search, store).find_topics("postgres migration")

    assert result.strategies_failed == ["hybrid", "vector"]
    assert [match.topic_id for match in result.matches] == ["t-db"]
    assert result.matches[0].factors.fused == pytest.approx(1 / 3)


@pytest.mark.asyncio
async def test_degraded_retrieval_lowers_confidence() -> None:
    store = InMemoryTopicStore([MIGRATION])
    healthy = await make_retriever(
        FakeSearch({strategy: ["t-db"] for strategy in STRATEGIES}), store
    ).find_topics("postgres migration")
    degraded = await make_retriever(
        FakeSearch({"hybrid": ["t-db"], "vector": TimeoutError(), "lexical": TimeoutError()}),
        store,
    ).find_topics("postgres migration")

    assert degraded.matches[0].confidence < healthy.matches[0].confidence


@pytest.mark.asyncio
async def test_hits_unknown_to_the_store_are_skipped() -> None:
    store = InMemoryTopicStore([REDIS])
    search = FakeSearch({strategy: ["ghost", "t-redis"] for strategy in STRATEGIES})

    result = await make_retriever(search, store).find_topics("redis memory")

    assert [match.topic_id for match in result.matches] == ["t-redis"]


@pytest.mark.asyncio
async def test_only_top_candidates_are_scored() -> None:
    topics = [Topic(id=f"t-{i}", name=f"Topic {i}") for i in range(15)]
    store = InMemoryTopicStore(topics)
    search = FakeSearch({"lexical": [topic.id for topic in topics]})

    result = await make_retriever(search, store, scored_match_limit=10).find_topics("topic")

    assert len(result.matches) == 10
    assert result.matches[0].topic_id == "t-0"


@pytest.mark.asyncio
async def test_include_all_adds_topic_overview() -> None:
    store = InMemoryTopicStore([MIGRATION, REDIS])
    result = await make_retriever(FakeSearch({}), store).find_topics("x", include_all=True)

    payload = result.to_dict()
    assert payload["total_topic_count"] == 2
    assert {topic["id"] for topic in payload["all_topics"]} == {"t-db", "t-redis"}
    assert set(payload) >= {"matches", "recommendation", "query_keywords", "strategies_failed"}


@pytest.mark.asyncio
async def test_overview_omitted_by_default() -> None:
    result = await make_retriever(FakeSearch({}), InMemoryTopicStore([REDIS])).find_topics("x")

    assert "all_topics" not in result.to_dict()


class BrokenReadStore(InMemoryTopicStore):
    """Topic reads fail; the overview listing blocks until cancelled."""

    def __init__(self, topics: list[Topic]) -> None:
        super().__init__(topics)
        self.listing_cancelled = False

    async def get(self, topic_id: str) -> Topic | None:
        raise PersistenceError("topic read failed")

    async def list(self, limit: int | None = None) -> list[Topic]:
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            self.listing_cancelled = True
            raise
        return []


@pytest.mark.asyncio
async def test_failed_hydration_cancels_the_overview_listing() -> None:
    store = BrokenReadStore([MIGRATION])
    search = FakeSearch({strategy: ["t-db"] for strategy in STRATEGIES})

    with pytest.raises(PersistenceError):
        await make_retriever(search, store).find_topics("postgres", include_all=True)

    assert store.listing_cancelled is True
