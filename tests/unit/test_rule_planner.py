"""Unit tests for the deterministic rule planner."""

from __future__ import annotations

import pytest

from app.schemas.planner import (
    FetchContextStep,
    FinalizeStep,
    FindTopicsStep,
    MessageSummary,
    PlannerObservation,
    PlannerTurn,
)
from app.services.categorization.planner import RulePlanner, propose_topic


def observation(text: str = "redis keeps growing in prod", **overrides: object) -> PlannerObservation:
    summary = MessageSummary(
        message_id="C1:1.0",
        text=text,
        length=len(text),
        user="U1",
        channel_name="eng",
        is_thread_reply=bool(overrides.pop("is_thread_reply", False)),
        is_short=len(text) < 15,
    )
    return PlannerObservation(message=summary, iteration=1, max_iterations=5, **overrides)


def context_turn(thread_topic: dict | None = None, current_topic: dict | None = None) -> PlannerTurn:
    return PlannerTurn(
        iteration=1,
        step={"tool": "fetch_context", "message_count": 5},
        result={
            "thread_parent": {"topic": thread_topic} if thread_topic else None,
            "channel": {"current_topic": current_topic},
        },
    )


def search_turn(action: str, iteration: int = 2, keywords: list[str] | None = None) -> PlannerTurn:
    recommendation: dict[str, object] = {"action": action, "confidence": 0.6, "reason": "because"}
    if action != "create":
        recommendation.update(suggested_topic_id="t-1", suggested_topic_name="Redis Memory Leak")
    return PlannerTurn(
        iteration=iteration,
        step={"tool": "find_topics", "query": "q"},
        result={"recommendation": recommendation, "query_keywords": keywords or ["redis", "growing"]},
    )


@pytest.mark.asyncio
async def test_starts_with_context() -> None:
    step = await RulePlanner(context_messages=7).decide(observation(), [])

    assert isinstance(step, FetchContextStep)
    assert step.message_count == 7


@pytest.mark.asyncio
async def test_thread_reply_takes_parent_topic() -> None:
    step = await RulePlanner().decide(
        observation("same here", is_thread_reply=True),
        [context_turn(thread_topic={"id": "t-9", "name": "Parent Topic"})],
    )

    assert isinstance(step, FinalizeStep)
    assert step.action == "assign"
    assert step.topic_id == "t-9"


@pytest.mark.asyncio
async def test_short_message_stays_on_current_topic() -> None:
    step = await RulePlanner().decide(
        observation("done"),
        [context_turn(current_topic={"id": "t-3", "name": "Current"})],
    )

    assert isinstance(step, FinalizeStep)
    assert step.topic_id == "t-3"


@pytest.mark.asyncio
async def test_searches_with_message_text_after_context() -> None:
    step = await RulePlanner().decide(observation(), [context_turn()])

    assert isinstance(step, FindTopicsStep)
    assert step.query == "redis keeps growing in prod"


@pytest.mark.asyncio
async def test_review_reformulates_once_then_assigns() -> None:
    planner = RulePlanner()

    first = await planner.decide(observation(), [context_turn(), search_turn("review")])
    second = await planner.decide(
        observation(), [context_turn(), search_turn("review"), search_turn("review", 3)]
    )

    assert isinstance(first, FindTopicsStep)
    assert first.query == "redis growing"
    assert first.include_all is True
    assert isinstance(second, FinalizeStep)
    assert second.topic_id == "t-1"


@pytest.mark.asyncio
async def test_create_recommendation_proposes_topic_from_keywords() -> None:
    step = await RulePlanner().decide(
        observation(), [context_turn(), search_turn("create", keywords=["kafka", "consumer", "lag", "prod"])]
    )

    assert isinstance(step, FinalizeStep)
    assert step.action == "create"
    assert step.new_topic is not None
    assert step.new_topic.name == "Kafka Consumer Lag"
    assert step.new_topic.keywords == ["kafka", "consumer", "lag", "prod"]


@pytest.mark.asyncio
async def test_rejected_duplicate_create_reroutes_to_suggestion() -> None:
    rejected = observation(
        last_tool="finalize",
        error="duplicates existing topic",
        last_result={
            "duplicate_check": {"suggestions": [{"topic_id": "t-5", "topic_name": "Existing"}]}
        },
    )

    step = await RulePlanner().decide(rejected, [context_turn()])

    assert isinstance(step, FinalizeStep)
    assert step.action == "assign"
    assert step.topic_id == "t-5"


def test_propose_topic_without_keywords_uses_text() -> None:
    proposal = propose_topic([], "hmm")

    assert proposal is not None
    assert proposal.name == "Hmm"
    assert propose_topic([], "   ") is None
