"""Planner capability and the deterministic rule planner."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

from app.schemas.planner import (
    FetchContextStep,
    FinalizeStep,
    FindTopicsStep,
    PlannerObservation,
    PlannerStep,
    PlannerTurn,
)
from app.schemas.topic import ProposedTopic
from app.services.categorization.text import extract_keywords

NAME_KEYWORDS = 3
PROPOSED_KEYWORDS = 5


class Planner(Protocol):
    """Chooses the next tool step from the latest observation and prior turns."""

    async def decide(
        self,
        observation: PlannerObservation,
        turns: Sequence[PlannerTurn],
    ) -> PlannerStep:
        """Return exactly one step."""


def _results_for(turns: Sequence[PlannerTurn], tool: str) -> list[dict[str, Any]]:
    return [
        turn.result
        for turn in turns
        if turn.step and turn.step.get("tool") == tool and turn.result is not None
    ]


def propose_topic(keywords: Sequence[str], fallback_text: str = "") -> ProposedTopic | None:
    """Name a new topic after its leading keywords."""
    if keywords:
        name = " ".join(word.capitalize() for word in keywords[:NAME_KEYWORDS])
    else:
        name = fallback_text.strip()[:40].title()
    if not name:
        return None
    return ProposedTopic(
        name=name,
        description=f"Messages about {name.lower()}",
        keywords=list(keywords[:PROPOSED_KEYWORDS]),
    )


class RulePlanner:
    """Deterministic planner: context, search, optional reformulation, finalize.

    Used when no LLM is configured and in tests. It follows the same path the
    LLM planner is prompted to follow.
    """

    def __init__(self, context_messages: int = 5) -> None:
        self.context_messages = context_messages

    async def decide(
        self,
        observation: PlannerObservation,
        turns: Sequence[PlannerTurn],
    ) -> PlannerStep:
        message = observation.message
        contexts = _results_for(turns, "fetch_context")
        searches = _results_for(turns, "find_topics")

        rerouted = self._reroute_rejected_create(observation)
        if rerouted is not None:
            return rerouted

        if not contexts:
            return FetchContextStep(message_count=self.context_messages)
        context = contexts[-1]

        parent_topic = (context.get("thread_parent") or {}).get("topic")
        if message.is_thread_reply and parent_topic:
            return FinalizeStep(
                action="assign",
                topic_id=parent_topic["id"],
                topic_name=parent_topic["name"],
                reasoning="Thread reply; parent message already has a topic",
            )

        current_topic = (context.get("channel") or {}).get("current_topic")
        if not searches:
            if message.is_short and current_topic:
                return FinalizeStep(
                    action="assign",
                    topic_id=current_topic["id"],
                    topic_name=current_topic["name"],
                    reasoning="Short message continues the channel's current topic",
                )
            return FindTopicsStep(query=message.text)

        latest = searches[-1]
        recommendation = latest.get("recommendation") or {}
        action = recommendation.get("action")
        keywords = latest.get("query_keywords") or extract_keywords(message.text)

        if action == "assign" or (action == "review" and len(searches) > 1):
            return FinalizeStep(
                action="assign",
                topic_id=recommendation.get("suggested_topic_id"),
                topic_name=recommendation.get("suggested_topic_name"),
                reasoning=recommendation.get("reason", "Matched an existing topic"),
            )
        if action == "review":
            reformulated = " ".join(keywords)
            if reformulated and reformulated != message.text.strip().lower():
                return FindTopicsStep(query=reformulated, include_all=True)
            return FinalizeStep(
                action="assign",
                topic_id=recommendation.get("suggested_topic_id"),
                topic_name=recommendation.get("suggested_topic_name"),
                reasoning=recommendation.get("reason", "Plausible existing topic"),
            )

        proposal = propose_topic(keywords, message.text)
        return FinalizeStep(
            action="create",
            new_topic=proposal,
            topic_name=proposal.name if proposal else None,
            reasoning=recommendation.get("reason", "No suitable existing topic"),
        )

    def _reroute_rejected_create(self, observation: PlannerObservation) -> FinalizeStep | None:
        """After a create was blocked as a duplicate, take the suggested topic."""
        if observation.error is None or observation.last_tool != "finalize":
            return None
        validation = (observation.last_result or {}).get("duplicate_check") or {}
        suggestions = validation.get("suggestions") or []
        if not suggestions:
            return None
        top = suggestions[0]
        return FinalizeStep(
            action="assign",
            topic_id=top["topic_id"],
            topic_name=top["topic_name"],
            reasoning="Proposed topic duplicates an existing one",
        )
