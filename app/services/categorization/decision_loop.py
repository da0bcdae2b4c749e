"""Bounded planner loop that turns one message into an applied topic decision.

States: INIT -> GATHERING -> DECIDED -> APPLY, or GATHERING -> FALLBACK -> APPLY
when the planner does not produce a valid ``finalize`` within the iteration bound.
Nothing is written before APPLY.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from app.config import Settings, settings
from app.core.exceptions import PlannerError, ValidationError
from app.persistence.contracts import TopicStore
from app.schemas.categorization import CategorizationResult, Decision
from app.schemas.message import IncomingMessage
from app.schemas.planner import (
    FetchContextStep,
    FinalizeStep,
    FindTopicsStep,
    MessageSummary,
    PlannerObservation,
    PlannerTurn,
)
from app.schemas.topic import ProposedTopic
from app.services.categorization.apply import DecisionApplier
from app.services.categorization.context import ContextGatherer
from app.services.categorization.duplicate_validator import validate_new_topic
from app.services.categorization.planner import Planner
from app.services.categorization.retrieval import TopicRetriever

logger = logging.getLogger(__name__)

FALLBACK_TOPIC = ProposedTopic(
    name="General Discussion",
    description="General messages and conversations",
    keywords=["general", "chat", "discussion"],
)
NUDGE = "No usable step returned. Reply with one of fetch_context, find_topics or finalize."


@dataclass(slots=True)
class _Outcome:
    decision: Decision | None
    iterations: int


class DecisionLoop:
    """Asks the planner for one step at a time until it finalizes or runs out of turns."""

    def __init__(
        self,
        planner: Planner,
        retriever: TopicRetriever,
        context: ContextGatherer,
        store: TopicStore,
        applier: DecisionApplier,
        *,
        max_iterations: int | None = None,
        planner_timeout: float | None = None,
        short_message_chars: int | None = None,
        config: Settings = settings,
    ) -> None:
        self.planner = planner
        self.retriever = retriever
        self.context = context
        self.store = store
        self.applier = applier
        self.max_iterations = max_iterations or config.max_iterations
        self.planner_timeout = planner_timeout or config.planner_timeout_seconds
        self.short_message_chars = short_message_chars or config.short_message_chars

    async def categorize(self, message: IncomingMessage) -> CategorizationResult | None:
        """Categorize ``message``; ``None`` for empty text.

        Raises ``PersistenceError`` when the decision cannot be applied.
        """
        if not (message.text or "").strip():
            logger.debug("Skipping empty message", extra={"message_id": message.message_id})
            return None

        started = time.perf_counter()
        outcome = await self._gather(message)
        decision = outcome.decision or await self._fallback(message, outcome.iterations)

        applied = await self.applier.apply(decision, message)
        processing_time_ms = int((time.perf_counter() - started) * 1000)

        logger.info(
            "Message categorized",
            extra={
                "message_id": message.message_id,
                "topic_id": applied.topic_id,
                "decision": applied.action,
                "source": "validator" if applied.rerouted_from_create else decision.source,
                "iteration_count": decision.iteration_count,
                "processing_time_ms": processing_time_ms,
            },
        )
        return CategorizationResult(
            message_id=message.message_id,
            topic_id=applied.topic_id,
            topic_name=applied.topic_name,
            decision="assign" if applied.action == "assign" else "create",
            reasoning=decision.reasoning,
            iteration_count=decision.iteration_count,
            processing_time_ms=processing_time_ms,
            rerouted_from_create=applied.rerouted_from_create,
        )

    def _summary(self, message: IncomingMessage) -> MessageSummary:
        return MessageSummary(
            message_id=message.message_id,
            text=message.text,
            length=len(message.text),
            user=message.contributor,
            channel_name=message.channel_name,
            is_thread_reply=message.is_thread_reply,
            is_short=len(message.text) < self.short_message_chars,
        )

    async def _gather(self, message: IncomingMessage) -> _Outcome:
        summary = self._summary(message)
        turns: list[PlannerTurn] = []
        observation = PlannerObservation(
            message=summary,
            iteration=1,
            max_iterations=self.max_iterations,
        )

        for iteration in range(1, self.max_iterations + 1):
            extra = {"message_id": message.message_id, "iteration": iteration}
            observation = observation.model_copy(update={"iteration": iteration})

            try:
                step = await self._ask_planner(observation, turns)
            except PlannerError as e:
                logger.warning("Planner turn failed", extra={**extra, "error": e.message})
                turns.append(PlannerTurn(iteration=iteration, error=e.message))
                observation = PlannerObservation(
                    message=summary,
                    iteration=iteration + 1,
                    max_iterations=self.max_iterations,
                    error=e.message,
                )
                continue

            result: dict[str, Any] | None = None
            error: str | None = None
            if isinstance(step, FetchContextStep):
                result = await self.context.gather(message, step.message_count, log_extra=extra)
            elif isinstance(step, FindTopicsStep):
                query = step.query.strip() or message.text
                found = await self.retriever.find_topics(query, step.include_all, log_extra=extra)
                result = found.to_dict()
            elif isinstance(step, FinalizeStep):
                try:
                    decision = await self._validate_finalize(step, iteration)
                except ValidationError as e:
                    logger.info(
                        "Finalize rejected",
                        extra={**extra, "action": step.action, "error": e.message},
                    )
                    result = dict(e.details)
                    error = e.message
                else:
                    logger.info(
                        "Planner finalized",
                        extra={**extra, "action": decision.action},
                    )
                    return _Outcome(decision=decision, iterations=iteration)
            else:
                error = NUDGE

            turns.append(
                PlannerTurn(
                    iteration=iteration,
                    step=step.model_dump() if isinstance(step, BaseModel) else None,
                    result=result,
                    error=error,
                )
            )
            observation = PlannerObservation(
                message=summary,
                iteration=iteration + 1,
                max_iterations=self.max_iterations,
                last_tool=getattr(step, "tool", None),
                last_result=result,
                error=error,
            )

        logger.warning(
            "Planner did not finalize within iteration bound",
            extra={"message_id": message.message_id, "iteration": self.max_iterations},
        )
        return _Outcome(decision=None, iterations=self.max_iterations)

    async def _ask_planner(
        self,
        observation: PlannerObservation,
        turns: list[PlannerTurn],
    ) -> object:
        try:
            return await asyncio.wait_for(
                self.planner.decide(observation, list(turns)),
                timeout=self.planner_timeout,
            )
        except asyncio.TimeoutError as e:
            raise PlannerError(f"Planner timed out after {self.planner_timeout}s") from e
        except PlannerError:
            raise
        except Exception as e:
            raise PlannerError(f"Planner failed: {e}", {"error_type": type(e).__name__}) from e

    async def _validate_finalize(self, step: FinalizeStep, iteration: int) -> Decision:
        if step.action == "assign":
            if not step.topic_id:
                raise ValidationError('topic_id is required when action is "assign"')
            topic = await self.store.get(step.topic_id)
            if topic is None:
                raise ValidationError(
                    f"Unknown topic_id: {step.topic_id}",
                    {"topic_id": step.topic_id},
                )
            return Decision(
                action="assign",
                reasoning=step.reasoning,
                target_topic_id=topic.id,
                target_topic_name=topic.name,
                improved_name=step.improved_name,
                improved_description=step.improved_description,
                iteration_count=iteration,
            )

        proposal = step.new_topic
        if proposal is None and step.topic_name:
            proposal = ProposedTopic(name=step.topic_name)
        if proposal is None or not proposal.name.strip():
            raise ValidationError('new_topic with a name is required when action is "create"')

        check = validate_new_topic(proposal, await self.store.list())
        suggestion = check.top_suggestion
        if not check.should_create and suggestion is not None:
            raise ValidationError(
                f'"{proposal.name}" duplicates existing topic "{suggestion.topic_name}" '
                f"(id {suggestion.topic_id}); assign to it instead",
                {"duplicate_check": check.to_dict()},
            )
        return Decision(
            action="create",
            reasoning=step.reasoning,
            proposed_topic=proposal,
            target_topic_name=proposal.name,
            iteration_count=iteration,
        )

    async def _fallback(self, message: IncomingMessage, iterations: int) -> Decision:
        """Planner-free decision: stay on the channel topic for short messages."""
        try:
            state = await self.context.tracker.get(message.channel_id)
        except Exception as e:
            logger.warning(
                "Channel state unavailable during fallback",
                extra={
                    "message_id": message.message_id,
                    "iteration": iterations,
                    "channel_id": message.channel_id,
                    "error": str(e),
                },
            )
            state = None
        if len(message.text) < self.short_message_chars and state and state.current_topic_id:
            topic = await self.store.get(state.current_topic_id)
            if topic is not None:
                logger.info(
                    "Fallback assigns short message to channel topic",
                    extra={"message_id": message.message_id, "topic_id": topic.id},
                )
                return Decision(
                    action="assign",
                    reasoning="Short message continues the channel's current topic",
                    target_topic_id=topic.id,
                    target_topic_name=topic.name,
                    iteration_count=iterations,
                    source="fallback",
                )

        logger.info(
            "Fallback to general topic",
            extra={"message_id": message.message_id, "iteration": iterations},
        )
        return Decision(
            action="create",
            reasoning=f"No decision within {iterations} iterations; using the general topic",
            proposed_topic=FALLBACK_TOPIC.model_copy(deep=True),
            target_topic_name=FALLBACK_TOPIC.name,
            iteration_count=iterations,
            source="fallback",
        )
