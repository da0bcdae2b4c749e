"""Apply a terminal decision to the topic store and conversation state."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from typing import Any

from app.config import settings
from app.core.exceptions import PersistenceError, TopicNotFoundError, TopicTriageError
from app.core.locks import KeyedLocks
from app.persistence.contracts import TopicStore
from app.schemas.categorization import Decision
from app.schemas.conversation import ActivityEntry
from app.schemas.message import IncomingMessage
from app.schemas.topic import (
    MAX_SAMPLE_UTTERANCES,
    SAMPLE_UTTERANCE_CHARS,
    ProposedTopic,
    TopicCreate,
    TopicUpdate,
)
from app.services.categorization.duplicate_validator import validate_new_topic
from app.services.categorization.text import truncate
from app.services.conversation_state import ConversationTracker

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TopicWriteLocks:
    """Serializes taxonomy writes.

    Lock order is create lock, then topic lock, then store transaction.
    """

    create_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    topic_locks: KeyedLocks = field(default_factory=KeyedLocks)

    def for_topic(self, topic_id: str) -> AbstractAsyncContextManager[None]:
        return self.topic_locks.hold(topic_id)


@dataclass(slots=True, frozen=True)
class AppliedDecision:
    """Where the message ended up."""

    topic_id: str
    topic_name: str
    action: str
    rerouted_from_create: bool = False


class DecisionApplier:
    """Runs the single write phase for one message."""

    def __init__(
        self,
        store: TopicStore,
        tracker: ConversationTracker,
        locks: TopicWriteLocks | None = None,
        timeout: float | None = None,
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.locks = locks or TopicWriteLocks()
        self.timeout = timeout or settings.apply_timeout_seconds

    async def apply(
        self,
        decision: Decision,
        message: IncomingMessage,
        *,
        log_extra: dict[str, Any] | None = None,
    ) -> AppliedDecision:
        """Apply ``decision``; any failure surfaces as ``PersistenceError``."""
        extra = {"message_id": message.message_id, **(log_extra or {})}
        try:
            applied = await asyncio.wait_for(
                self._apply(decision, message, extra),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise PersistenceError(
                f"Applying decision timed out after {self.timeout}s",
                {"message_id": message.message_id},
            ) from e
        except PersistenceError:
            raise
        except TopicTriageError as e:
            raise PersistenceError(e.message, {**e.details, "message_id": message.message_id}) from e

        await self._remember(applied, message, extra)
        logger.info(
            "Decision applied",
            extra={
                **extra,
                "topic_id": applied.topic_id,
                "topic_name": applied.topic_name,
                "action": applied.action,
                "rerouted_from_create": applied.rerouted_from_create,
            },
        )
        return applied

    async def _apply(
        self,
        decision: Decision,
        message: IncomingMessage,
        extra: dict[str, Any],
    ) -> AppliedDecision:
        if decision.action == "assign":
            if not decision.target_topic_id:
                raise PersistenceError("Assign decision without a target topic")
            async with self.locks.for_topic(decision.target_topic_id):
                async with self.store.transaction():
                    name = await self._record(
                        decision.target_topic_id,
                        message,
                        improved_name=decision.improved_name,
                        improved_description=decision.improved_description,
                    )
            return AppliedDecision(topic_id=decision.target_topic_id, topic_name=name, action="assign")

        proposal = decision.proposed_topic
        if proposal is None or not proposal.name.strip():
            raise PersistenceError("Create decision without a topic name")

        async with self.locks.create_lock:
            # Re-check against the taxonomy as it is now, not as the planner saw it
            check = validate_new_topic(proposal, await self.store.list())
            suggestion = check.top_suggestion
            if not check.should_create and suggestion is not None:
                logger.info(
                    "Create rerouted to existing topic",
                    extra={
                        **extra,
                        "proposed_name": proposal.name,
                        "topic_id": suggestion.topic_id,
                        "duplicate_confidence": round(check.confidence, 3),
                    },
                )
                async with self.locks.for_topic(suggestion.topic_id):
                    async with self.store.transaction():
                        name = await self._record(suggestion.topic_id, message)
                return AppliedDecision(
                    topic_id=suggestion.topic_id,
                    topic_name=name,
                    action="assign",
                    rerouted_from_create=True,
                )

            async with self.store.transaction():
                topic_id = await self.store.create(_topic_create(proposal))
                name = await self._record(topic_id, message)
            return AppliedDecision(topic_id=topic_id, topic_name=name, action="create")

    async def _record(
        self,
        topic_id: str,
        message: IncomingMessage,
        *,
        improved_name: str | None = None,
        improved_description: str | None = None,
    ) -> str:
        topic = await self.store.get(topic_id)
        if topic is None:
            raise TopicNotFoundError(topic_id)

        samples = [*topic.sample_utterances, truncate(message.text, SAMPLE_UTTERANCE_CHARS)]
        contributors = list(topic.contributors)
        contributor = message.contributor
        if contributor and contributor not in contributors:
            contributors.append(contributor)

        name = (improved_name or "").strip() or topic.name
        description = (improved_description or "").strip() or None
        await self.store.update(
            topic_id,
            TopicUpdate(
                name=name if name != topic.name else None,
                description=description if description != topic.description else None,
                message_count=topic.message_count + 1,
                sample_utterances=samples[-MAX_SAMPLE_UTTERANCES:],
                contributors=contributors,
            ),
        )
        await self.store.link_message(topic_id, message.message_id)
        return name

    async def _remember(
        self,
        applied: AppliedDecision,
        message: IncomingMessage,
        extra: dict[str, Any],
    ) -> None:
        entry = ActivityEntry(
            ts=message.ts,
            message_id=message.message_id,
            text=truncate(message.text),
            user=message.contributor,
            topic_id=applied.topic_id,
            topic_name=applied.topic_name,
        )
        try:
            await self.tracker.record(message.channel_id, entry)
        except Exception as e:
            # Topic write is committed; channel state only steers later context
            logger.warning(
                "Conversation state update failed",
                extra={**extra, "channel_id": message.channel_id, "error": str(e)},
            )


def _topic_create(proposal: ProposedTopic) -> TopicCreate:
    name = proposal.name.strip()
    return TopicCreate(
        name=name,
        description=proposal.description.strip() or f"Messages about {name}",
        keywords=list(proposal.keywords),
    )
