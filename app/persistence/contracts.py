"""Contracts for the collaborators the categorizer depends on."""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Literal, Protocol, runtime_checkable

from app.schemas.message import HistoryMessage
from app.schemas.topic import Topic, TopicCreate, TopicUpdate
from app.services.categorization.fusion import RankedHit

SearchStrategy = Literal["lexical", "vector", "hybrid"]


@runtime_checkable
class SearchService(Protocol):
    """Ranked topic retrieval for one strategy."""

    async def search(self, strategy: str, query: str, limit: int) -> list[RankedHit]:
        """Return ranked hits; an empty list when nothing matches."""


@runtime_checkable
class TopicStore(Protocol):
    """Taxonomy persistence port."""

    async def get(self, topic_id: str) -> Topic | None:
        """Return the latest committed topic or None."""

    async def create(self, fields: TopicCreate) -> str:
        """Create a topic and return its id."""

    async def update(self, topic_id: str, fields: TopicUpdate) -> None:
        """Apply a sparse update; last writer wins."""

    async def list(self, limit: int | None = None) -> list[Topic]:
        """Return topics, oldest first."""

    async def link_message(self, topic_id: str, message_ref: str) -> None:
        """Record that ``message_ref`` belongs to ``topic_id``."""

    def transaction(self) -> AbstractAsyncContextManager[None]:
        """Group writes so they all land or none do."""


@runtime_checkable
class HistoryProvider(Protocol):
    """Conversation history lookups."""

    async def messages_before(self, channel: str, ts: str, count: int) -> list[HistoryMessage]:
        """Return up to ``count`` messages before ``ts``, oldest first."""

    async def thread_messages(self, channel: str, thread_ts: str) -> list[HistoryMessage]:
        """Return the messages of a thread, parent first."""
