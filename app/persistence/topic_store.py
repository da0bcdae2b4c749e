"""In-process topic store."""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar

from app.core.exceptions import PersistenceError, TopicNotFoundError
from app.core.ids import new_topic_id
from app.persistence.contracts import TopicStore
from app.schemas.topic import Topic, TopicCreate, TopicUpdate, utcnow

logger = logging.getLogger(__name__)

__all__ = ["InMemoryTopicStore", "TopicStore"]


class InMemoryTopicStore:
    """Dict-backed store whose transactions restore a snapshot on failure.

    Transactions are serialized; a transaction opened inside another one on the
    same task joins the outer one.
    """

    def __init__(self, topics: list[Topic] | None = None) -> None:
        self._topics: dict[str, Topic] = {topic.id: topic for topic in topics or []}
        self._links: dict[str, list[str]] = {}
        self._tx_lock = asyncio.Lock()
        self._in_transaction: ContextVar[bool] = ContextVar(
            f"topic_store_tx_{id(self)}", default=False
        )

    async def get(self, topic_id: str) -> Topic | None:
        return self._topics.get(topic_id)

    async def create(self, fields: TopicCreate) -> str:
        name = fields.name.strip()
        if not name:
            raise PersistenceError("Topic name must not be empty")
        now = utcnow()
        topic = Topic(
            id=new_topic_id(),
            name=name,
            description=fields.description,
            keywords=list(fields.keywords),
            sample_utterances=list(fields.sample_utterances),
            contributors=list(fields.contributors),
            message_count=fields.message_count,
            created_at=now,
            updated_at=now,
        )
        self._topics[topic.id] = topic
        logger.info("Topic created", extra={"topic_id": topic.id, "topic_name": topic.name})
        return topic.id

    async def update(self, topic_id: str, fields: TopicUpdate) -> None:
        current = self._topics.get(topic_id)
        if current is None:
            raise TopicNotFoundError(topic_id)
        patch = fields.model_dump(exclude_none=True)
        if "message_count" in patch and patch["message_count"] < current.message_count:
            raise PersistenceError(
                "message_count cannot decrease",
                {"topic_id": topic_id, "current": current.message_count},
            )
        data = current.model_dump()
        data.update(patch)
        data["updated_at"] = utcnow()
        self._topics[topic_id] = Topic.model_validate(data)

    async def list(self, limit: int | None = None) -> list[Topic]:
        topics = sorted(self._topics.values(), key=lambda topic: topic.created_at)
        return topics[:limit] if limit is not None else topics

    async def link_message(self, topic_id: str, message_ref: str) -> None:
        if topic_id not in self._topics:
            raise TopicNotFoundError(topic_id)
        refs = self._links.setdefault(topic_id, [])
        if message_ref not in refs:
            refs.append(message_ref)

    def linked_messages(self, topic_id: str) -> list[str]:
        return list(self._links.get(topic_id, []))

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._in_transaction.get():
            yield
            return

        async with self._tx_lock:
            topics_snapshot = dict(self._topics)
            links_snapshot = copy.deepcopy(self._links)
            token = self._in_transaction.set(True)
            try:
                yield
            except BaseException:
                self._topics = topics_snapshot
                self._links = links_snapshot
                logger.warning("Topic store transaction rolled back")
                raise
            finally:
                self._in_transaction.reset(token)
