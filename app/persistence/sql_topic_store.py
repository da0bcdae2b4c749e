"""Async SQLAlchemy topic store."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import get_session_maker, session_scope
from app.core.exceptions import PersistenceError, TopicNotFoundError
from app.models.topic import TopicMessage, TopicRecord
from app.schemas.topic import Topic, TopicCreate, TopicUpdate, utcnow

logger = logging.getLogger(__name__)


class SqlTopicStore:
    """Topic store over the ``topics`` and ``topic_messages`` tables.

    Calls made inside ``transaction()`` share one session that commits once on
    exit; calls made outside it each run in their own short session.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_maker = session_maker or get_session_maker()
        self._session: ContextVar[AsyncSession | None] = ContextVar(
            f"sql_topic_store_session_{id(self)}", default=None
        )

    @asynccontextmanager
    async def _session_for_call(self) -> AsyncIterator[AsyncSession]:
        active = self._session.get()
        if active is not None:
            yield active
            return
        try:
            async with session_scope(self._session_maker) as session:
                yield session
        except SQLAlchemyError as e:
            raise PersistenceError("Topic store operation failed", {"error": str(e)}) from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._session.get() is not None:
            yield
            return
        try:
            async with session_scope(self._session_maker) as session:
                token = self._session.set(session)
                try:
                    yield
                finally:
                    self._session.reset(token)
        except SQLAlchemyError as e:
            raise PersistenceError("Topic store transaction failed", {"error": str(e)}) from e

    async def get(self, topic_id: str) -> Topic | None:
        async with self._session_for_call() as session:
            record = await session.get(TopicRecord, topic_id)
            return Topic.model_validate(record) if record is not None else None

    async def create(self, fields: TopicCreate) -> str:
        name = fields.name.strip()
        if not name:
            raise PersistenceError("Topic name must not be empty")
        async with self._session_for_call() as session:
            now = utcnow()
            record = TopicRecord(
                name=name,
                description=fields.description,
                keywords=list(fields.keywords),
                sample_utterances=list(fields.sample_utterances),
                contributors=list(fields.contributors),
                message_count=fields.message_count,
                created_at=now,
                updated_at=now,
            )
            session.add(record)
            await session.flush()
            logger.info("Topic created", extra={"topic_id": record.id, "topic_name": record.name})
            return record.id

    async def update(self, topic_id: str, fields: TopicUpdate) -> None:
        patch = fields.model_dump(exclude_none=True)
        async with self._session_for_call() as session:
            record = await session.get(TopicRecord, topic_id)
            if record is None:
                raise TopicNotFoundError(topic_id)
            if "message_count" in patch and patch["message_count"] < record.message_count:
                raise PersistenceError(
                    "message_count cannot decrease",
                    {"topic_id": topic_id, "current": record.message_count},
                )
            # Validate through the read model so list bounds and dedupe apply
            merged = Topic.model_validate(record).model_dump()
            merged.update(patch)
            validated = Topic.model_validate(merged)
            for key in patch:
                setattr(record, key, getattr(validated, key))
            record.updated_at = utcnow()
            await session.flush()

    async def list(self, limit: int | None = None) -> list[Topic]:
        async with self._session_for_call() as session:
            query = select(TopicRecord).order_by(TopicRecord.created_at, TopicRecord.id)
            if limit is not None:
                query = query.limit(limit)
            result = await session.execute(query)
            return [Topic.model_validate(record) for record in result.scalars().all()]

    async def link_message(self, topic_id: str, message_ref: str) -> None:
        async with self._session_for_call() as session:
            if await session.get(TopicRecord, topic_id) is None:
                raise TopicNotFoundError(topic_id)
            existing = await session.execute(
                select(TopicMessage.id).where(
                    TopicMessage.topic_id == topic_id,
                    TopicMessage.message_ref == message_ref,
                )
            )
            if existing.scalar_one_or_none() is None:
                session.add(TopicMessage(topic_id=topic_id, message_ref=message_ref))
                await session.flush()

    async def linked_messages(self, topic_id: str) -> list[str]:
        async with self._session_for_call() as session:
            result = await session.execute(
                select(TopicMessage.message_ref)
                .where(TopicMessage.topic_id == topic_id)
                .order_by(TopicMessage.created_at, TopicMessage.id)
            )
            return list(result.scalars().all())
