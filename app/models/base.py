"""Declarative base, id column type and timestamp mixin for the topic tables."""

from datetime import datetime

from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import String, TypeDecorator

from app.core.ids import new_topic_id
from app.schemas.topic import utcnow

# Room for generated ids and for UUIDs from the search index
ID_LENGTH = 64


class StringID(TypeDecorator):
    """Opaque string id, compared verbatim; surrounding whitespace is dropped."""

    impl = String(ID_LENGTH)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(value).strip()


class Base(DeclarativeBase):
    pass


class IDMixin:
    id: Mapped[str] = mapped_column(StringID(), primary_key=True, default=new_topic_id)


class TimestampMixin:
    """created_at / updated_at, filled client side with a server default as backup."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )
