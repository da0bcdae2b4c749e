"""Topic taxonomy models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, IDMixin, StringID, TimestampMixin


class TopicRecord(Base, IDMixin, TimestampMixin):
    """A taxonomy entry messages get assigned to."""

    __tablename__ = "topics"
    __table_args__ = (
        CheckConstraint("message_count >= 0", name="ck_topics_message_count_non_negative"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # JSON rather than JSONB so the table also works on sqlite
    keywords: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    sample_utterances: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    contributors: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    message_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    messages: Mapped[list[TopicMessage]] = relationship(
        "TopicMessage",
        back_populates="topic",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<TopicRecord {self.name} ({self.message_count} messages)>"


class TopicMessage(Base, IDMixin):
    """Link between a categorized message and its topic."""

    __tablename__ = "topic_messages"
    __table_args__ = (UniqueConstraint("topic_id", "message_ref", name="uq_topic_messages_ref"),)

    topic_id: Mapped[str] = mapped_column(
        StringID(),
        ForeignKey("topics.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    message_ref: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    topic: Mapped[TopicRecord] = relationship("TopicRecord", back_populates="messages")
