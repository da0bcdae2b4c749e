"""create topic taxonomy

Revision ID: 3f1e2d7c9a0b
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op
from app.models.base import StringID

# revision identifiers, used by Alembic.
revision: str = "3f1e2d7c9a0b"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "topics",
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("keywords", sa.JSON(), nullable=False),
        sa.Column("sample_utterances", sa.JSON(), nullable=False),
        sa.Column("contributors", sa.JSON(), nullable=False),
        sa.Column("message_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("id", StringID(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.CheckConstraint("message_count >= 0", name="ck_topics_message_count_non_negative"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_topics_name"), "topics", ["name"], unique=False)

    op.create_table(
        "topic_messages",
        sa.Column("topic_id", StringID(), nullable=False),
        sa.Column("message_ref", sa.String(length=255), nullable=False),
        sa.Column("id", StringID(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["topic_id"], ["topics.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("topic_id", "message_ref", name="uq_topic_messages_ref"),
    )
    op.create_index(
        op.f("ix_topic_messages_topic_id"),
        "topic_messages",
        ["topic_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_topic_messages_message_ref"),
        "topic_messages",
        ["message_ref"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_topic_messages_message_ref"), table_name="topic_messages")
    op.drop_index(op.f("ix_topic_messages_topic_id"), table_name="topic_messages")
    op.drop_table("topic_messages")
    op.drop_index(op.f("ix_topics_name"), table_name="topics")
    op.drop_table("topics")
