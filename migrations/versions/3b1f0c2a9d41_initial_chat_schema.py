"""initial chat schema

Revision ID: 3b1f0c2a9d41
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3b1f0c2a9d41"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create chat, participant, message and push token tables.

    ``user_profile`` and ``confession`` belong to other services; they are
    only created here when the database does not have them yet.
    """
    if op.get_context().as_sql:
        existing: set[str] = set()
    else:
        existing = set(sa.inspect(op.get_bind()).get_table_names())
    if "user_profile" not in existing:
        op.create_table(
            "user_profile",
            sa.Column("id", sa.String(length=32), nullable=False),
            sa.Column("display_name", sa.Text(), nullable=False),
            sa.Column("avatar_url", sa.Text(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
    if "confession" not in existing:
        op.create_table(
            "confession",
            sa.Column("id", sa.String(length=32), nullable=False),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("author_id", sa.String(length=32), nullable=True),
            sa.Column("like_count", sa.Integer(), nullable=False),
            sa.Column("comment_count", sa.Integer(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    op.create_table(
        "chat",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("request_status", sa.String(length=16), nullable=False),
        sa.Column("requested_by_id", sa.String(length=32), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consent_asked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("quiz_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("answers_exchanged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("compatibility_score", sa.Integer(), nullable=True),
        sa.Column("last_message", sa.Text(), nullable=False),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("legacy_messages", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["requested_by_id"], ["user_profile.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_chat_is_active", "chat", ["is_active"])
    op.create_index("ix_chat_last_message_at", "chat", ["last_message_at"])

    op.create_table(
        "chat_participant",
        sa.Column("chat_id", sa.String(length=32), nullable=False),
        sa.Column("user_id", sa.String(length=32), nullable=False),
        sa.Column("position", sa.SmallInteger(), nullable=False),
        sa.Column("quiz_consent", sa.Boolean(), nullable=True),
        sa.Column("quiz_score", sa.Float(), nullable=True),
        sa.Column("quiz_answers", sa.JSON(), nullable=True),
        sa.Column("quiz_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_read_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["chat_id"], ["chat.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["user_profile.id"]),
        sa.PrimaryKeyConstraint("chat_id", "user_id"),
    )
    op.create_index("ix_chat_participant_user_id", "chat_participant", ["user_id"])

    op.create_table(
        "message",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("chat_id", sa.String(length=32), nullable=False),
        sa.Column("sender_id", sa.String(length=32), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("type", sa.String(length=24), nullable=False),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("confession_id", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["chat_id"], ["chat.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sender_id"], ["user_profile.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_message_chat_created", "message", ["chat_id", "created_at"])
    op.create_index("ix_message_sender_id", "message", ["sender_id"])

    op.create_table(
        "notification_token",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=32), nullable=False),
        sa.Column("token", sa.Text(), nullable=False),
        sa.Column("platform", sa.String(length=16), nullable=False),
        sa.Column("device_info", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("failure_count", sa.SmallInteger(), nullable=False),
        sa.Column("last_used", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["user_profile.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token"),
    )
    op.create_index("ix_notification_token_user_id", "notification_token", ["user_id"])
    op.create_index(
        "ix_notification_token_user_active", "notification_token", ["user_id", "is_active"]
    )


def downgrade() -> None:
    """Drop every table created by this revision."""
    op.drop_index("ix_notification_token_user_active", table_name="notification_token")
    op.drop_index("ix_notification_token_user_id", table_name="notification_token")
    op.drop_table("notification_token")
    op.drop_index("ix_message_sender_id", table_name="message")
    op.drop_index("ix_message_chat_created", table_name="message")
    op.drop_table("message")
    op.drop_index("ix_chat_participant_user_id", table_name="chat_participant")
    op.drop_table("chat_participant")
    op.drop_index("ix_chat_last_message_at", table_name="chat")
    op.drop_index("ix_chat_is_active", table_name="chat")
    op.drop_table("chat")
