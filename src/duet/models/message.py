# src/duet/models/message.py
"""Models describing messages in the dedicated message table."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from duet.db.session import Base
from duet.db.time import utcnow

MESSAGE_TYPE_TEXT = "text"
MESSAGE_TYPE_IMAGE = "image"
MESSAGE_TYPE_EMOJI = "emoji"
MESSAGE_TYPE_CONFESSION_SHARE = "confession_share"

MESSAGE_TYPES = (
    MESSAGE_TYPE_TEXT,
    MESSAGE_TYPE_IMAGE,
    MESSAGE_TYPE_EMOJI,
    MESSAGE_TYPE_CONFESSION_SHARE,
)


class Message(Base):
    """A single chat turn.

    Rows are append-only: created by a successful send, never updated and
    never deleted, not even when the chat is soft-deleted.
    """

    __tablename__ = "message"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    chat_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("chat.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("user_profile.id"), nullable=False, index=True
    )
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(24), nullable=False, default=MESSAGE_TYPE_TEXT)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    confession_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (Index("ix_message_chat_created", "chat_id", "created_at"),)
