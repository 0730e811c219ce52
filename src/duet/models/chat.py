# src/duet/models/chat.py
"""Models describing two-person chats and their per-participant state."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, SmallInteger, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from duet.db.session import Base
from duet.db.time import utcnow

REQUEST_STATUS_NONE = "none"
REQUEST_STATUS_PENDING = "pending"
REQUEST_STATUS_ACCEPTED = "accepted"
REQUEST_STATUS_REJECTED = "rejected"


def _new_id() -> str:
    return uuid.uuid4().hex


class Chat(Base):
    """Conversation aggregate between exactly two users.

    Holds the chat-request handshake, the quiz sentinels shared by both
    participants and the summary shown in chat lists. ``version`` is bumped on
    every update so concurrent writers in other processes fail fast with a
    stale-data error instead of overwriting each other.
    """

    __tablename__ = "chat"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    # Chat request handshake: none -> pending -> accepted | rejected.
    request_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=REQUEST_STATUS_NONE
    )
    requested_by_id: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("user_profile.id"), nullable=True
    )
    requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Quiz sentinels; per-user answers live on ChatParticipant.
    consent_asked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    quiz_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    answers_exchanged_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    compatibility_score: Mapped[int | None] = mapped_column(Integer, nullable=True)

    last_message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    # Embedded messages from before the dedicated message table existed. Read only.
    legacy_messages: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    participants: Mapped[list[ChatParticipant]] = relationship(
        "ChatParticipant",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="ChatParticipant.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def participant_ids(self) -> list[str]:
        """Return participant user ids in creation order."""
        return [participant.user_id for participant in self.participants]

    def slot_for(self, user_id: str) -> ChatParticipant | None:
        """Return the participant row for ``user_id`` if they belong to the chat."""
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant
        return None

    def other_participant(self, user_id: str) -> ChatParticipant | None:
        """Return the participant row that is not ``user_id``."""
        for participant in self.participants:
            if participant.user_id != user_id:
                return participant
        return None

    @property
    def legacy_count(self) -> int:
        return len(self.legacy_messages or [])


class ChatParticipant(Base):
    """One user's membership in a chat, keyed by identity.

    Stores the user's quiz consent, score and answers plus the read marker
    used for unread counts. Rows are created with the chat and never removed.
    """

    __tablename__ = "chat_participant"

    chat_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("chat.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("user_profile.id"),
        primary_key=True,
        index=True,
    )
    # 0 for the user who opened the chat, 1 for the other one.
    position: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)

    quiz_consent: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    quiz_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    quiz_answers: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    quiz_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    last_read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    chat: Mapped[Chat] = relationship("Chat", back_populates="participants")
