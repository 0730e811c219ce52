# src/duet/models/notification_token.py
"""SQLAlchemy model for registered push notification endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from duet.db.session import Base
from duet.db.time import utcnow

PLATFORMS = ("web", "android", "ios")


class NotificationToken(Base):
    """A device push token owned by a user.

    Tokens are soft-removed (``is_active = False``) on logout, when the
    per-user cap pushes them out, or after repeated delivery failures.
    """

    __tablename__ = "notification_token"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("user_profile.id"), nullable=False, index=True
    )
    token: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    platform: Mapped[str] = mapped_column(String(16), nullable=False, default="web")
    device_info: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    failure_count: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    last_used: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("ix_notification_token_user_active", "user_id", "is_active"),)
