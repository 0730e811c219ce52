# src/duet/models/user.py
"""Read-only projections of data owned by other services."""

from __future__ import annotations

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from duet.db.session import Base


class UserProfile(Base):
    """Public profile of a user, synced from the account service.

    Used to resolve the JWT subject and to enrich events and notifications
    with a display name and avatar.
    """

    __tablename__ = "user_profile"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    display_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)


class Confession(Base):
    """Confession-board entry referenced by shared messages. Never written here."""

    __tablename__ = "confession"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    author_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    like_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    comment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
