"""Lookups against data owned by other services (profiles, confessions)."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from duet.models import Confession, UserProfile


@dataclass(frozen=True)
class UserSummary:
    id: str
    name: str
    avatar_url: str | None = None

    def as_event(self) -> dict[str, str | None]:
        return {"id": self.id, "name": self.name, "avatarUrl": self.avatar_url}


@dataclass(frozen=True)
class ConfessionSummary:
    id: str
    content: str
    author_id: str | None
    like_count: int
    comment_count: int


def summarize_user(profile: UserProfile) -> UserSummary:
    return UserSummary(
        id=profile.id,
        name=profile.display_name or "Someone",
        avatar_url=profile.avatar_url,
    )


def get_user_summary(db: Session, user_id: str) -> UserSummary | None:
    """Return ``{name, avatar}`` for a user, or None if the profile is unknown."""
    profile = db.get(UserProfile, user_id)
    if profile is None:
        return None
    return summarize_user(profile)


def get_user_summaries(db: Session, user_ids: Iterable[str]) -> dict[str, UserSummary]:
    """Batch variant of :func:`get_user_summary` keyed by user id."""
    ids = {user_id for user_id in user_ids if user_id}
    if not ids:
        return {}
    profiles = db.query(UserProfile).filter(UserProfile.id.in_(ids)).all()
    return {profile.id: summarize_user(profile) for profile in profiles}


def get_confession_summary(db: Session, confession_id: str) -> ConfessionSummary | None:
    """Return the summary rendered inside a shared-confession message."""
    confession = db.get(Confession, confession_id)
    if confession is None:
        return None
    return ConfessionSummary(
        id=confession.id,
        content=confession.content,
        author_id=confession.author_id,
        like_count=confession.like_count,
        comment_count=confession.comment_count,
    )
