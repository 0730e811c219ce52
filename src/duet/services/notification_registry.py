"""Registry of device push tokens per user."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from duet.core.errors import PersistenceError, ValidationError
from duet.core.settings import settings
from duet.db.time import utcnow
from duet.models import NotificationToken
from duet.models.notification_token import PLATFORMS
from duet.services.consistency import token_locks
from duet.services.push import DispatchResult

logger = logging.getLogger(__name__)


class NotificationRegistry:
    """Stores push tokens and enforces the per-user active token cap.

    The cap is enforced in the same transaction as the insert and under a
    per-user lock, so concurrent registrations from several devices cannot
    push a user over the limit.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def _enforce_cap(self, user_id: str, keep: NotificationToken | None = None) -> int:
        """Deactivate every active token beyond the newest ``cap - 1``.

        Leaves room for exactly one more active token. Returns how many were
        deactivated.
        """
        cap = max(1, settings.push_token_cap)
        query = self.db.query(NotificationToken).filter(
            NotificationToken.user_id == user_id,
            NotificationToken.is_active.is_(True),
        )
        if keep is not None and keep.id is not None:
            query = query.filter(NotificationToken.id != keep.id)
        active = (
            query.order_by(NotificationToken.created_at.desc(), NotificationToken.id.desc())
            .with_for_update()
            .all()
        )
        if len(active) < cap:
            return 0

        stale = active[cap - 1:]
        for token in stale:
            token.is_active = False
        logger.info("Deactivated %d push token(s) for user %s over the cap", len(stale), user_id)
        return len(stale)

    async def register_token(
        self,
        user_id: str,
        token: str,
        platform: str = "web",
        device_info: dict[str, Any] | None = None,
    ) -> tuple[NotificationToken, bool]:
        """Register ``token`` for ``user_id``.

        An already known token is moved to the caller, reactivated and its
        failure count reset. Otherwise a new row is inserted.

        Returns:
            The token row and whether it was newly created.
        """
        token = token.strip()
        if not token:
            raise ValidationError("Push token is required")
        if platform not in PLATFORMS:
            raise ValidationError(f"Unsupported platform: {platform}")

        async with token_locks.hold(user_id):
            existing = (
                self.db.query(NotificationToken)
                .filter(NotificationToken.token == token)
                .with_for_update()
                .first()
            )
            created = existing is None
            if existing is None:
                self._enforce_cap(user_id)
                record = NotificationToken(
                    user_id=user_id,
                    token=token,
                    platform=platform,
                    device_info=device_info,
                    is_active=True,
                    failure_count=0,
                )
                self.db.add(record)
            else:
                record = existing
                if not record.is_active or record.user_id != user_id:
                    self._enforce_cap(user_id, keep=record)
                record.user_id = user_id
                record.platform = platform
                record.is_active = True
                record.failure_count = 0
                record.last_used = utcnow()
                if device_info:
                    record.device_info = device_info

            try:
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                raise PersistenceError("Could not save push token") from exc

        self.db.refresh(record)
        return record, created

    def remove_token(self, user_id: str, token: str) -> bool:
        """Soft-remove a token owned by ``user_id``. Returns False if unknown."""
        record = (
            self.db.query(NotificationToken)
            .filter(NotificationToken.token == token, NotificationToken.user_id == user_id)
            .first()
        )
        if record is None:
            return False
        record.is_active = False
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError("Could not remove push token") from exc
        return True

    def active_tokens(self, user_id: str) -> list[NotificationToken]:
        return (
            self.db.query(NotificationToken)
            .filter(
                NotificationToken.user_id == user_id,
                NotificationToken.is_active.is_(True),
            )
            .order_by(NotificationToken.created_at.desc(), NotificationToken.id.desc())
            .all()
        )

    def record_dispatch_results(self, result: DispatchResult) -> int:
        """Feed a dispatch outcome back into the registry.

        Successful tokens get their ``last_used`` touched and failure count
        reset. Failed tokens are deactivated when the gateway says they are
        unregistered, or once they reach the configured failure limit.

        Returns:
            Number of tokens deactivated.
        """
        if not result.results:
            return 0

        by_token = {
            record.token: record
            for record in self.db.query(NotificationToken)
            .filter(NotificationToken.token.in_([item.token for item in result.results]))
            .all()
        }
        deactivated = 0
        now = utcnow()
        for item in result.results:
            record = by_token.get(item.token)
            if record is None:
                continue
            if item.ok:
                record.failure_count = 0
                record.last_used = now
                continue
            record.failure_count += 1
            if item.unregistered or record.failure_count >= settings.push_token_max_failures:
                if record.is_active:
                    deactivated += 1
                record.is_active = False
                logger.info(
                    "Deactivated push token %s after delivery failure (%s)",
                    record.id,
                    item.error,
                )
        self.db.commit()
        return deactivated
