# src/duet/services/fanout.py
"""Best-effort delivery of events to real-time rooms and push endpoints.

Nothing here raises to the caller. Every failure is logged as degraded
delivery; the operation that produced the event has already been persisted.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import Session

from duet.core.errors import DeliveryDegraded
from duet.core.settings import settings
from duet.db.session import SessionFactory
from duet.services.notification_registry import NotificationRegistry
from duet.services.outbound import OutboundQueue
from duet.services.push import PushGateway, PushGatewayError, PushPayload
from duet.services.realtime import RealtimeTransport, probe_presence, user_room

logger = logging.getLogger(__name__)

PayloadFactory = Callable[[Session], PushPayload | None]


def truncate_preview(text: str, length: int | None = None) -> str:
    limit = settings.push_preview_length if length is None else length
    return text[:limit]


class FanOut:
    """Publishes events and falls back to push notifications for offline users."""

    def __init__(
        self,
        transport: RealtimeTransport,
        outbound: OutboundQueue,
        gateway: PushGateway,
        session_factory: SessionFactory,
    ) -> None:
        self.transport = transport
        self.outbound = outbound
        self.gateway = gateway
        self.session_factory = session_factory

    async def emit(self, room: str, event: str, data: dict[str, Any]) -> int:
        """Publish to ``room`` now. Returns the number of receivers, 0 on failure."""
        try:
            return await self.transport.publish(room, event, data)
        except Exception as exc:  # noqa: BLE001 - real-time delivery is never fatal
            logger.warning("Real-time emit of %s to %s failed: %s", event, room, exc)
            return 0

    def defer_emit(self, room: str, event: str, data: dict[str, Any]) -> bool:
        """Publish to ``room`` from the outbound queue."""

        async def job() -> None:
            await self.emit(room, event, data)

        return self.outbound.submit(f"emit:{event}:{room}", job)

    async def is_online(self, user_id: str) -> bool:
        return await probe_presence(
            self.transport, user_id, settings.realtime_presence_timeout_seconds
        )

    def queue_push(self, user_id: str, build_payload: PayloadFactory) -> bool:
        """Queue a push notification for ``user_id``.

        ``build_payload`` runs inside the job with its own database session,
        so profile lookups used to enrich the notification stay off the
        request path.
        """

        async def job() -> None:
            await self._dispatch_push(user_id, build_payload)

        return self.outbound.submit(f"push:{user_id}", job)

    async def push_if_offline(self, user_id: str, build_payload: PayloadFactory) -> bool:
        """Queue a push for ``user_id`` unless they hold a live subscription.

        Returns True when a push job was queued.
        """
        if await self.is_online(user_id):
            logger.debug("User %s is online, skipping push", user_id)
            return False
        return self.queue_push(user_id, build_payload)

    async def notify_user(
        self,
        user_id: str,
        event: str,
        data: dict[str, Any],
        build_payload: PayloadFactory,
    ) -> None:
        """Emit ``event`` to the user's room and push it if they are offline."""
        await self.emit(user_room(user_id), event, data)
        await self.push_if_offline(user_id, build_payload)

    async def _dispatch_push(self, user_id: str, build_payload: PayloadFactory) -> None:
        if not self.gateway.enabled:
            logger.debug("Push gateway disabled, not notifying user %s", user_id)
            return

        with self.session_factory() as db:
            registry = NotificationRegistry(db)
            tokens = [record.token for record in registry.active_tokens(user_id)]
            if not tokens:
                logger.debug("No active push tokens for user %s", user_id)
                return

            payload = build_payload(db)
            if payload is None:
                return

            try:
                result = await self.gateway.dispatch(tokens, payload)
            except PushGatewayError as exc:
                degraded = DeliveryDegraded(f"push to user {user_id} failed")
                logger.error("%s: %s", degraded, exc)
                return

            deactivated = registry.record_dispatch_results(result)
            logger.info(
                "Push to user %s: %d delivered, %d failed, %d token(s) deactivated",
                user_id,
                result.success_count,
                result.failure_count,
                deactivated,
            )
