"""Real-time transport: pub/sub rooms and presence probing.

Rooms are keyed ``user:<id>`` (one per user, joined by every live connection
of that user) and ``chat:<id>`` (joined by participants viewing the chat).
The hub is created once per application and injected into the components
that publish to it.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Protocol

from fastapi import WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


def chat_room(chat_id: str) -> str:
    return f"chat:{chat_id}"


class Subscriber(Protocol):
    """Anything that can receive a JSON frame, e.g. a Starlette WebSocket."""

    async def send_json(self, data: Any) -> None: ...


class RealtimeTransport(Protocol):
    """Capability required by publishers and presence probes."""

    async def publish(self, room: str, event: str, data: dict[str, Any]) -> int: ...

    async def subscribers(self, room: str) -> list[Subscriber]: ...


class RealtimeHub:
    """In-process room registry backing the WebSocket endpoint."""

    def __init__(self) -> None:
        # Members are keyed by identity; WebSocket objects are not hashable.
        self._rooms: dict[str, dict[int, Subscriber]] = defaultdict(dict)

    def join(self, room: str, subscriber: Subscriber) -> None:
        self._rooms[room][id(subscriber)] = subscriber

    def leave(self, room: str, subscriber: Subscriber) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.pop(id(subscriber), None)
        if not members:
            self._rooms.pop(room, None)

    def leave_all(self, subscriber: Subscriber) -> None:
        for room in [name for name, members in self._rooms.items() if id(subscriber) in members]:
            self.leave(room, subscriber)

    async def subscribers(self, room: str) -> list[Subscriber]:
        """Return the current members of ``room``."""
        return list(self._rooms.get(room, {}).values())

    async def publish(
        self,
        room: str,
        event: str,
        data: dict[str, Any],
        exclude: Subscriber | None = None,
    ) -> int:
        """Send ``event`` to every member of ``room`` except ``exclude``.

        A member whose socket fails is dropped from every room; the others
        still receive the frame.

        Returns:
            Number of members the frame was delivered to.
        """
        frame = {"event": event, "data": jsonable_encoder(data)}
        delivered = 0
        for subscriber in await self.subscribers(room):
            if subscriber is exclude:
                continue
            try:
                await subscriber.send_json(frame)
            except (RuntimeError, OSError, WebSocketDisconnect) as exc:
                logger.warning("Dropping subscriber of %s after send failure: %s", room, exc)
                self.leave_all(subscriber)
                continue
            delivered += 1
        return delivered


async def probe_presence(transport: RealtimeTransport, user_id: str, timeout: float) -> bool:
    """Return True if ``user_id`` holds at least one live subscription.

    Best effort: a timeout or any transport failure reports the user as
    offline so the caller falls back to push delivery.
    """
    try:
        members = await asyncio.wait_for(transport.subscribers(user_room(user_id)), timeout)
    except TimeoutError:
        logger.warning("Presence probe for user %s timed out after %.1fs", user_id, timeout)
        return False
    except Exception as exc:  # noqa: BLE001 - any transport failure means "offline"
        logger.warning("Presence probe for user %s failed: %s", user_id, exc)
        return False
    return len(members) > 0
