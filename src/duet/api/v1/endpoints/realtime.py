# src/duet/api/v1/endpoints/realtime.py
"""WebSocket endpoint backing the real-time rooms."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from duet.api.v1.dependencies import SessionFactoryDep, resolve_user
from duet.models import Chat
from duet.services.realtime import RealtimeHub, chat_room, user_room

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

# Client actions relayed as-is to the other members of the chat room.
RELAYED_ACTIONS = ("typing:start", "typing:stop", "message:read")


async def _reply(websocket: WebSocket, event: str, data: dict[str, Any]) -> None:
    await websocket.send_json({"event": event, "data": data})


def _relay_payload(
    action: str, frame: dict[str, Any], user_id: str, user_name: str, chat_id: str
) -> dict[str, Any] | None:
    """Build the event relayed for ``action``, or None if the frame is malformed."""
    if action == "typing:start":
        return {"userId": user_id, "username": user_name, "chatId": chat_id}
    if action == "typing:stop":
        return {"userId": user_id, "chatId": chat_id}
    message_ids = frame.get("messageIds")
    if not isinstance(message_ids, list) or not all(isinstance(item, str) for item in message_ids):
        return None
    return {"userId": user_id, "chatId": chat_id, "messageIds": message_ids}


@router.websocket("/realtime")
async def realtime(
    websocket: WebSocket,
    session_factory: SessionFactoryDep,
    token: str = Query(...),
) -> None:
    """Subscribe to the caller's user room and, on request, to chat rooms.

    Clients send ``{"action": "join" | "leave", "chatId": ...}`` to manage
    chat room membership and ``{"action": "ping"}`` to keep the socket alive.
    ``typing:start``, ``typing:stop`` and ``message:read`` (with
    ``messageIds``) are relayed to the other members of the chat room.
    Everything except ``leave`` is limited to the chat's participants.
    """
    with session_factory() as db:
        user = resolve_user(db, token)
        user_id = user.id if user is not None else None
        user_name = user.display_name if user is not None else ""
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    hub: RealtimeHub = websocket.app.state.realtime
    await websocket.accept()
    hub.join(user_room(user_id), websocket)
    logger.info("User %s connected to real-time rooms", user_id)
    await _reply(websocket, "connected", {"userId": user_id})

    permitted: set[str] = set()

    def may_access(chat_id: str) -> bool:
        if chat_id in permitted:
            return True
        with session_factory() as db:
            chat = db.get(Chat, chat_id)
            allowed = chat is not None and chat.slot_for(user_id) is not None
        if allowed:
            permitted.add(chat_id)
        return allowed

    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                await _reply(websocket, "error", {"detail": "Frames must be JSON objects"})
                continue
            if not isinstance(frame, dict):
                await _reply(websocket, "error", {"detail": "Frames must be JSON objects"})
                continue

            action = frame.get("action")
            chat_id = frame.get("chatId")
            if action == "ping":
                await _reply(websocket, "pong", {})
                continue
            if action not in ("join", "leave", *RELAYED_ACTIONS) or not (
                isinstance(chat_id, str) and chat_id
            ):
                await _reply(websocket, "error", {"detail": "Unknown action"})
                continue

            if action == "leave":
                hub.leave(chat_room(chat_id), websocket)
                await _reply(websocket, "left", {"chatId": chat_id})
                continue
            if not may_access(chat_id):
                await _reply(websocket, "error", {"chatId": chat_id, "detail": "Access denied"})
                continue

            if action == "join":
                hub.join(chat_room(chat_id), websocket)
                await _reply(websocket, "joined", {"chatId": chat_id})
                await hub.publish(
                    chat_room(chat_id),
                    "user:joined",
                    {"userId": user_id, "username": user_name, "chatId": chat_id},
                    exclude=websocket,
                )
                continue

            payload = _relay_payload(action, frame, user_id, user_name, chat_id)
            if payload is None:
                await _reply(
                    websocket, "error", {"chatId": chat_id, "detail": "messageIds must be a list"}
                )
                continue
            await hub.publish(chat_room(chat_id), action, payload, exclude=websocket)
    except WebSocketDisconnect:
        logger.info("User %s disconnected from real-time rooms", user_id)
    finally:
        hub.leave_all(websocket)
