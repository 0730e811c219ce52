"""Chat lifecycle and the chat-request admission state machine."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from duet.core.errors import (
    AccessDeniedError,
    CannotAcceptOwnRequestError,
    InvalidStateError,
    NoPendingRequestError,
    NotFoundError,
    PersistenceError,
    SelfChatError,
)
from duet.db.time import as_utc, utcnow
from duet.models import Chat, ChatParticipant, Message, UserProfile
from duet.models.chat import (
    REQUEST_STATUS_ACCEPTED,
    REQUEST_STATUS_PENDING,
    REQUEST_STATUS_REJECTED,
)
from duet.services.consistency import apply_chat_change, chat_locks, pair_key
from duet.services.directory import UserSummary, get_user_summary
from duet.services.fanout import FanOut
from duet.services.message_store import record_from_legacy
from duet.services.push import PushPayload

logger = logging.getLogger(__name__)

PENDING_SEND_DENIED = "Chat request is pending; wait for it to be accepted before replying"
REJECTED_SEND_DENIED = "Chat request was rejected; messages can no longer be sent"
INACTIVE_SEND_DENIED = "Chat is no longer active"


@dataclass(frozen=True)
class ChatListPage:
    chats: list[Chat]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit > 0 else 0

    @property
    def has_next(self) -> bool:
        return (self.page - 1) * self.limit + len(self.chats) < self.total

    @property
    def has_prev(self) -> bool:
        return self.page > 1


def require_participant(chat: Chat, user_id: str) -> ChatParticipant:
    """Return the caller's participant row or raise ``AccessDeniedError``."""
    slot = chat.slot_for(user_id)
    if slot is None:
        raise AccessDeniedError("Access denied")
    return slot


def ensure_can_send(chat: Chat, sender_id: str) -> None:
    """Apply the admission policy for sending a message.

    The requester may write while the request is pending; the recipient may
    not until they accept. Nobody may write into a rejected or deleted chat.
    """
    if not chat.is_active:
        raise InvalidStateError(INACTIVE_SEND_DENIED)
    if chat.request_status == REQUEST_STATUS_REJECTED:
        raise InvalidStateError(REJECTED_SEND_DENIED)
    if chat.request_status == REQUEST_STATUS_PENDING and chat.requested_by_id != sender_id:
        raise InvalidStateError(PENDING_SEND_DENIED)


def _answer_guard(chat: Chat, user_id: str) -> None:
    require_participant(chat, user_id)
    if not chat.is_active:
        raise InvalidStateError(INACTIVE_SEND_DENIED)
    if chat.request_status != REQUEST_STATUS_PENDING:
        raise NoPendingRequestError("No pending chat request")
    if chat.requested_by_id == user_id:
        raise CannotAcceptOwnRequestError("You cannot answer your own chat request")


class ChatService:
    """Operations on chats scoped to an authenticated caller."""

    def __init__(self, db: Session, fanout: FanOut) -> None:
        self.db = db
        self.fanout = fanout

    def get_chat_for(self, user_id: str, chat_id: str) -> Chat:
        """Return the chat if ``user_id`` participates in it."""
        chat = self.db.get(Chat, chat_id)
        if chat is None:
            raise NotFoundError("Chat not found")
        require_participant(chat, user_id)
        return chat

    def find_active_chat(self, user_a: str, user_b: str) -> Chat | None:
        first = aliased(ChatParticipant)
        second = aliased(ChatParticipant)
        return (
            self.db.query(Chat)
            .join(first, first.chat_id == Chat.id)
            .join(second, second.chat_id == Chat.id)
            .filter(
                Chat.is_active.is_(True),
                first.user_id == user_a,
                second.user_id == user_b,
            )
            .order_by(Chat.created_at.desc())
            .first()
        )

    async def get_or_create_chat(self, caller: UserSummary, other_user_id: str) -> tuple[Chat, bool]:
        """Return the active chat between the caller and another user.

        A new chat starts with a pending request from the caller and the other
        user is notified.

        Returns:
            The chat and whether it was created by this call.
        """
        if other_user_id == caller.id:
            raise SelfChatError("You cannot chat with yourself")
        if self.db.get(UserProfile, other_user_id) is None:
            raise NotFoundError("User not found")

        async with chat_locks.hold(pair_key(caller.id, other_user_id)):
            chat = self.find_active_chat(caller.id, other_user_id)
            if chat is not None:
                return chat, False

            now = utcnow()
            chat = Chat(
                is_active=True,
                request_status=REQUEST_STATUS_PENDING,
                requested_by_id=caller.id,
                requested_at=now,
                participants=[
                    ChatParticipant(user_id=caller.id, position=0),
                    ChatParticipant(user_id=other_user_id, position=1),
                ],
            )
            self.db.add(chat)
            try:
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                raise PersistenceError("Could not create chat") from exc

        logger.info("User %s requested a chat with %s (chat %s)", caller.id, other_user_id, chat.id)
        await self.fanout.notify_user(
            other_user_id,
            "chat:request",
            {"chatId": chat.id, "requestedBy": caller.as_event(), "requestedAt": chat.requested_at},
            lambda _db: PushPayload(
                title="New chat request",
                body=f"{caller.name} wants to chat with you",
                data={"type": "chat_request", "chatId": chat.id, "senderId": caller.id},
                image=caller.avatar_url,
            ),
        )
        return chat, True

    def list_chats(self, user_id: str, page: int, limit: int) -> ChatListPage:
        """Return the caller's active chats, most recently active first."""
        base = (
            self.db.query(Chat)
            .join(ChatParticipant, ChatParticipant.chat_id == Chat.id)
            .filter(ChatParticipant.user_id == user_id, Chat.is_active.is_(True))
        )
        total = base.count()
        chats = (
            base.order_by(Chat.last_message_at.desc().nulls_last(), Chat.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return ChatListPage(chats=chats, page=page, limit=limit, total=total)

    async def _answer_request(self, caller: UserSummary, chat_id: str, accept: bool) -> Chat:
        def mutate(chat: Chat) -> None:
            _answer_guard(chat, caller.id)
            now = utcnow()
            if accept:
                chat.request_status = REQUEST_STATUS_ACCEPTED
                chat.accepted_at = now
            else:
                chat.request_status = REQUEST_STATUS_REJECTED
                chat.rejected_at = now
                chat.is_active = False

        async with chat_locks.hold(chat_id):
            chat, _ = apply_chat_change(self.db, chat_id, mutate)

        requester_id = chat.requested_by_id
        event = "chat:request-accepted" if accept else "chat:request-rejected"
        verb = "accepted" if accept else "declined"
        logger.info("User %s %s chat request %s", caller.id, verb, chat_id)
        if requester_id:
            await self.fanout.notify_user(
                requester_id,
                event,
                {
                    "chatId": chat.id,
                    "status": chat.request_status,
                    "by": caller.as_event(),
                    "at": chat.accepted_at if accept else chat.rejected_at,
                },
                lambda _db: PushPayload(
                    title="Chat request " + verb,
                    body=f"{caller.name} {verb} your chat request",
                    data={"type": event.split(":", 1)[1], "chatId": chat.id, "senderId": caller.id},
                    image=caller.avatar_url,
                ),
            )
        return chat

    async def accept_request(self, caller: UserSummary, chat_id: str) -> Chat:
        return await self._answer_request(caller, chat_id, accept=True)

    async def reject_request(self, caller: UserSummary, chat_id: str) -> Chat:
        return await self._answer_request(caller, chat_id, accept=False)

    async def mark_read(self, user_id: str, chat_id: str) -> Chat:
        """Move the caller's read marker to now."""

        def mutate(chat: Chat) -> None:
            require_participant(chat, user_id).last_read_at = utcnow()

        async with chat_locks.hold(chat_id):
            chat, _ = apply_chat_change(self.db, chat_id, mutate)
        return chat

    async def delete_chat(self, user_id: str, chat_id: str) -> Chat:
        """Soft-delete the chat for both participants. Messages are kept."""

        def mutate(chat: Chat) -> None:
            require_participant(chat, user_id)
            chat.is_active = False

        async with chat_locks.hold(chat_id):
            chat, _ = apply_chat_change(self.db, chat_id, mutate)
        logger.info("User %s deleted chat %s", user_id, chat_id)
        return chat

    def unread_count(self, user_id: str) -> int:
        """Count messages from others newer than the caller's read marker."""
        me = aliased(ChatParticipant)
        dedicated = (
            self.db.query(func.count(Message.id))
            .join(Chat, Chat.id == Message.chat_id)
            .join(me, (me.chat_id == Chat.id) & (me.user_id == user_id))
            .filter(
                Chat.is_active.is_(True),
                Message.sender_id != user_id,
                (me.last_read_at.is_(None)) | (Message.created_at > me.last_read_at),
            )
            .scalar()
            or 0
        )

        legacy = 0
        legacy_chats = (
            self.db.query(Chat, me.last_read_at)
            .join(me, (me.chat_id == Chat.id) & (me.user_id == user_id))
            .filter(Chat.is_active.is_(True), Chat.legacy_messages.is_not(None))
            .all()
        )
        for chat, last_read_at in legacy_chats:
            marker = as_utc(last_read_at)
            for index, entry in enumerate(chat.legacy_messages or []):
                record = record_from_legacy(chat.id, index, entry)
                if record.sender_id == user_id or record.is_read:
                    continue
                if marker is not None and record.created_at <= marker:
                    continue
                legacy += 1
        return int(dedicated) + legacy

    def summaries_for(self, chat: Chat) -> dict[str, UserSummary]:
        summaries: dict[str, UserSummary] = {}
        for user_id in chat.participant_ids:
            summary = get_user_summary(self.db, user_id)
            if summary is not None:
                summaries[user_id] = summary
        return summaries
