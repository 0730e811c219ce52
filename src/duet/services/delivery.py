# src/duet/services/delivery.py
"""Send path: admission, persistence, real-time emit and push fallback."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from duet.core.errors import NotFoundError, ValidationError
from duet.core.settings import settings
from duet.models import Chat, Message
from duet.models.message import (
    MESSAGE_TYPE_CONFESSION_SHARE,
    MESSAGE_TYPE_IMAGE,
    MESSAGE_TYPE_TEXT,
    MESSAGE_TYPES,
)
from duet.services.chats import ensure_can_send, require_participant
from duet.services.consistency import apply_chat_change, chat_locks
from duet.services.directory import (
    ConfessionSummary,
    UserSummary,
    get_confession_summary,
    get_user_summary,
)
from duet.services.fanout import FanOut, PayloadFactory, truncate_preview
from duet.services.message_store import (
    MessageRecord,
    build_message,
    count_messages,
    preview_for,
    record_from_message,
)
from duet.services.push import PushPayload
from duet.services.quiz import consent_request_due, mark_consent_requested
from duet.services.realtime import chat_room, user_room

logger = logging.getLogger(__name__)


@dataclass
class SendOutcome:
    message: MessageRecord
    recipient_id: str | None
    total_messages: int
    consent_requested: bool
    confession: ConfessionSummary | None = None
    push_queued: bool = False


def message_event(
    record: MessageRecord,
    sender: UserSummary,
    confession: ConfessionSummary | None = None,
) -> dict[str, Any]:
    """Build the ``message:new`` payload."""
    data: dict[str, Any] = {
        "id": record.id,
        "chatId": record.chat_id,
        "content": record.text,
        "type": record.type,
        "imageUrl": record.image_url,
        "sender": sender.as_event(),
        "createdAt": record.created_at,
        "timestamp": record.created_at,
    }
    if confession is not None:
        data["confession"] = {
            "id": confession.id,
            "content": confession.content,
            "likeCount": confession.like_count,
            "commentCount": confession.comment_count,
        }
    return data


def validate_content(
    content: str,
    message_type: str,
    image_url: str | None,
    confession_id: str | None,
) -> str:
    """Normalize and validate an outgoing message. Returns the trimmed text."""
    if message_type not in MESSAGE_TYPES:
        raise ValidationError(f"Unsupported message type: {message_type}")

    text = (content or "").strip()
    if len(text) > settings.message_max_length:
        raise ValidationError(
            f"Message must be at most {settings.message_max_length} characters"
        )
    if message_type == MESSAGE_TYPE_IMAGE:
        if not image_url:
            raise ValidationError("Image messages require an image URL")
    elif message_type == MESSAGE_TYPE_CONFESSION_SHARE:
        if not confession_id:
            raise ValidationError("Confession shares require a confession id")
    elif not text:
        raise ValidationError("Message content is required")
    return text


class DeliveryEngine:
    """Persists a message and fans it out to the chat room and the recipient."""

    def __init__(self, db: Session, fanout: FanOut) -> None:
        self.db = db
        self.fanout = fanout

    async def send_message(
        self,
        sender: UserSummary,
        chat_id: str,
        content: str,
        message_type: str = MESSAGE_TYPE_TEXT,
        image_url: str | None = None,
        confession_id: str | None = None,
    ) -> SendOutcome:
        """Send a message into a chat.

        Only persistence can fail the send. The room emit, the quiz consent
        request and the push notification are best effort.

        Raises:
            ValidationError: If the content or attachments are invalid.
            NotFoundError: If the chat or shared confession does not exist.
            AccessDeniedError: If the sender is not a participant.
            InvalidStateError: If the admission policy blocks the sender.
            PersistenceError: If the message could not be stored.
        """
        text = validate_content(content, message_type, image_url, confession_id)
        confession = None
        if message_type == MESSAGE_TYPE_CONFESSION_SHARE and confession_id:
            confession = get_confession_summary(self.db, confession_id)
            if confession is None:
                raise NotFoundError("Confession not found")

        staged: list[Message] = []

        def mutate(chat: Chat) -> tuple[str | None, int, bool]:
            require_participant(chat, sender.id)
            ensure_can_send(chat, sender.id)
            total = count_messages(self.db, chat) + 1
            staged.clear()
            staged.append(
                build_message(
                    self.db,
                    chat,
                    sender_id=sender.id,
                    text=text,
                    message_type=message_type,
                    image_url=image_url,
                    confession_id=confession_id,
                )
            )
            consent_requested = consent_request_due(chat, total) and mark_consent_requested(chat)
            other = chat.other_participant(sender.id)
            return (other.user_id if other else None), total, consent_requested

        async with chat_locks.hold(chat_id):
            _, (recipient_id, total, consent_requested) = apply_chat_change(
                self.db, chat_id, mutate
            )
            outcome = SendOutcome(
                message=record_from_message(staged[-1]),
                recipient_id=recipient_id,
                total_messages=total,
                consent_requested=consent_requested,
                confession=confession,
            )
            # Emitted under the lock so room order matches persistence order.
            await self.fanout.emit(
                chat_room(chat_id),
                "message:new",
                message_event(outcome.message, sender, confession),
            )

        logger.debug(
            "Message %s stored in chat %s (%d total)",
            outcome.message.id,
            chat_id,
            outcome.total_messages,
        )

        if outcome.consent_requested:
            logger.info(
                "Chat %s reached %d messages, asking for quiz consent",
                chat_id,
                outcome.total_messages,
            )
            self.fanout.defer_emit(
                chat_room(chat_id),
                "quiz:consent-request",
                {"chatId": chat_id, "messageCount": outcome.total_messages},
            )

        self.fanout.defer_emit(
            user_room(sender.id),
            "chat:updated",
            {
                "chatId": chat_id,
                "lastMessage": preview_for(outcome.message.type, outcome.message.text),
                "lastMessageAt": outcome.message.created_at,
            },
        )

        if outcome.recipient_id:
            outcome.push_queued = await self.fanout.push_if_offline(
                outcome.recipient_id,
                self._push_payload_factory(sender.id, chat_id, outcome.message),
            )
        return outcome

    @staticmethod
    def _push_payload_factory(sender_id: str, chat_id: str, record: MessageRecord) -> PayloadFactory:
        def build(db: Session) -> PushPayload:
            profile = get_user_summary(db, sender_id)
            name = profile.name if profile else "New message"
            body = truncate_preview(preview_for(record.type, record.text))
            return PushPayload(
                title=name,
                body=body,
                data={
                    "type": "message",
                    "chatId": chat_id,
                    "messageId": record.id,
                    "senderId": sender_id,
                },
                image=profile.avatar_url if profile else None,
            )

        return build
