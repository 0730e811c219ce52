"""Message persistence and paginated reads across both storage layouts.

New messages always go to the ``message`` table. Chats created before that
table existed keep their history in ``Chat.legacy_messages``; reading such a
chat goes through :class:`LegacyMessageReader` until its history has been
migrated. Both readers return the same :class:`MessagePage` shape, newest
message first, so callers never know which layout served them.

The legacy reader exists only for the migration window. Once every chat has
been backfilled, delete it together with ``select_message_reader``'s
fallback branch and the ``LEGACY_READ_FALLBACK`` setting.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from duet.core.errors import PersistenceError
from duet.core.settings import settings
from duet.db.time import as_utc, utcnow
from duet.models import Chat, Message
from duet.models.message import (
    MESSAGE_TYPE_CONFESSION_SHARE,
    MESSAGE_TYPE_IMAGE,
    MESSAGE_TYPE_TEXT,
    MESSAGE_TYPES,
)

logger = logging.getLogger(__name__)

SOURCE_DEDICATED = "dedicated"
SOURCE_LEGACY = "legacy"

_LEGACY_TYPE_ALIASES = {"confession": MESSAGE_TYPE_CONFESSION_SHARE}
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass(frozen=True)
class MessageRecord:
    """Storage-independent view of one message."""

    id: str
    chat_id: str
    sender_id: str
    text: str
    type: str
    image_url: str | None
    confession_id: str | None
    created_at: datetime
    is_read: bool | None = None


@dataclass(frozen=True)
class MessagePage:
    """One page of messages, newest first, with pagination metadata."""

    messages: list[MessageRecord]
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool
    source: str

    @property
    def next_cursor(self) -> datetime | None:
        if not self.has_next or not self.messages or self.source != SOURCE_DEDICATED:
            return None
        return self.messages[-1].created_at


class MessageReader(Protocol):
    """Strategy interface implemented by each storage layout."""

    source: str

    def read_page(
        self,
        chat: Chat,
        page: int,
        limit: int,
        cursor: datetime | None = None,
    ) -> MessagePage: ...


def preview_for(message_type: str, text: str) -> str:
    """Return the chat-list preview for a message of ``message_type``."""
    if message_type == MESSAGE_TYPE_CONFESSION_SHARE:
        return "Shared a confession"
    if message_type == MESSAGE_TYPE_IMAGE:
        return "Sent an image"
    return text


def _total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit > 0 else 0


def record_from_message(message: Message) -> MessageRecord:
    return MessageRecord(
        id=message.id,
        chat_id=message.chat_id,
        sender_id=message.sender_id,
        text=message.text,
        type=message.type,
        image_url=message.image_url,
        confession_id=message.confession_id,
        created_at=as_utc(message.created_at),  # type: ignore[arg-type]
    )


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)  # type: ignore[return-value]
    if isinstance(value, str) and value:
        try:
            return as_utc(datetime.fromisoformat(value))  # type: ignore[return-value]
        except ValueError:
            logger.warning("Unparseable legacy message timestamp %r", value)
    return _EPOCH


def record_from_legacy(chat_id: str, index: int, entry: dict[str, Any]) -> MessageRecord:
    """Normalize one embedded message into a :class:`MessageRecord`."""
    message_type = entry.get("type") or MESSAGE_TYPE_TEXT
    message_type = _LEGACY_TYPE_ALIASES.get(message_type, message_type)
    confession_id = entry.get("confessionId")
    return MessageRecord(
        id=str(entry.get("id") or entry.get("_id") or f"{chat_id}-legacy-{index}"),
        chat_id=chat_id,
        sender_id=str(entry.get("sender") or ""),
        text=entry.get("content") or "",
        type=message_type,
        image_url=entry.get("imageUrl") or None,
        confession_id=str(confession_id) if confession_id else None,
        created_at=_parse_timestamp(entry.get("timestamp")),
        is_read=bool(entry.get("isRead", False)),
    )


def legacy_slice_bounds(total: int, page: int, limit: int) -> tuple[int, int]:
    """Return ``(start, length)`` of page ``page`` in a chronological array.

    Pages count backwards from the end of the array, so page 1 is the newest
    ``limit`` entries. The last page is shortened instead of overlapping the
    previous one; a page past the beginning has length 0.
    """
    slice_start = total - page * limit
    slice_limit = limit
    if slice_start < 0:
        slice_limit += slice_start
        slice_start = 0
    if slice_limit <= 0:
        return 0, 0
    return slice_start, slice_limit


class DedicatedMessageReader:
    """Reads from the ``message`` table, newest first."""

    source = SOURCE_DEDICATED

    def __init__(self, db: Session) -> None:
        self.db = db

    def count(self, chat_id: str) -> int:
        return (
            self.db.query(func.count(Message.id)).filter(Message.chat_id == chat_id).scalar() or 0
        )

    def read_page(
        self,
        chat: Chat,
        page: int,
        limit: int,
        cursor: datetime | None = None,
    ) -> MessagePage:
        try:
            total = self.count(chat.id)
            query = self.db.query(Message).filter(Message.chat_id == chat.id)
            if cursor is not None:
                older = query.filter(Message.created_at < cursor)
                remaining = older.count()
                rows = older.order_by(Message.created_at.desc()).limit(limit).all()
                has_next = remaining > len(rows)
                has_prev = True
            else:
                offset = (page - 1) * limit
                rows = (
                    query.order_by(Message.created_at.desc()).offset(offset).limit(limit).all()
                )
                has_next = offset + len(rows) < total
                has_prev = page > 1
        except SQLAlchemyError as exc:
            logger.error("Failed to read messages for chat %s: %s", chat.id, exc)
            raise PersistenceError("Could not load messages") from exc

        return MessagePage(
            messages=[record_from_message(row) for row in rows],
            page=page,
            limit=limit,
            total=total,
            total_pages=_total_pages(total, limit),
            has_next=has_next,
            has_prev=has_prev,
            source=self.source,
        )


class LegacyMessageReader:
    """Reads from the embedded ``Chat.legacy_messages`` array.

    The array is chronological; each page is sliced from the end and then
    reversed to match the newest-first order of the dedicated reader.
    Cursors are not supported by this layout and are ignored.
    """

    source = SOURCE_LEGACY

    def read_page(
        self,
        chat: Chat,
        page: int,
        limit: int,
        cursor: datetime | None = None,
    ) -> MessagePage:
        entries = chat.legacy_messages or []
        total = len(entries)
        start, length = legacy_slice_bounds(total, page, limit)
        window = [
            record_from_legacy(chat.id, index, entries[index])
            for index in range(start, start + length)
        ]
        window.reverse()
        return MessagePage(
            messages=window,
            page=page,
            limit=limit,
            total=total,
            total_pages=_total_pages(total, limit),
            has_next=length > 0 and start > 0,
            has_prev=page > 1,
            source=self.source,
        )


def select_message_reader(db: Session, chat: Chat) -> MessageReader:
    """Pick the reader for ``chat``.

    The legacy reader is used only when the fallback is enabled, the
    dedicated table holds nothing for the chat and the chat still carries
    embedded messages. New chats therefore never touch the legacy layout.
    """
    dedicated = DedicatedMessageReader(db)
    if settings.legacy_read_fallback and chat.legacy_count and dedicated.count(chat.id) == 0:
        return LegacyMessageReader()
    return dedicated


def count_messages(db: Session, chat: Chat) -> int:
    """Return the total number of messages across both layouts."""
    return DedicatedMessageReader(db).count(chat.id) + chat.legacy_count


def next_timestamp(chat: Chat) -> datetime:
    """Return a creation time strictly after the chat's previous message."""
    now = utcnow()
    previous = as_utc(chat.last_message_at)
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def build_message(
    db: Session,
    chat: Chat,
    *,
    sender_id: str,
    text: str,
    message_type: str = MESSAGE_TYPE_TEXT,
    image_url: str | None = None,
    confession_id: str | None = None,
) -> Message:
    """Stage a new message and the matching chat summary update.

    Nothing is committed here; the caller commits both together so the
    message and ``last_message``/``last_message_at`` never disagree.
    """
    if message_type not in MESSAGE_TYPES:
        raise ValueError(f"Unknown message type {message_type!r}")

    created_at = next_timestamp(chat)
    message = Message(
        chat_id=chat.id,
        sender_id=sender_id,
        text=text,
        type=message_type,
        image_url=image_url,
        confession_id=confession_id,
        created_at=created_at,
    )
    db.add(message)
    chat.last_message = preview_for(message_type, text)
    chat.last_message_at = created_at
    return message
