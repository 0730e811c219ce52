# src/duet/api/v1/endpoints/chats.py
"""Chat, message and quiz endpoints for the Duet API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Query, status
from sqlalchemy.orm import Session

from duet.api.v1.dependencies import CallerDep, FanOutDep, SessionDep
from duet.core.settings import settings
from duet.db.time import as_utc
from duet.models import Chat
from duet.schemas.chat import ChatListResponse, UnreadCountResponse
from duet.schemas.message import MessageCreate, MessagePageResponse
from duet.schemas.quiz import (
    QuizConsentResponse,
    QuizConsentUpdate,
    QuizSubmit,
    QuizSubmitResponse,
)
from duet.services.chats import ChatService
from duet.services.delivery import DeliveryEngine
from duet.services.directory import (
    UserSummary,
    get_confession_summary,
    get_user_summaries,
)
from duet.services.message_store import MessageRecord, select_message_reader
from duet.services.quiz import ConsentView, QuizService

router = APIRouter(prefix="/chats", tags=["chats"])


def _serialize_user(summary: UserSummary | None, user_id: str) -> dict[str, Any]:
    if summary is None:
        return {"id": user_id, "name": "Unknown user", "avatar_url": None}
    return {"id": summary.id, "name": summary.name, "avatar_url": summary.avatar_url}


def _serialize_chat(
    chat: Chat,
    viewer_id: str,
    summaries: dict[str, UserSummary],
) -> dict[str, Any]:
    """Serialize a Chat instance into API payload form."""
    participants = [
        _serialize_user(summaries.get(user_id), user_id) for user_id in chat.participant_ids
    ]
    other = chat.other_participant(viewer_id)
    return {
        "id": chat.id,
        "is_active": chat.is_active,
        "participants": participants,
        "other_user": (
            _serialize_user(summaries.get(other.user_id), other.user_id) if other else None
        ),
        "chat_request": {
            "status": chat.request_status,
            "requested_by": chat.requested_by_id,
            "requested_at": as_utc(chat.requested_at),
            "accepted_at": as_utc(chat.accepted_at),
            "rejected_at": as_utc(chat.rejected_at),
        },
        "last_message": chat.last_message,
        "last_message_at": as_utc(chat.last_message_at),
        "compatibility_score": chat.compatibility_score,
        "created_at": as_utc(chat.created_at),
    }


def _serialize_messages(db: Session, records: list[MessageRecord]) -> list[dict[str, Any]]:
    """Serialize message records, enriching senders and shared confessions."""
    senders = get_user_summaries(db, [record.sender_id for record in records])
    payload = []
    for record in records:
        confession = None
        if record.confession_id:
            summary = get_confession_summary(db, record.confession_id)
            if summary is not None:
                confession = {
                    "id": summary.id,
                    "content": summary.content,
                    "like_count": summary.like_count,
                    "comment_count": summary.comment_count,
                }
        payload.append(
            {
                "id": record.id,
                "chat_id": record.chat_id,
                "content": record.text,
                "type": record.type,
                "image_url": record.image_url,
                "sender": _serialize_user(senders.get(record.sender_id), record.sender_id),
                "confession": confession,
                "is_read": record.is_read,
                "created_at": record.created_at,
            }
        )
    return payload


def _serialize_consent(view: ConsentView) -> dict[str, Any]:
    return {
        "user_consent": view.user_consent,
        "other_user_consent": view.other_user_consent,
        "asked_at": as_utc(view.asked_at),
        "both_consented": view.both_consented,
    }


@router.get("", response_model=ChatListResponse)
async def list_chats(
    caller: CallerDep,
    db: SessionDep,
    fanout: FanOutDep,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.chats_page_limit, ge=1, le=100),
) -> dict[str, Any]:
    """List the caller's active chats, most recently active first."""
    service = ChatService(db, fanout)
    result = service.list_chats(caller.id, page, limit)
    summaries = get_user_summaries(
        db, [user_id for chat in result.chats for user_id in chat.participant_ids]
    )
    return {
        "chats": [_serialize_chat(chat, caller.id, summaries) for chat in result.chats],
        "current_page": result.page,
        "total_pages": result.total_pages,
        "total_chats": result.total,
        "has_next": result.has_next,
        "has_prev": result.has_prev,
    }


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    caller: CallerDep,
    db: SessionDep,
    fanout: FanOutDep,
) -> dict[str, int]:
    """Count unread messages across the caller's active chats."""
    return {"unread_count": ChatService(db, fanout).unread_count(caller.id)}


@router.post("/with/{user_id}")
async def get_or_create_chat(
    user_id: str,
    caller: CallerDep,
    db: SessionDep,
    fanout: FanOutDep,
) -> dict[str, Any]:
    """Return the active chat with another user, opening a chat request if none exists."""
    chat, created = await ChatService(db, fanout).get_or_create_chat(caller, user_id)
    summaries = get_user_summaries(db, chat.participant_ids)
    return {"created": created, "chat": _serialize_chat(chat, caller.id, summaries)}


@router.get("/{chat_id}/messages", response_model=MessagePageResponse)
async def list_messages(
    chat_id: str,
    caller: CallerDep,
    db: SessionDep,
    fanout: FanOutDep,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.messages_page_limit, ge=1, le=100),
    before: datetime | None = Query(None, description="Return messages older than this time"),
) -> dict[str, Any]:
    """Get a page of messages, newest first."""
    chat = ChatService(db, fanout).get_chat_for(caller.id, chat_id)
    reader = select_message_reader(db, chat)
    result = reader.read_page(chat, page, limit, as_utc(before))
    return {
        "messages": _serialize_messages(db, result.messages),
        "current_page": result.page,
        "total_pages": result.total_pages,
        "total_messages": result.total,
        "has_next": result.has_next,
        "has_prev": result.has_prev,
        "next_cursor": result.next_cursor,
    }


@router.post("/{chat_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(
    chat_id: str,
    message_data: MessageCreate,
    caller: CallerDep,
    db: SessionDep,
    fanout: FanOutDep,
) -> dict[str, Any]:
    """Send a message into a chat."""
    outcome = await DeliveryEngine(db, fanout).send_message(
        caller,
        chat_id,
        message_data.content,
        message_data.type,
        image_url=message_data.image_url,
        confession_id=message_data.confession_id,
    )
    return {"message": _serialize_messages(db, [outcome.message])[0]}


@router.put("/{chat_id}/read")
async def mark_read(
    chat_id: str,
    caller: CallerDep,
    db: SessionDep,
    fanout: FanOutDep,
) -> dict[str, str]:
    """Mark every message in the chat as read by the caller."""
    await ChatService(db, fanout).mark_read(caller.id, chat_id)
    return {"status": "marked_as_read"}


@router.delete("/{chat_id}")
async def delete_chat(
    chat_id: str,
    caller: CallerDep,
    db: SessionDep,
    fanout: FanOutDep,
) -> dict[str, str]:
    """Soft-delete a chat for both participants."""
    await ChatService(db, fanout).delete_chat(caller.id, chat_id)
    return {"status": "deleted"}


@router.post("/{chat_id}/request/accept")
async def accept_request(
    chat_id: str,
    caller: CallerDep,
    db: SessionDep,
    fanout: FanOutDep,
) -> dict[str, Any]:
    """Accept a pending chat request."""
    chat = await ChatService(db, fanout).accept_request(caller, chat_id)
    summaries = get_user_summaries(db, chat.participant_ids)
    return {"chat": _serialize_chat(chat, caller.id, summaries)}


@router.post("/{chat_id}/request/reject")
async def reject_request(
    chat_id: str,
    caller: CallerDep,
    db: SessionDep,
    fanout: FanOutDep,
) -> dict[str, Any]:
    """Reject a pending chat request. The chat is deactivated."""
    chat = await ChatService(db, fanout).reject_request(caller, chat_id)
    summaries = get_user_summaries(db, chat.participant_ids)
    return {"chat": _serialize_chat(chat, caller.id, summaries)}


@router.get("/{chat_id}/quiz-consent", response_model=QuizConsentResponse)
async def get_quiz_consent(
    chat_id: str,
    caller: CallerDep,
    db: SessionDep,
    fanout: FanOutDep,
) -> dict[str, Any]:
    """Return both participants' quiz consent as seen by the caller."""
    return _serialize_consent(QuizService(db, fanout).get_consent(caller.id, chat_id))


@router.post("/{chat_id}/quiz-consent", response_model=QuizConsentResponse)
async def set_quiz_consent(
    chat_id: str,
    consent_data: QuizConsentUpdate,
    caller: CallerDep,
    db: SessionDep,
    fanout: FanOutDep,
) -> dict[str, Any]:
    """Record the caller's answer to the quiz consent request."""
    view = await QuizService(db, fanout).set_consent(caller, chat_id, consent_data.consent)
    return _serialize_consent(view)


@router.post("/{chat_id}/quiz/submit", response_model=QuizSubmitResponse)
async def submit_quiz(
    chat_id: str,
    submission: QuizSubmit,
    caller: CallerDep,
    db: SessionDep,
    fanout: FanOutDep,
) -> dict[str, Any]:
    """Submit the caller's quiz answers and score."""
    outcome = await QuizService(db, fanout).submit(
        caller, chat_id, submission.answers, submission.score
    )
    return {
        "score": outcome.score,
        "compatibility_score": outcome.compatibility_score,
        "answers_exchanged": outcome.exchanged,
    }
