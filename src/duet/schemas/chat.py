# src/duet/schemas/chat.py
"""Chat-related Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, Field


class UserSummaryResponse(BaseModel):
    """Display information for a chat participant."""

    id: str
    name: str
    avatar_url: str | None = None


class ChatRequestResponse(BaseModel):
    """State of the chat-request handshake."""

    status: str
    requested_by: str | None = None
    requested_at: datetime | None = None
    accepted_at: datetime | None = None
    rejected_at: datetime | None = None


class ChatResponse(BaseModel):
    """Schema for chat information returned by the API."""

    id: str
    is_active: bool
    participants: list[UserSummaryResponse]
    other_user: UserSummaryResponse | None = None
    chat_request: ChatRequestResponse
    last_message: str = ""
    last_message_at: datetime | None = None
    compatibility_score: int | None = None
    created_at: datetime | None = None


class ChatListResponse(BaseModel):
    """A page of the caller's chats, most recently active first."""

    chats: list[ChatResponse]
    current_page: int = Field(..., ge=1)
    total_pages: int
    total_chats: int
    has_next: bool
    has_prev: bool


class UnreadCountResponse(BaseModel):
    """Number of unread messages across the caller's chats."""

    unread_count: int
