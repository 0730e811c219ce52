# src/duet/schemas/message.py
"""Message-related Pydantic schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from duet.schemas.chat import UserSummaryResponse

MessageType = Literal["text", "image", "emoji", "confession_share"]


class MessageCreate(BaseModel):
    """Schema for sending a message into a chat."""

    content: str = Field("", description="Message text; trimmed before storing")
    type: MessageType = Field("text", description="Kind of message")
    image_url: str | None = Field(None, description="URL of an uploaded image")
    confession_id: str | None = Field(None, description="Confession shared by this message")


class ConfessionPreview(BaseModel):
    """Summary of a confession embedded in a shared-confession message."""

    id: str
    content: str
    like_count: int = 0
    comment_count: int = 0


class MessageResponse(BaseModel):
    """Schema for a message returned by the API."""

    id: str
    chat_id: str
    content: str
    type: str
    image_url: str | None = None
    sender: UserSummaryResponse
    confession: ConfessionPreview | None = None
    is_read: bool | None = None
    created_at: datetime


class MessagePageResponse(BaseModel):
    """A page of messages, newest first."""

    messages: list[MessageResponse]
    current_page: int
    total_pages: int
    total_messages: int
    has_next: bool
    has_prev: bool
    next_cursor: datetime | None = None
