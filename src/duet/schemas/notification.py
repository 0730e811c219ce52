# src/duet/schemas/notification.py
"""Push notification token schemas."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class PushTokenCreate(BaseModel):
    """Schema for registering a device push token."""

    token: str = Field(..., min_length=1, max_length=512)
    platform: Literal["web", "android", "ios"] = "web"
    device_info: dict[str, Any] | None = None


class PushTokenResponse(BaseModel):
    """Schema for a registered push token."""

    id: int
    token: str
    platform: str
    is_active: bool
    last_used: datetime | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
