# src/duet/api/v1/endpoints/notifications.py
"""Push notification token endpoints for the Duet API."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, status

from duet.api.v1.dependencies import CallerDep, SessionDep
from duet.schemas.notification import PushTokenCreate, PushTokenResponse
from duet.services.notification_registry import NotificationRegistry

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.post("/token", status_code=status.HTTP_201_CREATED)
async def register_token(
    token_data: PushTokenCreate,
    caller: CallerDep,
    db: SessionDep,
) -> dict[str, Any]:
    """Register a device push token for the caller."""
    record, created = await NotificationRegistry(db).register_token(
        caller.id,
        token_data.token,
        platform=token_data.platform,
        device_info=token_data.device_info,
    )
    return {
        "created": created,
        "token": PushTokenResponse.model_validate(record).model_dump(mode="json"),
    }


@router.delete("/token/{token}")
async def remove_token(
    token: str,
    caller: CallerDep,
    db: SessionDep,
) -> dict[str, str]:
    """Deactivate one of the caller's push tokens, e.g. on logout."""
    if not NotificationRegistry(db).remove_token(caller.id, token):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Token not found",
        )
    return {"status": "removed"}
