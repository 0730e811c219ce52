# src/duet/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .chats import router as chats_router
from .notifications import router as notifications_router
from .realtime import router as realtime_router

__all__ = [
    "chats_router",
    "notifications_router",
    "realtime_router",
]
