# src/duet/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import chats_router, notifications_router, realtime_router

__all__ = [
    "chats_router",
    "notifications_router",
    "realtime_router",
]
