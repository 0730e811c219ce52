# src/duet/models/__init__.py
"""SQLAlchemy models for the Duet chat service."""

from .chat import Chat, ChatParticipant
from .message import Message
from .notification_token import NotificationToken
from .user import Confession, UserProfile

__all__ = [
    "Chat", "ChatParticipant",
    "Confession",
    "Message",
    "NotificationToken",
    "UserProfile",
]
