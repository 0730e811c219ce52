# src/duet/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .chat import ChatListResponse, ChatResponse, UnreadCountResponse
from .message import MessageCreate, MessagePageResponse, MessageResponse
from .notification import PushTokenCreate, PushTokenResponse
from .quiz import QuizConsentResponse, QuizConsentUpdate, QuizSubmit, QuizSubmitResponse

__all__ = [
    "ChatListResponse", "ChatResponse", "UnreadCountResponse",
    "MessageCreate", "MessagePageResponse", "MessageResponse",
    "PushTokenCreate", "PushTokenResponse",
    "QuizConsentResponse", "QuizConsentUpdate", "QuizSubmit", "QuizSubmitResponse",
]
