# src/duet/services/__init__.py
"""Business logic services for the Duet chat service."""

from .chats import ChatService
from .delivery import DeliveryEngine
from .fanout import FanOut
from .notification_registry import NotificationRegistry
from .outbound import OutboundQueue
from .push import PushGateway
from .quiz import QuizService
from .realtime import RealtimeHub

__all__ = [
    "ChatService",
    "DeliveryEngine",
    "FanOut",
    "NotificationRegistry",
    "OutboundQueue",
    "PushGateway",
    "QuizService",
    "RealtimeHub",
]
