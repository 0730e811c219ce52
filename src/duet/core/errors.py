"""Error taxonomy shared by the chat services and the API layer.

Services raise these exceptions; the API maps them to HTTP responses through
:func:`register_error_handlers`. ``DeliveryDegraded`` is the one exception
that never crosses the service boundary: the component that hits a real-time
or push failure logs it and carries on.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ChatError(RuntimeError):
    """Base class for failures surfaced to API callers."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFoundError(ChatError):
    """Raised when a chat, message, user or confession does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class AccessDeniedError(ChatError):
    """Raised when the caller is not a participant of the chat."""

    status_code = status.HTTP_403_FORBIDDEN


class InvalidStateError(ChatError):
    """Raised when an operation is not allowed in the chat's current state."""

    status_code = status.HTTP_409_CONFLICT


class NoPendingRequestError(InvalidStateError):
    """Raised when accepting or rejecting a chat without a pending request."""


class CannotAcceptOwnRequestError(InvalidStateError):
    """Raised when the requester tries to answer their own chat request."""


class ValidationError(ChatError):
    """Raised when message content or an argument fails domain validation."""

    status_code = status.HTTP_400_BAD_REQUEST


class SelfChatError(ValidationError):
    """Raised when a user tries to open a chat with themselves."""


class PersistenceError(ChatError):
    """Raised when a store read or write fails; fatal to the operation."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class DeliveryDegraded(RuntimeError):
    """Raised inside delivery components when a real-time or push step fails."""


async def _chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    if isinstance(exc, PersistenceError):
        logger.error("Persistence failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def register_error_handlers(app: FastAPI) -> None:
    """Install the handler translating :class:`ChatError` into JSON responses."""
    app.add_exception_handler(ChatError, _chat_error_handler)
