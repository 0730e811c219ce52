"""Shared API dependencies for authentication and the delivery stack."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from duet.core.security import decode_subject
from duet.db.session import SessionFactory, get_db, get_session_factory
from duet.models import UserProfile
from duet.services.directory import UserSummary, summarize_user
from duet.services.fanout import FanOut
from duet.services.outbound import OutboundQueue
from duet.services.push import PushGateway
from duet.services.realtime import RealtimeHub

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]
SessionFactoryDep = Annotated[SessionFactory, Depends(get_session_factory)]


def resolve_user(db: Session, token: str) -> UserProfile | None:
    """Return the profile behind a bearer token, or None if it is not valid."""
    subject = decode_subject(token)
    if subject is None:
        return None
    return db.get(UserProfile, subject)


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    db: SessionDep,
) -> UserProfile:
    """Get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Bearer token credentials
        db: Database session

    Returns:
        Profile of the authenticated user

    Raises:
        HTTPException: If token is invalid or user not found
    """
    user = resolve_user(db, credentials.credentials)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return user


# Type alias for current user dependency
CurrentUserDep = Annotated[UserProfile, Depends(get_current_user)]


def get_caller(user: CurrentUserDep) -> UserSummary:
    """Return the caller identity handed to the chat services."""
    return summarize_user(user)


CallerDep = Annotated[UserSummary, Depends(get_caller)]


def get_realtime_hub(request: Request) -> RealtimeHub:
    return request.app.state.realtime


def get_outbound_queue(request: Request) -> OutboundQueue:
    return request.app.state.outbound


def get_push_gateway(request: Request) -> PushGateway:
    return request.app.state.push_gateway


def get_fanout(
    hub: Annotated[RealtimeHub, Depends(get_realtime_hub)],
    outbound: Annotated[OutboundQueue, Depends(get_outbound_queue)],
    gateway: Annotated[PushGateway, Depends(get_push_gateway)],
    session_factory: SessionFactoryDep,
) -> FanOut:
    """Assemble the fan-out from the application-wide delivery components."""
    return FanOut(hub, outbound, gateway, session_factory)


FanOutDep = Annotated[FanOut, Depends(get_fanout)]
