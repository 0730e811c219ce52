"""JWT helpers for the authentication boundary.

Tokens are minted by the external identity service; this module only needs to
decode them. ``create_access_token`` mirrors the issuer's format for tooling
and tests.
"""

from __future__ import annotations

from datetime import timedelta

from jose import JWTError, jwt

from duet.core.settings import settings
from duet.db.time import utcnow


def create_access_token(user_id: str, expires_minutes: int | None = None) -> str:
    """Return a signed bearer token whose subject is ``user_id``."""
    minutes = expires_minutes or settings.access_token_expire_minutes
    payload = {"sub": user_id, "exp": utcnow() + timedelta(minutes=minutes)}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_subject(token: str) -> str | None:
    """Return the token subject, or None when the token is invalid."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    subject = payload.get("sub")
    return str(subject) if subject is not None else None
