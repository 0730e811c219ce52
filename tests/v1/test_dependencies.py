# tests/v1/test_dependencies.py
"""Tests for API dependencies module."""

from datetime import UTC, datetime, timedelta

import pytest
from fastapi import HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from duet.api.v1.dependencies import get_caller, get_current_user, resolve_user
from duet.core.security import create_access_token, decode_subject
from duet.core.settings import settings


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestDecodeSubject:
    """Test JWT subject extraction."""

    def test_round_trip(self):
        """A token minted locally decodes to its subject."""
        assert decode_subject(create_access_token("user-1")) == "user-1"

    def test_missing_subject(self):
        """Tokens without a subject are rejected."""
        token = jwt.encode(
            {"exp": datetime.now(UTC) + timedelta(minutes=5)},
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
        )
        assert decode_subject(token) is None

    def test_expired_token(self):
        """Expired tokens are rejected."""
        token = jwt.encode(
            {"sub": "user-1", "exp": datetime.now(UTC) - timedelta(minutes=5)},
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
        )
        assert decode_subject(token) is None

    def test_wrong_key(self):
        """Tokens signed with another key are rejected."""
        token = jwt.encode({"sub": "user-1"}, "another-key", algorithm=settings.jwt_algorithm)
        assert decode_subject(token) is None


class TestGetCurrentUser:
    """Test the get_current_user dependency function."""

    def test_get_current_user_success(self, db_session, test_user):
        """Test successful user retrieval with valid JWT."""
        token = create_access_token(test_user.id)

        result = get_current_user(_credentials(token), db_session)

        assert result == test_user
        assert get_caller(result).name == "Alice"

    def test_get_current_user_invalid_jwt(self, db_session):
        """Test get_current_user with invalid JWT token."""
        with pytest.raises(HTTPException) as exc_info:
            get_current_user(_credentials("malformed.jwt.token"), db_session)

        assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED
        assert "Could not validate credentials" in exc_info.value.detail

    def test_get_current_user_unknown_profile(self, db_session):
        """A valid token for a missing profile is rejected."""
        with pytest.raises(HTTPException) as exc_info:
            get_current_user(_credentials(create_access_token("f" * 32)), db_session)

        assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED

    def test_resolve_user(self, db_session, test_user):
        """resolve_user backs both HTTP and WebSocket authentication."""
        assert resolve_user(db_session, create_access_token(test_user.id)) == test_user
        assert resolve_user(db_session, "garbage") is None
