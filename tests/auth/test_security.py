"""Tests for access token handling."""

from datetime import timedelta
from uuid import uuid4

import pytest
from jose import JWTError, jwt

from src.auth.permissions import UserRole
from src.auth.security import create_access_token, decode_access_token
from src.config import get_settings


class TestAccessToken:
    """Tests for access token creation and decoding."""

    def test_create_access_token(self) -> None:
        """Should create valid access token."""
        token = create_access_token({"sub": str(uuid4()), "role": UserRole.ADMIN.value})
        assert token is not None
        assert len(token) > 0

    def test_decode_access_token(self) -> None:
        """Should decode token and return payload."""
        user_id = uuid4()
        token = create_access_token(
            {"sub": str(user_id), "email": "admin@example.com", "role": "admin"}
        )
        payload = decode_access_token(token)

        assert payload["sub"] == str(user_id)
        assert payload["email"] == "admin@example.com"
        assert payload["role"] == "admin"
        assert payload["type"] == "access"
        assert "exp" in payload
        assert "iat" in payload

    def test_decode_access_token_expired(self) -> None:
        """Should raise JWTError for expired token."""
        token = create_access_token(
            {"sub": str(uuid4()), "role": "student"},
            expires_delta=timedelta(seconds=-1),
        )

        with pytest.raises(JWTError):
            decode_access_token(token)

    def test_decode_access_token_invalid(self) -> None:
        """Should raise JWTError for invalid token."""
        with pytest.raises(JWTError):
            decode_access_token("invalid.token.here")

    def test_decode_access_token_wrong_type(self) -> None:
        """Should raise JWTError if token type is not 'access'."""
        settings = get_settings()
        token = jwt.encode(
            {"sub": str(uuid4()), "role": "admin", "type": "refresh"},
            settings.auth_secret_key,
            algorithm=settings.auth_algorithm,
        )

        with pytest.raises(JWTError, match="expected 'access'"):
            decode_access_token(token)

    def test_decode_access_token_missing_role(self) -> None:
        """Should raise JWTError when the role claim is absent."""
        token = create_access_token({"sub": str(uuid4())})

        with pytest.raises(JWTError, match="'role'"):
            decode_access_token(token)
