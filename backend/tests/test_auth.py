"""
Tests for bearer-token authentication helpers.

Tests: token issue/decode, optional vs required auth dependencies.
"""
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import HTTPException

from config import settings
from middleware.auth import (
    decode_access_token,
    get_current_user_id,
    issue_access_token,
    require_user_id,
)


class TestTokens:

    @pytest.mark.unit
    def test_issue_and_decode(self):
        token = issue_access_token(user_id=42, role="customer")
        payload = decode_access_token(token)
        assert payload["sub"] == "42"
        assert payload["role"] == "customer"
        assert payload["iss"] == settings.jwt_issuer

    @pytest.mark.unit
    def test_expired_token_rejected(self):
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        token = jwt.encode(
            {
                "iss": settings.jwt_issuer,
                "sub": "1",
                "iat": int(past.timestamp()),
                "exp": int((past + timedelta(minutes=5)).timestamp()),
            },
            settings.jwt_secret,
            algorithm="HS256",
        )
        with pytest.raises(HTTPException) as exc_info:
            decode_access_token(token)
        assert exc_info.value.status_code == 401
        assert "expired" in exc_info.value.detail.lower()

    @pytest.mark.unit
    def test_wrong_secret_rejected(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {
                "iss": settings.jwt_issuer,
                "sub": "1",
                "iat": int(now.timestamp()),
                "exp": int((now + timedelta(minutes=5)).timestamp()),
            },
            "some-other-secret",
            algorithm="HS256",
        )
        with pytest.raises(HTTPException) as exc_info:
            decode_access_token(token)
        assert exc_info.value.status_code == 401


class TestDependencies:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_optional_auth_without_header(self):
        assert await get_current_user_id(authorization=None) is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_optional_auth_with_valid_token(self):
        token = issue_access_token(user_id=7, role="customer")
        assert await get_current_user_id(authorization=f"Bearer {token}") == 7

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_optional_auth_rejects_garbage_token(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user_id(authorization="Bearer not-a-jwt")
        assert exc_info.value.status_code == 401

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_required_auth_missing_header(self):
        with pytest.raises(HTTPException) as exc_info:
            await require_user_id(authorization=None)
        assert exc_info.value.status_code == 401
        assert "Authentication required" in exc_info.value.detail

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_non_bearer_scheme_ignored(self):
        assert await get_current_user_id(authorization="Basic dXNlcjpwYXNz") is None
