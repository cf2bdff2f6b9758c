"""
Bearer-token authentication helpers.

Tokens are short-lived HS256 JWTs whose subject is the user id and whose
`role` claim is informational; admin checks re-read the role from the
database (see deps.require_admin). Login/session issuance happens outside
this service; issue_access_token() exists for that collaborator and tests.
"""
import logging
from datetime import datetime, timezone, timedelta
from typing import Optional

import jwt
from fastapi import Header

from config import settings
from domain.errors import DomainError, UnauthorizedError

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    token = parts[1].strip()
    return token or None


def _require_secret() -> str:
    if not settings.jwt_secret:
        raise DomainError("Server auth misconfigured (JWT secret missing).", status_code=500)
    return settings.jwt_secret


def decode_access_token(token: str) -> dict:
    secret = _require_secret()
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            issuer=settings.jwt_issuer,
            options={"require": ["exp", "iat", "iss", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Access token expired.")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid access token.")


def issue_access_token(*, user_id: int, role: str) -> str:
    secret = _require_secret()
    now = _now_utc()
    exp = now.replace(microsecond=0) + timedelta(minutes=settings.jwt_access_ttl_minutes)
    payload = {
        "iss": settings.jwt_issuer,
        "sub": str(user_id),
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


async def get_current_user_id(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> Optional[int]:
    """
    Optional authentication: user id from a valid bearer token, None when
    no token is sent. A token that is present but invalid is rejected.
    """
    token = _parse_bearer_token(authorization)
    if not token:
        return None
    payload = decode_access_token(token)
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise UnauthorizedError("Invalid access token subject.")


async def require_user_id(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> int:
    user_id = await get_current_user_id(authorization=authorization)
    if user_id is None:
        raise UnauthorizedError("Authentication required. Provide Authorization: Bearer <token>.")
    return user_id
