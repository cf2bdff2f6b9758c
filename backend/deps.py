"""
Shared FastAPI dependencies: DB-backed auth guards, pagination and the
payment gateway handle.
"""

from __future__ import annotations

from typing import TypedDict

from fastapi import Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db_models import User
from domain.enums import UserRole
from domain.errors import PermissionDeniedError
from middleware.auth import require_user_id
from services.gateway_client import PaymentGatewayClient


class Pagination(TypedDict):
    limit: int
    offset: int


def pagination_params(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=100_000),
) -> Pagination:
    return {"limit": limit, "offset": offset}


async def require_admin(
    user_id: int = Depends(require_user_id),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Require that the authenticated user exists and has the admin role."""
    user = await db.get(User, user_id)
    if not user:
        raise PermissionDeniedError("Account not found.")
    if user.role != UserRole.ADMIN.value:
        raise PermissionDeniedError("Admin role required for this endpoint.")
    return user


async def is_admin(db: AsyncSession, user_id: int | None) -> bool:
    if user_id is None:
        return False
    user = await db.get(User, user_id)
    return bool(user and user.role == UserRole.ADMIN.value)


def get_gateway(request: Request) -> PaymentGatewayClient:
    """Gateway client created in the app lifespan."""
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        gateway = PaymentGatewayClient.from_settings()
        request.app.state.gateway = gateway
    return gateway
