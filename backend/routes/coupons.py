"""
Public coupon check used by the cart page before checkout.
"""
import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from domain.enums import CouponRejection
from middleware.rate_limit import rate_limit
from models import CouponValidateRequest
from services import coupon_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/coupons", tags=["coupons"])


@router.post("/validate")
async def validate_coupon(
    request: CouponValidateRequest,
    db: AsyncSession = Depends(get_db),
    _rate=Depends(rate_limit(max_requests=settings.coupon_validate_rate_limit, window_seconds=60)),
):
    """
    Check a code without consuming it.

    200 with the discount descriptor when usable; 404 for an unknown code;
    400 for a missing, inactive, expired or exhausted one.
    """
    result = await coupon_service.validate_coupon(db, request.code)
    if result["valid"]:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"valid": True, "message": result["message"], "coupon": result["coupon"]},
        )

    code = (
        status.HTTP_404_NOT_FOUND
        if result["reason"] == CouponRejection.NOT_FOUND.value
        else status.HTTP_400_BAD_REQUEST
    )
    return JSONResponse(status_code=code, content={"valid": False, "message": result["message"]})
