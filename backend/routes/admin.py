"""
Admin endpoints — order oversight, manual fulfilment and coupon management.

Every route requires a bearer token of a user whose stored role is admin.
"""
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db_models import Coupon, User
from deps import Pagination, pagination_params, require_admin
from domain.enums import OrderStatus
from domain.responses import paginated_response, success_response
from models import CouponCreateRequest, CouponUpdateRequest, FulfillOrderRequest
from routes.orders import order_to_dict
from services import coupon_service, fulfillment_service, order_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


def coupon_to_dict(c: Coupon) -> dict:
    return {
        "id": c.id,
        "code": c.code,
        "discountType": c.discount_type,
        "discountAmount": c.discount_amount,
        "expirationDate": c.expiration_date.isoformat() if c.expiration_date else None,
        "usageLimit": c.usage_limit,
        "usedCount": c.used_count,
        "isActive": c.is_active,
        "createdAt": c.created_at.isoformat() if c.created_at else None,
    }


# ════════════════════════════════════════════════════════════════════
# Orders
# ════════════════════════════════════════════════════════════════════


@router.get("/orders")
async def list_orders(
    status: OrderStatus | None = Query(None),
    page: Pagination = Depends(pagination_params),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    status_value = status.value if status else None
    orders = await order_store.list_orders(
        db, status=status_value, limit=page["limit"], offset=page["offset"]
    )
    total = await order_store.count_orders(db, status=status_value)
    return paginated_response(
        [order_to_dict(o, include_delivery=True) for o in orders],
        limit=page["limit"],
        offset=page["offset"],
        total=total,
    )


@router.post("/orders/{transaction_id}/fulfill")
async def fulfill_order(
    transaction_id: str,
    request: FulfillOrderRequest | None = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Deliver a paid order that is waiting in processing."""
    request = request or FulfillOrderRequest()
    order = await fulfillment_service.fulfill_order(
        db,
        transaction_id=transaction_id,
        download_link=request.download_link,
        access_notes=request.access_notes,
    )
    await order_store.commit(db)
    logger.info(f"Admin {admin.id} fulfilled order {transaction_id}")
    return success_response(data=order_to_dict(order, include_delivery=True))


@router.post("/orders/{transaction_id}/cancel")
async def cancel_order(
    transaction_id: str,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    order = await fulfillment_service.cancel_order(db, transaction_id=transaction_id)
    await order_store.commit(db)
    logger.info(f"Admin {admin.id} cancelled order {transaction_id}")
    return success_response(data=order_to_dict(order, include_delivery=True))


# ════════════════════════════════════════════════════════════════════
# Coupons
# ════════════════════════════════════════════════════════════════════


@router.get("/coupons")
async def list_coupons(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    coupons = await coupon_service.list_coupons(db)
    return success_response(
        data={"coupons": [coupon_to_dict(c) for c in coupons]},
        meta={"total": len(coupons)},
    )


@router.post("/coupons", status_code=201)
async def create_coupon(
    request: CouponCreateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    coupon = await coupon_service.create_coupon(
        db,
        code=request.code,
        discount_type=request.discount_type,
        discount_amount=request.discount_amount,
        expiration_date=request.expiration_date,
        usage_limit=request.usage_limit,
        is_active=request.is_active,
    )
    await order_store.commit(db)
    await db.refresh(coupon)
    return success_response(data=coupon_to_dict(coupon))


@router.put("/coupons/{coupon_id}")
async def update_coupon(
    coupon_id: int,
    request: CouponUpdateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    # An explicit null clears the optional limits; an absent field is left alone
    sent = request.model_fields_set
    coupon = await coupon_service.update_coupon(
        db,
        coupon_id=coupon_id,
        code=request.code,
        discount_type=request.discount_type,
        discount_amount=request.discount_amount,
        expiration_date=request.expiration_date,
        clear_expiration="expiration_date" in sent and request.expiration_date is None,
        usage_limit=request.usage_limit,
        clear_usage_limit="usage_limit" in sent and request.usage_limit is None,
        is_active=request.is_active,
    )
    await order_store.commit(db)
    await db.refresh(coupon)
    return success_response(data=coupon_to_dict(coupon))


@router.delete("/coupons/{coupon_id}")
async def delete_coupon(
    coupon_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await coupon_service.delete_coupon(db, coupon_id=coupon_id)
    await order_store.commit(db)
    return success_response(data={"id": coupon_id, "deleted": True})
