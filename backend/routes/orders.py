"""
Order endpoints — cart quote, order creation and customer order views.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from db_models import Order
from deps import Pagination, is_admin, pagination_params
from domain.errors import NotFoundError
from domain.responses import paginated_response, success_response
from middleware.auth import get_current_user_id, require_user_id
from middleware.rate_limit import rate_limit
from models import OrderCreateRequest, QuoteRequest
from services import checkout_service, order_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])


def order_to_dict(order: Order, *, include_delivery: bool = False) -> dict:
    data = {
        "id": order.id,
        "transactionId": order.transaction_id,
        "productId": order.product_id,
        "productTitle": order.product_title,
        "quantity": order.quantity,
        "unitPrice": order.unit_price,
        "subtotal": order.subtotal,
        "discount": order.discount,
        "amount": order.amount,
        "couponCode": order.coupon_code,
        "status": order.status,
        "paymentStatus": order.payment_status,
        "customerName": order.customer_name,
        "createdAt": order.created_at.isoformat() if order.created_at else None,
        "paidAt": order.paid_at.isoformat() if order.paid_at else None,
    }
    if include_delivery:
        data["deliveredContent"] = order.delivered_content
    return data


@router.post("/quote")
async def quote_order(
    request: QuoteRequest,
    db: AsyncSession = Depends(get_db),
):
    """Price a cart without creating anything."""
    quote = await checkout_service.build_quote(
        db,
        product_id=request.product_id,
        quantity=request.quantity,
        coupon_code=request.coupon_code,
    )
    return success_response(data={
        "productId": quote["product_id"],
        "quantity": quote["quantity"],
        "unitPrice": quote["unit_price"],
        "subtotal": quote["subtotal"],
        "discount": quote["discount"],
        "total": quote["total"],
        "couponCode": quote["coupon_code"],
    })


@router.post("", status_code=201)
async def create_order(
    request: OrderCreateRequest,
    user_id: int | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    _rate=Depends(rate_limit(max_requests=settings.order_create_rate_limit, window_seconds=60)),
):
    """Create a (pending, unpaid) order; returns the transaction id for payment."""
    result = await checkout_service.create_order(
        db,
        product_id=request.product_id,
        quantity=request.quantity,
        customer_name=request.customer.name,
        customer_email=request.customer.email,
        customer_phone=request.customer.phone,
        coupon_code=request.coupon_code,
        user_id=user_id,
    )
    await order_store.commit(db)
    return success_response(data=result)


@router.get("")
async def list_my_orders(
    user_id: int = Depends(require_user_id),
    page: Pagination = Depends(pagination_params),
    db: AsyncSession = Depends(get_db),
):
    """Orders of the authenticated customer, newest first."""
    orders = await order_store.list_orders(db, user_id=user_id, limit=page["limit"], offset=page["offset"])
    total = await order_store.count_orders(db, user_id=user_id)
    return paginated_response(
        [order_to_dict(o, include_delivery=True) for o in orders],
        limit=page["limit"],
        offset=page["offset"],
        total=total,
    )


@router.get("/{transaction_id}")
async def get_order(
    transaction_id: str,
    user_id: int | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Order status by transaction id. Delivered content is only included for
    the order's owner or an admin.
    """
    order = await order_store.find_by_transaction_id(db, transaction_id)
    if not order:
        raise NotFoundError("Order", transaction_id)

    owner = user_id is not None and order.user_id == user_id
    include_delivery = owner or await is_admin(db, user_id)
    return success_response(data=order_to_dict(order, include_delivery=include_delivery))
