"""
Server-side pricing, order creation and payment hand-off.

Order creation never trusts client amounts: the unit price comes from the
product row and the discount from a validated coupon. The order is persisted
in (pending, unpaid) with a fresh transaction id before the gateway is ever
contacted, so a crash between the two still leaves an auditable record.
"""
import logging
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import Order
from domain.constants import (
    COUPON_MESSAGES,
    MAX_QUANTITY_PER_ORDER,
    STATE_PENDING_UNPAID,
    TRANSACTION_ID_PREFIX,
)
from domain.enums import CouponRejection, OrderStatus, PaymentStatus
from domain.errors import (
    ConflictError,
    InvalidCouponError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from services import catalog_service, coupon_service, order_store
from services.gateway_client import CustomerInfo, PaymentGatewayClient

logger = logging.getLogger(__name__)


def generate_transaction_id() -> str:
    """Merchant transaction id: TXN + 32 upper-case hex chars (uuid4)."""
    return f"{TRANSACTION_ID_PREFIX}{uuid.uuid4().hex.upper()}"


async def build_quote(
    db: AsyncSession,
    *,
    product_id: int,
    quantity: int,
    coupon_code: str | None = None,
) -> dict:
    """
    Price a single-product cart.

    Raises:
        ValidationError: quantity out of range or product without a price
        NotFoundError: unknown or unavailable product
        InvalidCouponError: coupon code given but not usable
    """
    if quantity < 1 or quantity > MAX_QUANTITY_PER_ORDER:
        raise ValidationError(f"must be between 1 and {MAX_QUANTITY_PER_ORDER}", field="quantity")

    product = await catalog_service.get_available_product(db, product_id)
    if not product:
        raise NotFoundError("Product", str(product_id))

    unit_price = product.effective_price
    if unit_price <= 0:
        raise ValidationError(f"Product {product.slug} has no price set")

    subtotal = unit_price * quantity
    discount = 0
    applied_code = None

    if coupon_service.normalize_code(coupon_code):
        result = await coupon_service.validate_coupon(db, coupon_code)
        if not result["valid"]:
            raise InvalidCouponError(result["reason"], result["message"])
        discount = coupon_service.compute_discount(subtotal, result["coupon"])
        applied_code = result["coupon"]["code"]

    return {
        "product_id": product.id,
        "product_title": product.title,
        "quantity": quantity,
        "unit_price": unit_price,
        "subtotal": subtotal,
        "discount": discount,
        "total": subtotal - discount,
        "coupon_code": applied_code,
    }


async def create_order(
    db: AsyncSession,
    *,
    product_id: int,
    quantity: int,
    customer_name: str,
    customer_email: str | None = None,
    customer_phone: str | None = None,
    coupon_code: str | None = None,
    user_id: int | None = None,
) -> dict:
    """
    Persist a new (pending, unpaid) order and return its transaction id.

    The coupon use is taken with an atomic increment in the same DB
    transaction as the order insert; the caller commits both or neither.
    """
    quote = await build_quote(db, product_id=product_id, quantity=quantity, coupon_code=coupon_code)
    if quote["total"] <= 0:
        raise ValidationError("Order total must be positive")

    if quote["coupon_code"]:
        try:
            redeemed = await coupon_service.redeem_coupon(db, quote["coupon_code"])
        except SQLAlchemyError as e:
            raise StorageError("Could not redeem coupon") from e
        if not redeemed:
            # Lost a race for the last use between validation and redemption
            reason = CouponRejection.USAGE_LIMIT_REACHED.value
            raise InvalidCouponError(reason, COUPON_MESSAGES[reason])

    transaction_id = generate_transaction_id()
    order = Order(
        transaction_id=transaction_id,
        user_id=user_id,
        customer_name=customer_name,
        customer_email=customer_email,
        customer_phone=customer_phone,
        product_id=quote["product_id"],
        product_title=quote["product_title"],
        quantity=quote["quantity"],
        unit_price=quote["unit_price"],
        subtotal=quote["subtotal"],
        discount=quote["discount"],
        amount=quote["total"],
        coupon_code=quote["coupon_code"],
        status=OrderStatus.PENDING.value,
        payment_status=PaymentStatus.UNPAID.value,
    )
    await order_store.create(db, order)

    logger.info(
        f"  🛒 Order created: {transaction_id} product={quote['product_id']} x{quantity} "
        f"amount={quote['total']} (discount={quote['discount']}, coupon={quote['coupon_code']})"
    )

    return {
        "transactionId": transaction_id,
        "orderId": order.id,
        "subtotal": quote["subtotal"],
        "discount": quote["discount"],
        "amount": quote["total"],
        "status": order.status,
        "paymentStatus": order.payment_status,
    }


async def initiate_payment(
    db: AsyncSession,
    gateway: PaymentGatewayClient,
    *,
    transaction_id: str,
) -> dict:
    """
    Create a hosted checkout for a pending order.

    The order is not modified; a gateway failure leaves it pending and the
    customer can retry.
    """
    order = await order_store.find_by_transaction_id(db, transaction_id)
    if not order:
        raise NotFoundError("Order", transaction_id)
    if (order.status, order.payment_status) != tuple(s.value for s in STATE_PENDING_UNPAID):
        raise ConflictError(
            f"Order {transaction_id} is not awaiting payment",
            details={"status": order.status, "paymentStatus": order.payment_status},
        )

    logger.info(f"🔹 Initiating payment for order {transaction_id} ({order.amount})")
    session = await gateway.initiate(
        amount=order.amount,
        transaction_id=order.transaction_id,
        customer=CustomerInfo(
            name=order.customer_name or "Guest Customer",
            phone=order.customer_phone or "",
        ),
    )
    return {"url": session.checkout_url, "transactionId": order.transaction_id}
