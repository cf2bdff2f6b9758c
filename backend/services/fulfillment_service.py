"""
Manual fulfilment: the admin fallback for orders settlement could not
auto-deliver (product without an access link) and for cancellations.

Uses the same conditional transitions as settlement, so an admin action
racing a gateway callback cannot overwrite it.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from db_models import Order
from domain.constants import (
    DEFAULT_ACCESS_NOTE,
    STATE_CANCELLED_PAID,
    STATE_CANCELLED_UNPAID,
    STATE_COMPLETED_PAID,
    STATE_PENDING_UNPAID,
    STATE_PROCESSING_PAID,
)
from domain.errors import ConflictError, NotFoundError, ValidationError
from services import catalog_service, order_store

logger = logging.getLogger(__name__)


async def _load(db: AsyncSession, transaction_id: str) -> Order:
    order = await order_store.find_by_transaction_id(db, transaction_id)
    if not order:
        raise NotFoundError("Order", transaction_id)
    return order


async def fulfill_order(
    db: AsyncSession,
    *,
    transaction_id: str,
    download_link: str | None = None,
    access_notes: str | None = None,
) -> Order:
    """
    Complete a paid order awaiting manual delivery.

    Delivered content defaults to the product's restricted access fields;
    values supplied by the admin take precedence. A completed order always
    carries a download link.
    """
    order = await _load(db, transaction_id)

    product = await catalog_service.get_product_for_delivery(db, order.product_id)
    link = (download_link or "").strip() or (product.access_link if product else None)
    notes = (access_notes or "").strip() or (product.access_note if product else None) or DEFAULT_ACCESS_NOTE
    if not link:
        raise ValidationError("A download link is required to complete this order", field="downloadLink")

    applied = await order_store.atomic_transition(
        db,
        transaction_id,
        STATE_PROCESSING_PAID,
        STATE_COMPLETED_PAID,
        download_link=link,
        access_notes=notes,
    )
    if not applied:
        current = await order_store.find_by_transaction_id(db, transaction_id, refresh=True)
        if current is None:
            raise NotFoundError("Order", transaction_id)
        raise ConflictError(
            f"Order {transaction_id} is not awaiting fulfilment",
            details={"status": current.status, "paymentStatus": current.payment_status},
        )

    logger.info(f"  📦 Order {transaction_id} fulfilled manually")
    return await order_store.find_by_transaction_id(db, transaction_id, refresh=True)


async def cancel_order(db: AsyncSession, *, transaction_id: str) -> Order:
    """
    Cancel an order. Unpaid pending orders become (cancelled, unpaid); paid
    orders still awaiting fulfilment become (cancelled, paid) and need a
    refund outside this system.
    """
    await _load(db, transaction_id)

    if await order_store.atomic_transition(db, transaction_id, STATE_PENDING_UNPAID, STATE_CANCELLED_UNPAID):
        logger.info(f"Order {transaction_id} cancelled before payment")
    elif await order_store.atomic_transition(db, transaction_id, STATE_PROCESSING_PAID, STATE_CANCELLED_PAID):
        logger.warning(f"⚠️ Paid order {transaction_id} cancelled; refund required")
    else:
        current = await order_store.find_by_transaction_id(db, transaction_id, refresh=True)
        if current is None:
            raise NotFoundError("Order", transaction_id)
        raise ConflictError(
            f"Order {transaction_id} cannot be cancelled",
            details={"status": current.status, "paymentStatus": current.payment_status},
        )

    return await order_store.find_by_transaction_id(db, transaction_id, refresh=True)
