"""
Reconciles the gateway's payment callback into a final
order state.

State machine over (status, payment_status):

    (pending, unpaid) ──verified, product has access link──▶ (completed, paid)
    (pending, unpaid) ──verified, no access link───────────▶ (processing, paid)
    (cancelled, unpaid) ──verified──────────────────────────▶ (cancelled, paid)

Rules:
    - The redirect is client-controlled; only gateway.verify() decides payment
    - Each order is transitioned at most once: the write is a conditional
      UPDATE on the expected prior state, never a read-then-write
    - A callback for an already-paid order is a replay: success, no mutation
    - A gateway payment settles at most one order (gateway_reference is unique)
    - Any failure leaves the order as it was
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

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
from domain.enums import OrderStatus, PaymentStatus, SettlementOutcome
from domain.errors import ConflictError, GatewayError, ReplayDetected, StorageError
from services import catalog_service, order_store
from services.gateway_client import PaymentGatewayClient

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    outcome: SettlementOutcome
    order: Optional[Order] = None
    detail: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome.is_success


async def settle_payment(
    db: AsyncSession,
    gateway: PaymentGatewayClient,
    *,
    transaction_id: str | None,
    gateway_reference: str | None,
) -> SettlementResult:
    """
    Process one settlement callback.

    Args:
        transaction_id: Our merchant transaction id (from the success URL)
        gateway_reference: The gateway's payment id appended to the redirect (untrusted)

    Returns:
        SettlementResult; the caller maps the outcome to a redirect.

    Raises:
        StorageError: persistence failed; no transition was committed
    """
    transaction_id = (transaction_id or "").strip()
    gateway_reference = (gateway_reference or "").strip()
    if not transaction_id or not gateway_reference:
        logger.warning(
            f"Settlement callback rejected: order_id={transaction_id or '-'} "
            f"gateway_ref={gateway_reference or '-'}"
        )
        return SettlementResult(SettlementOutcome.INVALID_CALLBACK, detail="missing parameters")

    # Authority check: ask the gateway, never trust the redirect itself
    try:
        verification = await gateway.verify(gateway_reference)
    except GatewayError as e:
        outcome = (
            SettlementOutcome.GATEWAY_UNAVAILABLE if e.retriable
            else SettlementOutcome.VERIFICATION_FAILED
        )
        logger.warning(f"Verification of {gateway_reference} for {transaction_id} failed: {e.message}")
        return SettlementResult(outcome, detail=e.message)

    if not verification.completed:
        logger.warning(
            f"⚠️ Payment {gateway_reference} for {transaction_id} not completed "
            f"(gateway status: {verification.status.value})"
        )
        return SettlementResult(SettlementOutcome.VERIFICATION_FAILED, detail=verification.status.value)

    if verification.merchant_transaction_id and verification.merchant_transaction_id != transaction_id:
        logger.error(
            f"❌ Payment {gateway_reference} belongs to {verification.merchant_transaction_id}, "
            f"callback claimed {transaction_id}"
        )
        return SettlementResult(SettlementOutcome.VERIFICATION_FAILED, detail="transaction mismatch")

    order = await order_store.find_by_transaction_id(db, transaction_id)
    if not order:
        logger.warning(f"Verified payment {gateway_reference} for unknown order {transaction_id}")
        return SettlementResult(SettlementOutcome.ORDER_NOT_FOUND)

    settled = await order_store.find_by_gateway_reference(db, gateway_reference)
    if settled is not None and settled.transaction_id != transaction_id:
        logger.error(
            f"❌ Payment {gateway_reference} already settled order {settled.transaction_id}, "
            f"callback claimed {transaction_id}"
        )
        return SettlementResult(SettlementOutcome.VERIFICATION_FAILED, detail="payment already used")

    if verification.amount is not None and verification.amount < order.amount:
        logger.error(
            f"❌ Underpayment on {transaction_id}: gateway reported {verification.amount}, "
            f"order amount {order.amount}"
        )
        return SettlementResult(SettlementOutcome.VERIFICATION_FAILED, detail="amount mismatch")

    now = datetime.utcnow()
    audit = {
        "gateway_reference": gateway_reference,
        "gateway_response": json.dumps(verification.raw, default=str),
        "paid_at": now,
    }

    # Delivery data is read now, not at order creation
    product = await catalog_service.get_product_for_delivery(db, order.product_id)
    if product and product.access_link:
        target = STATE_COMPLETED_PAID
        outcome = SettlementOutcome.COMPLETED
        fields = {
            **audit,
            "download_link": product.access_link,
            "access_notes": product.access_note or DEFAULT_ACCESS_NOTE,
        }
    else:
        target = STATE_PROCESSING_PAID
        outcome = SettlementOutcome.PROCESSING
        fields = audit

    try:
        outcome = await _transition(db, transaction_id, target, outcome, fields, audit)
    except ReplayDetected as e:
        logger.info(f"  ↩️  {e}; replayed callback ignored")
        outcome = SettlementOutcome.ALREADY_SETTLED
    except ConflictError:
        # Another order claimed this payment between the check above and the update
        await db.rollback()
        logger.error(f"❌ Payment {gateway_reference} was used concurrently by another order; {transaction_id} not settled")
        return SettlementResult(SettlementOutcome.VERIFICATION_FAILED, detail="payment already used")

    await order_store.commit(db)
    order = await order_store.find_by_transaction_id(db, transaction_id, refresh=True)

    if outcome == SettlementOutcome.COMPLETED:
        logger.info(f"  ✅ Order {transaction_id} paid and auto-delivered")
    elif outcome == SettlementOutcome.PROCESSING:
        logger.info(f"  ✅ Order {transaction_id} paid; awaiting manual fulfilment")
    return SettlementResult(outcome, order=order)


async def _transition(
    db: AsyncSession,
    transaction_id: str,
    target: tuple,
    outcome: SettlementOutcome,
    fields: dict,
    audit: dict,
) -> SettlementOutcome:
    """Apply the paid transition once; classify the order if it was not pending."""
    if await order_store.atomic_transition(db, transaction_id, STATE_PENDING_UNPAID, target, **fields):
        return outcome

    current = await order_store.find_by_transaction_id(db, transaction_id, refresh=True)
    if current is None:
        # Row vanished between read and update; never fabricate one
        return SettlementOutcome.ORDER_NOT_FOUND

    if current.payment_status == PaymentStatus.PAID.value:
        raise ReplayDetected(transaction_id, current.status, current.payment_status)

    if current.status == OrderStatus.CANCELLED.value:
        # Money moved for an order the shop already cancelled: record it, refund manually
        if await order_store.atomic_transition(
            db, transaction_id, STATE_CANCELLED_UNPAID, STATE_CANCELLED_PAID, **audit
        ):
            logger.error(
                f"❌ Order {transaction_id} was cancelled but payment "
                f"{audit['gateway_reference']} completed; manual refund required"
            )
            return SettlementOutcome.PAID_AFTER_CANCEL
        raise ReplayDetected(transaction_id, current.status, PaymentStatus.PAID.value)

    # Unpaid but not pending/cancelled: no known path leads here, so do not guess
    raise StorageError(
        f"Order {transaction_id} in unexpected state ({current.status}, {current.payment_status})"
    )
