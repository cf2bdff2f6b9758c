"""
Payment Routes — hosted checkout hand-off and the gateway success callback.

Endpoints:
    POST /api/payment/initiate  — create a gateway checkout for a pending order
    GET  /api/payment/success   — gateway redirect; verifies and settles the order

The success redirect is built by the gateway from our success URL plus its
own payment id (`txn_id`, or `payment_id` on older integrations). Nothing in
the query string is trusted; settlement_service verifies with the gateway.
"""
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from deps import get_gateway
from domain.constants import GATEWAY_REFERENCE_PARAMS
from domain.errors import StorageError
from domain.responses import success_response
from models import PaymentInitiateRequest
from services import checkout_service, settlement_service
from services.gateway_client import PaymentGatewayClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payment", tags=["payment"])


def _checkout_redirect(reason: str, transaction_id: str | None = None) -> RedirectResponse:
    query = {"status": reason}
    if transaction_id:
        query["order_id"] = transaction_id
    return RedirectResponse(f"{settings.app_base}/checkout?{urlencode(query)}")


def _gateway_reference(request: Request) -> str | None:
    for name in GATEWAY_REFERENCE_PARAMS:
        value = request.query_params.get(name)
        if value and value.strip():
            return value
    return None


@router.post("/initiate")
async def initiate_payment(
    request: PaymentInitiateRequest,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_gateway),
):
    """Return the gateway checkout URL the browser should be sent to."""
    result = await checkout_service.initiate_payment(db, gateway, transaction_id=request.transaction_id)
    return success_response(data=result)


@router.get("/success")
async def payment_success(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_gateway),
):
    """
    Settlement callback. Always answers with a redirect back to the storefront:
    the dashboard on success (or replay), the checkout page with a status
    reason otherwise.
    """
    transaction_id = request.query_params.get("order_id")
    gateway_reference = _gateway_reference(request)
    logger.info(f"🔔 Payment callback: order_id={transaction_id} gateway_ref={gateway_reference}")

    try:
        result = await settlement_service.settle_payment(
            db,
            gateway,
            transaction_id=transaction_id,
            gateway_reference=gateway_reference,
        )
    except StorageError as e:
        logger.error(f"❌ Settlement of {transaction_id} failed to persist: {e.message}")
        return _checkout_redirect("settlement_error", transaction_id)

    if result.success:
        return RedirectResponse(f"{settings.app_base}/dashboard")
    return _checkout_redirect(result.outcome.value, transaction_id)
