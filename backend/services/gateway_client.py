"""
Payment gateway client (RupantorPay).

Handles:
    1. Checkout creation: amount + callback URLs carrying our transaction id
    2. Payment verification: the only trusted source of payment completion

The gateway's response shape is loosely documented and has drifted over
time, so responses are decoded at this boundary into CheckoutSession and
VerificationResult. Nothing outside this module reads raw gateway fields.

Failure policy:
    - Network errors, timeouts, non-2xx and non-JSON bodies raise GatewayError
    - A GatewayError from verify() is never a successful verification
    - Missing API key fails closed
"""
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from config import settings
from domain.enums import GatewayStatus
from domain.errors import GatewayError

logger = logging.getLogger(__name__)

# Known locations of the checkout URL across gateway response versions
CHECKOUT_URL_KEYS = (
    ("payment_url",),
    ("url",),
    ("checkout_url",),
    ("data", "payment_url"),
    ("data", "url"),
)

FAILED_STATUSES = {"failed", "failure", "cancelled", "canceled", "expired", "declined", "rejected", "refunded"}
PENDING_STATUSES = {"pending", "processing", "initiated", "unpaid"}


@dataclass
class CustomerInfo:
    name: str = "Guest Customer"
    phone: str = ""


@dataclass
class CheckoutSession:
    checkout_url: str
    raw: dict = field(default_factory=dict)


@dataclass
class VerificationResult:
    """Normalized outcome of a verify call."""
    status: GatewayStatus
    raw: dict = field(default_factory=dict)
    amount: Optional[int] = None                   # minor units, if reported
    merchant_transaction_id: Optional[str] = None  # our transaction id, if echoed back

    @property
    def completed(self) -> bool:
        return self.status == GatewayStatus.COMPLETED


# ════════════════════════════════════════════════════════════════════
# Tolerant decoding
# ════════════════════════════════════════════════════════════════════


def _dig(data: Any, path: tuple[str, ...]) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _as_dict(value: Any) -> dict:
    """Metadata sometimes arrives JSON-encoded as a string."""
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def to_major_units(amount_minor: int) -> float:
    return float((Decimal(amount_minor) / Decimal(100)).quantize(Decimal("0.01")))


def to_minor_units(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        major = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not major.is_finite():
        return None
    return int((major * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def decode_checkout_url(data: dict) -> Optional[str]:
    for path in CHECKOUT_URL_KEYS:
        value = _dig(data, path)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def normalize_status(data: dict) -> GatewayStatus:
    """
    Map a verify response onto GatewayStatus.

    An explicit status string wins. Only when no recognised status is present
    does a literal `success: true` count as completion; no other truthy
    field is taken as proof of payment.
    """
    raw_status = data.get("status")
    if raw_status is None:
        raw_status = _dig(data, ("data", "status"))

    if isinstance(raw_status, str):
        value = raw_status.strip().lower()
        if value == "completed":
            return GatewayStatus.COMPLETED
        if value in FAILED_STATUSES:
            return GatewayStatus.FAILED
        if value in PENDING_STATUSES:
            return GatewayStatus.PENDING

    if data.get("success") is True:
        return GatewayStatus.COMPLETED
    return GatewayStatus.UNKNOWN


def decode_verification(data: dict) -> VerificationResult:
    amount = data.get("amount")
    if amount is None:
        amount = _dig(data, ("data", "amount"))

    metadata = _as_dict(data.get("metadata")) or _as_dict(_dig(data, ("data", "metadata")))
    merchant_tid = metadata.get("transaction_id")

    return VerificationResult(
        status=normalize_status(data),
        raw=data,
        amount=to_minor_units(amount),
        merchant_transaction_id=str(merchant_tid) if merchant_tid else None,
    )


# ════════════════════════════════════════════════════════════════════
# Client
# ════════════════════════════════════════════════════════════════════


class PaymentGatewayClient:
    """Outbound adapter for the hosted checkout gateway."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        app_url: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.app_url = app_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, transport: Optional[httpx.AsyncBaseTransport] = None) -> "PaymentGatewayClient":
        return cls(
            base_url=settings.gateway_base_url,
            api_key=settings.gateway_api_key,
            app_url=settings.app_url,
            timeout=settings.gateway_timeout_seconds,
            transport=transport,
        )

    def success_url(self, transaction_id: str) -> str:
        return f"{self.app_url}/api/payment/success?{urlencode({'order_id': transaction_id})}"

    def cancel_url(self, transaction_id: str) -> str:
        query = urlencode({"status": "cancelled", "order_id": transaction_id})
        return f"{self.app_url}/checkout?{query}"

    def _headers(self) -> dict:
        if not self.api_key:
            logger.error("GATEWAY_API_KEY not configured; refusing to call payment gateway")
            raise GatewayError("Payment gateway is not configured", retriable=False)
        return {
            "Content-Type": "application/json",
            "X-API-KEY": self.api_key,
        }

    async def _post(self, path: str, body: dict) -> dict:
        headers = self._headers()
        url = f"{self.base_url}/{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=body, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning(f"Gateway timeout on {path}: {e}")
            raise GatewayError("Payment gateway timed out", details={"endpoint": path}) from e
        except httpx.HTTPError as e:
            logger.warning(f"Gateway request to {path} failed: {e}")
            raise GatewayError("Payment gateway unreachable", details={"endpoint": path}) from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code >= 400:
            logger.error(f"Gateway {path} returned HTTP {response.status_code}: {response.text[:500]}")
            # 4xx: the gateway understood and refused; retrying will not help
            raise GatewayError(
                "Payment gateway rejected the request",
                details={"endpoint": path, "status_code": response.status_code},
                retriable=response.status_code >= 500,
            )
        if not isinstance(data, dict):
            logger.error(f"Gateway {path} returned a non-object body: {response.text[:500]}")
            raise GatewayError("Malformed payment gateway response", details={"endpoint": path})
        return data

    async def initiate(
        self,
        amount: int,
        transaction_id: str,
        customer: CustomerInfo,
    ) -> CheckoutSession:
        """
        Create a hosted checkout for an order.

        Args:
            amount: Order amount in minor units
            transaction_id: Our merchant transaction id, embedded in both callback URLs
            customer: Name/phone forwarded as gateway metadata

        Returns:
            CheckoutSession with the URL to redirect the customer to
        """
        body = {
            "amount": to_major_units(amount),
            "success_url": self.success_url(transaction_id),
            "cancel_url": self.cancel_url(transaction_id),
            "metadata": {
                "transaction_id": transaction_id,
                "customer_name": customer.name,
                "customer_phone": customer.phone,
            },
        }
        data = await self._post("checkout", body)
        logger.info(f"  💳 Gateway checkout response for {transaction_id}: {json.dumps(data)[:1000]}")

        checkout_url = decode_checkout_url(data)
        if not checkout_url:
            logger.error(f"❌ Gateway returned no checkout URL for {transaction_id}: {data}")
            raise GatewayError("Payment gateway failed to provide a URL", details={"transaction_id": transaction_id})
        return CheckoutSession(checkout_url=checkout_url, raw=data)

    async def verify(self, gateway_reference: str) -> VerificationResult:
        """Ask the gateway for the authoritative status of one of its payments."""
        data = await self._post("verify-payment", {"transaction_id": gateway_reference})
        result = decode_verification(data)
        logger.info(
            f"  🔎 Gateway verify {gateway_reference}: {result.status.value} "
            f"raw={json.dumps(data)[:1000]}"
        )
        return result
