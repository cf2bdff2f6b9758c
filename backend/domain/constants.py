"""
Domain constants used across services/routers.
"""

from domain.enums import OrderStatus, PaymentStatus

# (status, payment_status) pairs used by the settlement state machine
STATE_PENDING_UNPAID = (OrderStatus.PENDING, PaymentStatus.UNPAID)
STATE_PROCESSING_PAID = (OrderStatus.PROCESSING, PaymentStatus.PAID)
STATE_COMPLETED_PAID = (OrderStatus.COMPLETED, PaymentStatus.PAID)
STATE_CANCELLED_UNPAID = (OrderStatus.CANCELLED, PaymentStatus.UNPAID)
STATE_CANCELLED_PAID = (OrderStatus.CANCELLED, PaymentStatus.PAID)

# Merchant transaction id prefix (TXN + 32 hex chars)
TRANSACTION_ID_PREFIX = "TXN"

# Query parameter names accepted for the gateway's own payment reference
GATEWAY_REFERENCE_PARAMS = ("txn_id", "payment_id")

# Fallback note attached to auto-delivered content
DEFAULT_ACCESS_NOTE = "Thank you for your purchase!"

# Customer-facing coupon messages keyed by rejection reason
COUPON_MESSAGES = {
    "missing_code": "Code required",
    "not_found": "Invalid coupon code",
    "inactive": "Coupon is no longer active",
    "expired": "Coupon expired",
    "usage_limit_reached": "Coupon usage limit reached",
}

MAX_QUANTITY_PER_ORDER = 10
