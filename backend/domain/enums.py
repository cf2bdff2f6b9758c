"""
Domain enums for orders, coupons and gateway results.
"""

from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class UserRole(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class GatewayStatus(str, Enum):
    """Normalized payment status reported by the gateway's verify call."""
    COMPLETED = "completed"
    FAILED = "failed"
    PENDING = "pending"
    UNKNOWN = "unknown"


class CouponRejection(str, Enum):
    MISSING_CODE = "missing_code"
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    USAGE_LIMIT_REACHED = "usage_limit_reached"


class SettlementOutcome(str, Enum):
    INVALID_CALLBACK = "invalid_callback"
    VERIFICATION_FAILED = "verification_failed"
    GATEWAY_UNAVAILABLE = "gateway_unavailable"
    ORDER_NOT_FOUND = "order_not_found"
    COMPLETED = "completed"
    PROCESSING = "processing"
    ALREADY_SETTLED = "already_settled"
    PAID_AFTER_CANCEL = "paid_after_cancel"

    @property
    def is_success(self) -> bool:
        return self in (
            SettlementOutcome.COMPLETED,
            SettlementOutcome.PROCESSING,
            SettlementOutcome.ALREADY_SETTLED,
            SettlementOutcome.PAID_AFTER_CANCEL,
        )
