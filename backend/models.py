"""
Pydantic models for request validation.

Requests accept camelCase aliases (frontend) or snake_case names. Unknown
fields are ignored, so a client-supplied "amount" or "price" never reaches
the services.
"""
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ApiModel(BaseModel):
    """Shared base; allows construction by Python name or alias."""
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC; convert aware inputs."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# ── Checkout ────────────────────────────────────────────────────────

class CustomerIn(ApiModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = Field(default=None, max_length=254)
    phone: Optional[str] = Field(default=None, max_length=32)


class QuoteRequest(ApiModel):
    product_id: int = Field(..., alias="productId", gt=0)
    quantity: int = Field(1, ge=1, le=10)
    coupon_code: Optional[str] = Field(default=None, alias="couponCode", max_length=64)


class OrderCreateRequest(ApiModel):
    """Cart submission. Prices are always looked up server-side."""
    product_id: int = Field(..., alias="productId", gt=0)
    quantity: int = Field(1, ge=1, le=10)
    customer: CustomerIn
    coupon_code: Optional[str] = Field(default=None, alias="couponCode", max_length=64)


class PaymentInitiateRequest(ApiModel):
    transaction_id: str = Field(..., alias="transactionId", min_length=1, max_length=64)


# ── Coupons ─────────────────────────────────────────────────────────

class CouponValidateRequest(ApiModel):
    code: Optional[str] = Field(default=None, max_length=64)


class CouponCreateRequest(ApiModel):
    code: str = Field(..., min_length=1, max_length=64)
    discount_type: str = Field(..., alias="discountType")
    discount_amount: int = Field(..., alias="discountAmount", gt=0)
    expiration_date: Optional[datetime] = Field(default=None, alias="expirationDate")
    usage_limit: Optional[int] = Field(default=None, alias="usageLimit", ge=1)
    is_active: bool = Field(True, alias="isActive")

    @field_validator("expiration_date")
    @classmethod
    def normalize_expiration(cls, value):
        return _naive_utc(value)


class CouponUpdateRequest(ApiModel):
    """
    Partial update. Sending expirationDate/usageLimit as null clears them;
    omitting them leaves them unchanged.
    """
    code: Optional[str] = Field(default=None, min_length=1, max_length=64)
    discount_type: Optional[str] = Field(default=None, alias="discountType")
    discount_amount: Optional[int] = Field(default=None, alias="discountAmount", gt=0)
    expiration_date: Optional[datetime] = Field(default=None, alias="expirationDate")
    usage_limit: Optional[int] = Field(default=None, alias="usageLimit", ge=1)
    is_active: Optional[bool] = Field(default=None, alias="isActive")

    @field_validator("expiration_date")
    @classmethod
    def normalize_expiration(cls, value):
        return _naive_utc(value)


# ── Admin orders ────────────────────────────────────────────────────

class FulfillOrderRequest(ApiModel):
    download_link: Optional[str] = Field(default=None, alias="downloadLink", max_length=2000)
    access_notes: Optional[str] = Field(default=None, alias="accessNotes", max_length=2000)
