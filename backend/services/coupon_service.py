"""
Coupon validation, discount computation, atomic redemption and
admin management of discount codes.

A coupon is usable iff:
    is_active
    AND (expiration_date is null OR now <= expiration_date)
    AND (usage_limit is null OR used_count < usage_limit)

Validation never raises for these expected conditions; it returns a result
dict with a reason code the routes turn into a customer message.
"""
import logging
from datetime import datetime
from decimal import Decimal, ROUND_DOWN

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import Coupon
from domain.constants import COUPON_MESSAGES
from domain.enums import CouponRejection, DiscountType
from domain.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def _rejected(reason: CouponRejection) -> dict:
    return {
        "valid": False,
        "reason": reason.value,
        "message": COUPON_MESSAGES[reason.value],
        "coupon": None,
    }


def describe(coupon: Coupon) -> dict:
    """Minimal discount descriptor; usage counters are never exposed."""
    return {
        "code": coupon.code,
        "discountType": coupon.discount_type,
        "discountAmount": coupon.discount_amount,
    }


def check_usable(coupon: Coupon, now: datetime | None = None) -> CouponRejection | None:
    """Return the first rule the coupon fails, or None if it is usable."""
    now = now or datetime.utcnow()
    if not coupon.is_active:
        return CouponRejection.INACTIVE
    if coupon.expiration_date is not None and now > coupon.expiration_date:
        return CouponRejection.EXPIRED
    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        return CouponRejection.USAGE_LIMIT_REACHED
    return None


async def get_by_code(db: AsyncSession, code: str) -> Coupon | None:
    res = await db.execute(select(Coupon).where(Coupon.code == normalize_code(code)))
    return res.scalar_one_or_none()


async def validate_coupon(db: AsyncSession, code: str | None) -> dict:
    """
    Evaluate a coupon code.

    Returns:
        dict: {valid, reason, message, coupon}
              coupon is {code, discountType, discountAmount} when valid.
    """
    normalized = normalize_code(code)
    if not normalized:
        return _rejected(CouponRejection.MISSING_CODE)

    coupon = await get_by_code(db, normalized)
    if not coupon:
        return _rejected(CouponRejection.NOT_FOUND)

    rejection = check_usable(coupon)
    if rejection:
        logger.info(f"Coupon {normalized} rejected: {rejection.value}")
        return _rejected(rejection)

    return {
        "valid": True,
        "reason": None,
        "message": "Coupon applied",
        "coupon": describe(coupon),
    }


def compute_discount(subtotal: int, descriptor: dict | None) -> int:
    """
    Discount in minor units for a subtotal.

    Percentage discounts round down and are capped at 100%; fixed discounts
    are capped at the subtotal, so the total never goes negative.
    """
    if not descriptor or subtotal <= 0:
        return 0

    amount = max(0, int(descriptor["discountAmount"]))
    if descriptor["discountType"] == DiscountType.PERCENTAGE.value:
        percent = min(Decimal(amount), Decimal(100))
        discount = (Decimal(subtotal) * percent / Decimal(100)).quantize(Decimal("1"), rounding=ROUND_DOWN)
        return min(int(discount), subtotal)
    if descriptor["discountType"] == DiscountType.FIXED.value:
        return min(amount, subtotal)
    return 0


async def redeem_coupon(db: AsyncSession, code: str) -> bool:
    """
    Atomically consume one use of a coupon.

    Single UPDATE guarded by the usability predicate, so concurrent
    checkouts cannot push used_count past usage_limit. Returns True if this
    call took a use, False if the coupon was no longer usable.
    """
    now = datetime.utcnow()
    res = await db.execute(
        update(Coupon)
        .where(
            Coupon.code == normalize_code(code),
            Coupon.is_active == True,  # noqa: E712
            or_(Coupon.expiration_date.is_(None), Coupon.expiration_date >= now),
            or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
        )
        .values(used_count=Coupon.used_count + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


# ════════════════════════════════════════════════════════════════════
# Admin management
# ════════════════════════════════════════════════════════════════════


def _check_discount(discount_type: str, discount_amount: int) -> None:
    if discount_type not in (DiscountType.PERCENTAGE.value, DiscountType.FIXED.value):
        raise ValidationError("must be 'percentage' or 'fixed'", field="discountType")
    if discount_amount <= 0:
        raise ValidationError("must be positive", field="discountAmount")
    if discount_type == DiscountType.PERCENTAGE.value and discount_amount > 100:
        raise ValidationError("percentage cannot exceed 100", field="discountAmount")


async def create_coupon(
    db: AsyncSession,
    *,
    code: str,
    discount_type: str,
    discount_amount: int,
    expiration_date: datetime | None = None,
    usage_limit: int | None = None,
    is_active: bool = True,
) -> Coupon:
    normalized = normalize_code(code)
    if not normalized:
        raise ValidationError("Coupon code is required", field="code")
    _check_discount(discount_type, discount_amount)

    if await get_by_code(db, normalized):
        raise ConflictError(f"Coupon code already exists: {normalized}")

    coupon = Coupon(
        code=normalized,
        discount_type=discount_type,
        discount_amount=discount_amount,
        expiration_date=expiration_date,
        usage_limit=usage_limit,
        used_count=0,
        is_active=is_active,
    )
    db.add(coupon)
    try:
        await db.flush()
    except IntegrityError:
        # Race: same code created concurrently
        raise ConflictError(f"Coupon code already exists: {normalized}")
    logger.info(f"Coupon created: {normalized} ({discount_type} {discount_amount})")
    return coupon


async def list_coupons(db: AsyncSession) -> list[Coupon]:
    res = await db.execute(select(Coupon).order_by(Coupon.created_at.desc()))
    return res.scalars().all()


async def update_coupon(
    db: AsyncSession,
    *,
    coupon_id: int,
    code: str | None = None,
    discount_type: str | None = None,
    discount_amount: int | None = None,
    expiration_date: datetime | None = None,
    clear_expiration: bool = False,
    usage_limit: int | None = None,
    clear_usage_limit: bool = False,
    is_active: bool | None = None,
) -> Coupon:
    """Update a coupon's fields. Only provided fields are updated."""
    coupon = await db.get(Coupon, coupon_id)
    if not coupon:
        raise NotFoundError("Coupon", str(coupon_id))

    if code is not None:
        normalized = normalize_code(code)
        if normalized != coupon.code:
            if await get_by_code(db, normalized):
                raise ConflictError(f"Coupon code already exists: {normalized}")
            coupon.code = normalized
    if discount_type is not None or discount_amount is not None:
        new_type = discount_type or coupon.discount_type
        new_amount = discount_amount if discount_amount is not None else coupon.discount_amount
        _check_discount(new_type, new_amount)
        coupon.discount_type = new_type
        coupon.discount_amount = new_amount
    if clear_expiration:
        coupon.expiration_date = None
    elif expiration_date is not None:
        coupon.expiration_date = expiration_date
    if clear_usage_limit:
        coupon.usage_limit = None
    elif usage_limit is not None:
        coupon.usage_limit = usage_limit
    if is_active is not None:
        coupon.is_active = is_active

    coupon.updated_at = datetime.utcnow()
    await db.flush()
    return coupon


async def delete_coupon(db: AsyncSession, *, coupon_id: int) -> None:
    res = await db.execute(delete(Coupon).where(Coupon.id == coupon_id))
    if res.rowcount == 0:
        raise NotFoundError("Coupon", str(coupon_id))
    logger.info(f"Coupon {coupon_id} deleted")
