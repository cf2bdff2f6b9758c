"""
Unit tests for coupon service.

Tests validation reasons, discount math, atomic redemption and admin CRUD.
"""
import asyncio
from datetime import datetime, timedelta

import pytest

from db_models import Coupon
from domain.errors import ConflictError, NotFoundError, ValidationError
from services import coupon_service


async def _coupon(db, **overrides) -> Coupon:
    values = dict(
        code="SPRING",
        discount_type="fixed",
        discount_amount=5000,
        expiration_date=None,
        usage_limit=None,
        used_count=0,
        is_active=True,
    )
    values.update(overrides)
    coupon = Coupon(**values)
    db.add(coupon)
    await db.commit()
    return coupon


# ── Validation ─────────────────────────────────────────────────────────


@pytest.mark.unit
@pytest.mark.asyncio
async def test_validate_valid_coupon(db_session, sample_coupon):
    result = await coupon_service.validate_coupon(db_session, "save10")

    assert result["valid"] is True
    assert result["coupon"] == {"code": "SAVE10", "discountType": "percentage", "discountAmount": 10}
    assert "usedCount" not in result["coupon"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_validate_missing_code(db_session):
    for code in (None, "", "   "):
        result = await coupon_service.validate_coupon(db_session, code)
        assert result["valid"] is False
        assert result["reason"] == "missing_code"
        assert result["message"] == "Code required"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_validate_unknown_code(db_session):
    result = await coupon_service.validate_coupon(db_session, "NOPE")
    assert result["valid"] is False
    assert result["reason"] == "not_found"
    assert result["message"] == "Invalid coupon code"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_validate_expired_coupon(db_session):
    """Expired coupon is rejected and its counter untouched."""
    coupon = await _coupon(
        db_session, code="OLD", expiration_date=datetime.utcnow() - timedelta(days=1)
    )
    result = await coupon_service.validate_coupon(db_session, "OLD")

    assert result["valid"] is False
    assert result["reason"] == "expired"
    assert result["message"] == "Coupon expired"
    await db_session.refresh(coupon)
    assert coupon.used_count == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_validate_exhausted_coupon(db_session):
    await _coupon(db_session, code="LIMITED", usage_limit=3, used_count=3)
    result = await coupon_service.validate_coupon(db_session, "LIMITED")
    assert result["reason"] == "usage_limit_reached"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_validate_inactive_coupon(db_session):
    await _coupon(db_session, code="OFF", is_active=False)
    result = await coupon_service.validate_coupon(db_session, "OFF")
    assert result["reason"] == "inactive"


@pytest.mark.unit
def test_check_usable_at_expiration_instant():
    """now == expiration_date is still valid."""
    moment = datetime(2026, 1, 1, 12, 0, 0)
    coupon = Coupon(is_active=True, expiration_date=moment, usage_limit=None, used_count=0)
    assert coupon_service.check_usable(coupon, now=moment) is None
    assert coupon_service.check_usable(coupon, now=moment + timedelta(seconds=1)).value == "expired"


# ── Discount math ──────────────────────────────────────────────────────


@pytest.mark.unit
def test_percentage_discount_rounds_down():
    descriptor = {"discountType": "percentage", "discountAmount": 15}
    # 15% of 999 = 149.85
    assert coupon_service.compute_discount(999, descriptor) == 149


@pytest.mark.unit
def test_fixed_discount_capped_at_subtotal():
    descriptor = {"discountType": "fixed", "discountAmount": 80000}
    assert coupon_service.compute_discount(50000, descriptor) == 50000


@pytest.mark.unit
def test_no_descriptor_no_discount():
    assert coupon_service.compute_discount(50000, None) == 0


# ── Redemption ─────────────────────────────────────────────────────────


@pytest.mark.unit
@pytest.mark.asyncio
async def test_redeem_increments_used_count(db_session, sample_coupon):
    assert await coupon_service.redeem_coupon(db_session, "SAVE10") is True
    await db_session.commit()
    await db_session.refresh(sample_coupon)
    assert sample_coupon.used_count == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_redeem_last_use_only_once(db_session):
    """Once the last use is taken, a further redemption is refused."""
    coupon = await _coupon(db_session, code="LAST", usage_limit=1, used_count=0)

    first = await coupon_service.redeem_coupon(db_session, "LAST")
    second = await coupon_service.redeem_coupon(db_session, "LAST")
    await db_session.commit()

    assert (first, second) == (True, False)
    await db_session.refresh(coupon)
    assert coupon.used_count == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_concurrent_redemptions_take_last_use_once(session_factory):
    """Five checkouts racing for a single-use coupon: exactly one wins."""
    async with session_factory() as db:
        await _coupon(db, code="LAST", usage_limit=1, used_count=0)

    async def redeem():
        async with session_factory() as db:
            taken = await coupon_service.redeem_coupon(db, "LAST")
            await db.commit()
            return taken

    results = await asyncio.gather(*(redeem() for _ in range(5)))

    assert sorted(results) == [False] * 4 + [True]
    async with session_factory() as db:
        coupon = await coupon_service.get_by_code(db, "LAST")
        assert coupon.used_count == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_redeem_expired_coupon_fails(db_session):
    await _coupon(db_session, code="GONE", expiration_date=datetime.utcnow() - timedelta(minutes=1))
    assert await coupon_service.redeem_coupon(db_session, "GONE") is False


# ── Admin CRUD ─────────────────────────────────────────────────────────


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_coupon_normalizes_code(db_session):
    coupon = await coupon_service.create_coupon(
        db_session, code=" eid25 ", discount_type="percentage", discount_amount=25, usage_limit=100
    )
    await db_session.commit()
    assert coupon.code == "EID25"
    assert coupon.used_count == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_duplicate_coupon_conflicts(db_session, sample_coupon):
    with pytest.raises(ConflictError):
        await coupon_service.create_coupon(
            db_session, code="save10", discount_type="fixed", discount_amount=100
        )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_coupon_rejects_bad_percentage(db_session):
    with pytest.raises(ValidationError):
        await coupon_service.create_coupon(
            db_session, code="HUGE", discount_type="percentage", discount_amount=150
        )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_coupon_clears_limits(db_session, sample_coupon):
    coupon = await coupon_service.update_coupon(
        db_session,
        coupon_id=sample_coupon.id,
        clear_expiration=True,
        clear_usage_limit=True,
        is_active=False,
    )
    await db_session.commit()

    assert coupon.expiration_date is None
    assert coupon.usage_limit is None
    assert coupon.is_active is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_delete_unknown_coupon(db_session):
    with pytest.raises(NotFoundError):
        await coupon_service.delete_coupon(db_session, coupon_id=999)
