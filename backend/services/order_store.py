"""
Persistence boundary for order records.

Every state change goes through atomic_transition(): one conditional UPDATE
keyed on the order's transaction_id and its expected (status, payment_status).
Two callers racing on the same order cannot both win; the loser gets False.
"""
import logging
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import Order
from domain.errors import ConflictError, StorageError

logger = logging.getLogger(__name__)

# (status, payment_status)
State = tuple[str, str]


def _state_values(state: State) -> tuple[str, str]:
    status, payment_status = state
    return getattr(status, "value", status), getattr(payment_status, "value", payment_status)


async def commit(db: AsyncSession) -> None:
    """Commit the unit of work; on failure roll back so nothing half-applies."""
    try:
        await db.commit()
    except SQLAlchemyError as e:
        logger.error(f"Commit failed: {e}")
        await db.rollback()
        raise StorageError("Could not save changes") from e


async def create(db: AsyncSession, order: Order) -> Order:
    """Insert a new order and assign its id (flush, no commit)."""
    db.add(order)
    try:
        await db.flush()
    except SQLAlchemyError as e:
        logger.error(f"Order insert failed for {order.transaction_id}: {e}")
        raise StorageError("Could not persist order") from e
    return order


async def find_by_id(db: AsyncSession, order_id: int) -> Order | None:
    try:
        return await db.get(Order, order_id)
    except SQLAlchemyError as e:
        raise StorageError("Could not load order") from e


async def find_by_transaction_id(
    db: AsyncSession,
    transaction_id: str,
    *,
    refresh: bool = False,
) -> Order | None:
    """
    Load an order by its merchant transaction id.

    refresh=True bypasses the session's identity map so the row reflects
    the latest committed/flushed state after a conditional update.
    """
    stmt = select(Order).where(Order.transaction_id == transaction_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    try:
        res = await db.execute(stmt)
    except SQLAlchemyError as e:
        raise StorageError("Could not load order") from e
    return res.scalar_one_or_none()


async def find_by_gateway_reference(db: AsyncSession, gateway_reference: str) -> Order | None:
    """Order already settled by this gateway payment, if any."""
    try:
        res = await db.execute(select(Order).where(Order.gateway_reference == gateway_reference))
    except SQLAlchemyError as e:
        raise StorageError("Could not load order") from e
    return res.scalar_one_or_none()


async def atomic_transition(
    db: AsyncSession,
    transaction_id: str,
    expected: State,
    new: State,
    **fields,
) -> bool:
    """
    Move an order from `expected` to `new` iff it is still in `expected`.

    Extra column values (delivered content, gateway audit fields, paid_at)
    are written in the same statement. Returns False when the precondition
    failed, which signals a concurrent transition or a replay.

    Raises:
        ConflictError: a written value collides with a unique column
            (a gateway reference already used by another order)
    """
    expected_status, expected_payment = _state_values(expected)
    new_status, new_payment = _state_values(new)

    stmt = (
        update(Order)
        .where(
            Order.transaction_id == transaction_id,
            Order.status == expected_status,
            Order.payment_status == expected_payment,
        )
        .values(
            status=new_status,
            payment_status=new_payment,
            updated_at=datetime.utcnow(),
            **fields,
        )
        .execution_options(synchronize_session=False)
    )
    try:
        res = await db.execute(stmt)
    except IntegrityError as e:
        logger.warning(f"Transition {expected} → {new} for {transaction_id} violates a unique constraint: {e}")
        raise ConflictError("Order update conflicts with an existing record") from e
    except SQLAlchemyError as e:
        logger.error(f"Transition {expected} → {new} failed for {transaction_id}: {e}")
        raise StorageError("Could not update order") from e

    applied = res.rowcount == 1
    if applied:
        logger.info(
            f"Order {transaction_id}: ({expected_status}, {expected_payment}) "
            f"→ ({new_status}, {new_payment})"
        )
    return applied


async def list_orders(
    db: AsyncSession,
    *,
    status: str | None = None,
    user_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Order]:
    stmt = select(Order)
    if status:
        stmt = stmt.where(Order.status == status)
    if user_id is not None:
        stmt = stmt.where(Order.user_id == user_id)
    stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset)
    try:
        res = await db.execute(stmt)
    except SQLAlchemyError as e:
        raise StorageError("Could not list orders") from e
    return res.scalars().all()


async def count_orders(
    db: AsyncSession,
    *,
    status: str | None = None,
    user_id: int | None = None,
) -> int:
    stmt = select(func.count(Order.id))
    if status:
        stmt = stmt.where(Order.status == status)
    if user_id is not None:
        stmt = stmt.where(Order.user_id == user_id)
    try:
        res = await db.execute(stmt)
    except SQLAlchemyError as e:
        raise StorageError("Could not count orders") from e
    return res.scalar() or 0
