"""
Catalog lookups used by checkout and settlement.

Product management itself lives outside this service; these helpers only
read products, and only get_product_for_delivery() reveals the restricted
access_link/access_note columns.
"""
from sqlalchemy import select
from sqlalchemy.orm import undefer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import Product
from domain.errors import StorageError


async def get_available_product(db: AsyncSession, product_id: int) -> Product | None:
    """Product that can currently be bought, without delivery fields."""
    try:
        res = await db.execute(
            select(Product).where(Product.id == product_id, Product.is_available == True)  # noqa: E712
        )
    except SQLAlchemyError as e:
        raise StorageError("Could not load product") from e
    return res.scalar_one_or_none()


async def get_product_for_delivery(db: AsyncSession, product_id: int) -> Product | None:
    """
    Product with its restricted delivery fields explicitly loaded.

    populate_existing makes sure a copy already in the session is refreshed,
    so the access link reflects the row at settlement time.
    """
    try:
        res = await db.execute(
            select(Product)
            .where(Product.id == product_id)
            .options(undefer(Product.access_link), undefer(Product.access_note))
            .execution_options(populate_existing=True)
        )
    except SQLAlchemyError as e:
        raise StorageError("Could not load product") from e
    return res.scalar_one_or_none()
