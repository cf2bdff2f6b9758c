"""
SQLAlchemy ORM models for the storefront backend.

Tables:
    users     — customers and admins
    products  — catalog entries (delivery fields are deferred/restricted)
    coupons   — discount codes with usage limits
    orders    — purchase records driven by the settlement state machine

All money columns are integers in minor currency units.
"""
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, ForeignKey,
    Index, CheckConstraint,
)
from sqlalchemy.orm import deferred, relationship

from database import Base


class User(Base):
    """Customer or admin account. Session issuance lives outside this service."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    email = Column(String(254), unique=True, nullable=False, index=True)
    phone = Column(String(32), nullable=True)
    role = Column(String(20), nullable=False, default="customer")  # "customer" | "admin"
    created_at = Column(DateTime, default=datetime.utcnow)

    orders = relationship("Order", back_populates="user", lazy="select")


class Product(Base):
    """
    Catalog product. Only the fields settlement needs are modelled here.

    access_link/access_note are deferred: they are never loaded by a plain
    query and must be requested explicitly with undefer().
    """
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    slug = Column(String(200), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    is_available = Column(Boolean, nullable=False, default=True)
    default_price = Column(Integer, nullable=False, default=0)
    sale_price = Column(Integer, nullable=False, default=0)  # 0 => no sale

    # Restricted delivery fields
    access_link = deferred(Column(Text, nullable=True))
    access_note = deferred(Column(Text, nullable=True))

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def effective_price(self) -> int:
        """Authoritative unit price: sale price when set, otherwise default price."""
        if self.sale_price and self.sale_price > 0:
            return self.sale_price
        return self.default_price


class Coupon(Base):
    """Discount code. discount_amount is percent points or minor units."""
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(64), unique=True, nullable=False, index=True)  # always upper-case
    discount_type = Column(String(20), nullable=False)  # "percentage" | "fixed"
    discount_amount = Column(Integer, nullable=False)
    expiration_date = Column(DateTime, nullable=True)
    usage_limit = Column(Integer, nullable=True)  # null => unlimited
    used_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("used_count >= 0", name="ck_coupon_used_count_non_negative"),
        CheckConstraint("discount_amount > 0", name="ck_coupon_discount_positive"),
    )


class Order(Base):
    """
    Purchase record.

    Lifecycle:
        1. Checkout creates (pending, unpaid) with a fresh transaction_id
        2. Settlement moves it once to (completed, paid) or (processing, paid)
        3. Admin fulfils (processing, paid) → (completed, paid) or cancels
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(String(64), unique=True, nullable=False, index=True)  # settlement idempotency key

    # Customer (user_id null => guest checkout)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    customer_name = Column(String(200), nullable=False)
    customer_email = Column(String(254), nullable=True)
    customer_phone = Column(String(32), nullable=True)

    # Line + amounts (minor units, computed server-side)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    product_title = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Integer, nullable=False)
    subtotal = Column(Integer, nullable=False)
    discount = Column(Integer, nullable=False, default=0)
    amount = Column(Integer, nullable=False)
    coupon_code = Column(String(64), nullable=True)

    # State machine
    status = Column(String(20), nullable=False, default="pending", index=True)
    payment_status = Column(String(20), nullable=False, default="unpaid")

    # Delivered content (set only together with status=completed)
    download_link = Column(Text, nullable=True)
    access_notes = Column(Text, nullable=True)

    # Gateway audit trail
    # One gateway payment settles at most one order
    gateway_reference = Column(String(128), unique=True, nullable=True)
    gateway_response = Column(Text, nullable=True)  # raw JSON of the verification

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    paid_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="orders")
    product = relationship("Product", lazy="select")

    __table_args__ = (
        # Admin listing: filter by status, newest first
        Index("ix_orders_status_created", "status", "created_at"),
        # Customer dashboard: own orders, newest first
        Index("ix_orders_user_created", "user_id", "created_at"),
        CheckConstraint("amount >= 0", name="ck_order_amount_non_negative"),
    )

    @property
    def delivered_content(self) -> dict | None:
        if self.status != "completed" or not self.download_link:
            return None
        return {"downloadLink": self.download_link, "accessNotes": self.access_notes}
