"""
Pytest configuration and shared fixtures for the storefront tests.

Provides an in-memory SQLite session, a file-backed session factory for
concurrency tests, an httpx client bound to the app, a
mocked payment gateway and sample catalog/coupon/user rows.
"""
from datetime import datetime, timedelta
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from config import settings
from database import Base, get_db
from deps import get_gateway
from domain.enums import GatewayStatus
from middleware.rate_limit import limiter
from services.gateway_client import CheckoutSession, PaymentGatewayClient, VerificationResult

# ── Test Configuration ───────────────────────────────────────────────
# Set test-only values for settings that would normally come from .env
if not settings.jwt_secret:
    settings.jwt_secret = "test-jwt-secret-for-pytest-only"
settings.app_url = "http://shop.test"

CHECKOUT_URL = "https://pay.example.test/checkout/abc123"


def make_verification(
    status: GatewayStatus = GatewayStatus.COMPLETED,
    *,
    amount: int | None = None,
    transaction_id: str | None = None,
) -> VerificationResult:
    """Build a decoded verify result as the gateway client would return it."""
    return VerificationResult(
        status=status,
        raw={"status": status.value.upper()},
        amount=amount,
        merchant_transaction_id=transaction_id,
    )


# ── Database Fixtures ────────────────────────────────────────────────


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create an in-memory SQLite database session for each test.

    Uses StaticPool to allow in-memory SQLite with async SQLAlchemy.
    """
    import db_models  # noqa: F401

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session_maker = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session

    await engine.dispose()


@pytest.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """
    Session factory over a file-backed SQLite database.

    Each session gets its own connection, so requests gathered with asyncio
    really contend for the same rows. The busy timeout makes writers queue
    on the database lock instead of failing.
    """
    import db_models  # noqa: F401

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}",
        connect_args={"timeout": 30},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


# ── Gateway / Client Fixtures ────────────────────────────────────────


@pytest.fixture
def fake_gateway():
    """Payment gateway double: checkout succeeds, verify reports COMPLETED."""
    gateway = MagicMock(spec=PaymentGatewayClient)
    gateway.initiate = AsyncMock(
        return_value=CheckoutSession(checkout_url=CHECKOUT_URL, raw={"payment_url": CHECKOUT_URL})
    )
    gateway.verify = AsyncMock(return_value=make_verification())
    return gateway


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
async def client(db_session: AsyncSession, fake_gateway):
    """
    httpx client against the app with the test DB and gateway double.

    ASGITransport does not run the lifespan, so no real engine is created.
    """
    from main import app

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: fake_gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


# ── Test Data Fixtures ────────────────────────────────────────────────


@pytest.fixture
async def sample_product(db_session: AsyncSession):
    """Digital product priced at 500.00 with an automatic access link."""
    from db_models import Product

    product = Product(
        title="Design Course",
        slug="design-course",
        default_price=50000,
        sale_price=0,
        is_available=True,
        access_link="https://cdn.example.test/course.zip",
        access_note="Unzip and open index.html",
    )
    db_session.add(product)
    await db_session.commit()
    await db_session.refresh(product)
    return product


@pytest.fixture
async def manual_product(db_session: AsyncSession):
    """Product without an access link; paid orders wait for manual fulfilment."""
    from db_models import Product

    product = Product(
        title="Custom Logo",
        slug="custom-logo",
        default_price=120000,
        sale_price=99900,
        is_available=True,
    )
    db_session.add(product)
    await db_session.commit()
    await db_session.refresh(product)
    return product


@pytest.fixture
async def sample_coupon(db_session: AsyncSession):
    """SAVE10: 10% off, 5 uses, valid for a week."""
    from db_models import Coupon

    coupon = Coupon(
        code="SAVE10",
        discount_type="percentage",
        discount_amount=10,
        expiration_date=datetime.utcnow() + timedelta(days=7),
        usage_limit=5,
        used_count=0,
        is_active=True,
    )
    db_session.add(coupon)
    await db_session.commit()
    await db_session.refresh(coupon)
    return coupon


@pytest.fixture
async def sample_user(db_session: AsyncSession):
    from db_models import User

    user = User(name="Rahim Uddin", email="rahim@example.test", phone="01700000000", role="customer")
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def admin_user(db_session: AsyncSession):
    from db_models import User

    user = User(name="Shop Admin", email="admin@example.test", role="admin")
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


def auth_headers(user) -> dict:
    from middleware.auth import issue_access_token

    token = issue_access_token(user_id=user.id, role=user.role)
    return {"Authorization": f"Bearer {token}"}
