"""
Database handle and session management for the storefront backend.

A single Database object owns the async engine and session factory. It is
connected in the app lifespan, shared by every request through get_db(), and
disposed on shutdown. Nothing connects at import time.
"""
import logging
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


def to_async_url(url: str) -> str:
    """Convert sqlite:///... → sqlite+aiosqlite:///... for the async driver."""
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


class Database:
    """Explicitly scoped engine + session factory."""

    def __init__(self, url: str, *, timeout: float = 10.0, echo: bool = False):
        self.url = to_async_url(url)
        self.timeout = timeout
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def connected(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not connected; call connect() first")
        return self._engine

    async def connect(self) -> None:
        if self._engine is not None:
            return
        kwargs = {"echo": self.echo}
        if self.url.startswith("sqlite"):
            # aiosqlite: seconds to wait on a locked database
            kwargs["connect_args"] = {"timeout": self.timeout}
        else:
            kwargs["pool_timeout"] = self.timeout
            kwargs["pool_pre_ping"] = True
        self._engine = create_async_engine(self.url, **kwargs)
        self._sessionmaker = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )
        logger.info(f"Database engine created ({self.url.split(':', 1)[0]})")

    async def create_all(self) -> None:
        """Create all tables. Called once on server startup."""
        # Import models so Base.metadata knows about them
        import db_models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created (or already exist)")

    def session(self) -> AsyncSession:
        if self._sessionmaker is None:
            raise RuntimeError("Database is not connected; call connect() first")
        return self._sessionmaker()

    async def dispose(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
        logger.info("Database engine disposed")


database = Database(
    settings.database_url,
    timeout=settings.db_timeout_seconds,
    echo=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency — yields an async session."""
    async with database.session() as session:
        try:
            yield session
        finally:
            await session.close()
