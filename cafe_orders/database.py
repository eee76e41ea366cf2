"""
Database Connection Module
Handles the SQLAlchemy async engine and session lifecycle.
"""

import logging
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from cafe_orders.core.config import get_settings

logger = logging.getLogger(__name__)


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases."""
    if url.startswith("sqlite"):
        # One connection per checkout: aiosqlite connections are bound to a loop
        return create_async_engine(url, echo=echo, poolclass=NullPool)
    return create_async_engine(
        url,
        echo=echo,
        pool_size=5,  # Connection pool size
        max_overflow=10,  # Extra connections when pool is full
        pool_pre_ping=True,
    )


settings = get_settings()

engine = build_engine(settings.database_url, echo=settings.database_echo)

# Session factory - creates new database sessions
async_session_maker = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False  # Objects remain accessible after commit
)


# Base class for all our models
class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    Dependency injection for FastAPI routes.
    Yields a database session and ensures cleanup.
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """
    Create all tables in database.
    Called once at application startup.
    """
    # Register the mapped classes on Base.metadata
    import cafe_orders.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
