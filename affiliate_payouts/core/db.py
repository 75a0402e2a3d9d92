import logging
import re
from collections.abc import AsyncGenerator
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from affiliate_payouts.core.config import get_settings
from affiliate_payouts.models import Base

logger = logging.getLogger(__name__)

# Created on first use so importing the package never needs DATABASE_URL
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_async_database_url(url: str) -> str:
    """Convert database URL to async-compatible format using psycopg driver."""
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    elif url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg://", 1)
    elif url.startswith("postgresql+asyncpg://"):
        url = url.replace("postgresql+asyncpg://", "postgresql+psycopg://", 1)

    if "channel_binding=" in url:
        url = re.sub(r'[&?]channel_binding=[^&]*', '', url)
        url = url.replace('?&', '?').rstrip('?')

    return url


def get_engine() -> AsyncEngine:
    """Get or create the async engine lazily."""
    global _engine

    if _engine is None:
        settings = get_settings()
        database_url = get_async_database_url(settings.database_url)

        if database_url.startswith("sqlite"):
            _engine = create_async_engine(database_url, future=True, echo=settings.debug)
        else:
            _engine = create_async_engine(
                database_url,
                future=True,
                echo=settings.debug,
                pool_pre_ping=True,  # Verify connections before using
                pool_recycle=3600,   # Recycle connections after 1 hour
                pool_timeout=10,     # Wait up to 10 seconds for a connection from pool
                max_overflow=10,
                connect_args={"connect_timeout": 10},
            )
        logger.info(f"Database engine created for {database_url.split('@')[-1]}")

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory

    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            expire_on_commit=False,
        )

    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with get_session_factory()() as session:
        yield session


async def init_database() -> None:
    """Create all tables. In production use Alembic migrations instead."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")
