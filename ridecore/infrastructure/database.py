"""
Async SQLAlchemy engine and session factory.

Production runs on PostgreSQL through ``asyncpg``; the test suite swaps in
an in-memory SQLite engine.  Every timestamp column holds naive UTC (see
``utcnow``) so that offer-expiry comparisons give the same answer on both.
"""

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from ridecore.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base shared by the ride, driver, coupon and pricing tables."""


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
