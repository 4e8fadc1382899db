"""Async database engine and session management.

This module provides the async SQLAlchemy 2.0 engine configuration and session
factory used by the database gateway backend. Engines are created explicitly
from ``Settings`` at process start; there is no module-level engine.

Usage:
    from gregaplay.database import create_session_factory

    engine, session_factory = create_session_factory(settings.require_database_url())
    async with session_factory() as session, session.begin():
        ...
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool


def create_session_factory(
    database_url: str, echo: bool = False
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create an async engine and its session factory.

    Args:
        database_url: Async SQLAlchemy URL (postgresql+asyncpg:// or sqlite+aiosqlite://)
        echo: Log emitted SQL

    Returns:
        Tuple of (engine, async_session_factory).
    """
    if database_url.startswith("sqlite"):
        # In-memory SQLite needs one shared connection across async operations
        engine = create_async_engine(database_url, echo=echo, poolclass=StaticPool)
    else:
        engine = create_async_engine(
            database_url,
            pool_size=10,
            max_overflow=5,
            pool_pre_ping=True,
            echo=echo,
        )

    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,  # CRITICAL: prevents attribute expiration after commit
    )
    return engine, session_factory


def create_test_engine(
    database_url: str = "sqlite+aiosqlite:///:memory:",
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create an async engine for testing.

    Args:
        database_url: Test database URL (defaults to in-memory SQLite).

    Returns:
        Tuple of (engine, async_session_factory) for testing.
    """
    return create_session_factory(database_url)
