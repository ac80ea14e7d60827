"""Async engine and session factory for the shared relational store.

The store is the only shared mutable resource of the governance core.
Repositories receive the session factory (never a long-lived session) and
open one unit of work per call, so every audit append and every config
write commits in its own transaction.

Key exports:
- Base                  — declarative base for all ORM models
- init_database(...)    — call at startup to create the engine
- close_database()      — call at shutdown to dispose the engine
- get_session_factory() — the process-wide async_sessionmaker
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from asc_governance.observability import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Declarative base for governance core models."""


# Module-level engine and session factory, set by init_database()
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_database(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 5,
    pool_timeout: int = 30,
    echo: bool = False,
) -> async_sessionmaker[AsyncSession]:
    """Initialize the engine and session factory.

    Must be called once at startup before any repository is used.

    Args:
        database_url: SQLAlchemy async connection URL.
        pool_size: Connection pool size.
        max_overflow: Max overflow connections above pool_size.
        pool_timeout: Seconds to wait for a connection before raising.
        echo: Echo SQL statements (keep False in production).

    Returns:
        The initialized session factory.
    """
    global _engine, _session_factory  # noqa: PLW0603

    logger.info(
        "Initializing database engine",
        pool_size=pool_size,
        max_overflow=max_overflow,
    )

    _engine = create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        echo=echo,
        pool_pre_ping=True,
    )

    _session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info("Database engine initialized")
    return _session_factory


async def close_database() -> None:
    """Dispose the engine. Safe to call when not initialized."""
    global _engine, _session_factory  # noqa: PLW0603

    if _engine is not None:
        logger.info("Disposing database engine")
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the process-wide session factory.

    Raises:
        RuntimeError: If init_database() has not been called yet.
    """
    if _session_factory is None:
        raise RuntimeError(
            "Database has not been initialized. Call init_database() at startup."
        )
    return _session_factory
