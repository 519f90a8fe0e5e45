"""
Async engine and session management for the order store.

The engine and session factory are created lazily and cached per process.
The API shares them across requests; a Celery task disposes them when its
event loop finishes, since pooled connections are bound to that loop.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from orders_service.core.config import get_settings
from orders_service.core.logging import get_logger

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _convert_database_url_to_async(url: str) -> str:
    """Use the asyncpg driver for plain postgresql:// URLs."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def create_engine() -> AsyncEngine:
    """
    Build the engine from settings.

    SQLite (tests, local runs) gets no pool; PostgreSQL gets a pre-pinged
    pool sized by ``db_pool_size`` and ``db_max_overflow``.
    """
    settings = get_settings()
    database_url = _convert_database_url_to_async(settings.database_url)

    if database_url.startswith("sqlite"):
        engine = create_async_engine(
            database_url,
            echo=settings.debug,
            poolclass=NullPool,
        )
    else:
        engine_kwargs = {
            "echo": settings.debug,
            "pool_pre_ping": True,
            "pool_recycle": 3600,
            "connect_args": {
                "server_settings": {"application_name": settings.app_name},
                "command_timeout": 60,
                "timeout": 10,
            },
        }
        if settings.is_test:
            engine_kwargs["poolclass"] = NullPool
        else:
            engine_kwargs["pool_size"] = settings.db_pool_size
            engine_kwargs["max_overflow"] = settings.db_max_overflow
        engine = create_async_engine(database_url, **engine_kwargs)

    logger.info(
        "Database engine created",
        dialect=engine.dialect.name,
        pool_size=settings.db_pool_size,
        environment=settings.environment,
    )

    return engine


def get_engine() -> AsyncEngine:
    """
    Get or create the global async database engine.

    Raises:
        RuntimeError: If engine initialization fails
    """
    global _engine

    if _engine is None:
        try:
            _engine = create_engine()
        except Exception as e:
            logger.error(
                "Failed to create database engine",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RuntimeError(f"Database engine initialization failed: {e}") from e

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the global session factory."""
    global _session_factory

    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("Database session factory created")

    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create async database session with automatic cleanup.

    The repository commits each operation itself; this context manager only
    rolls back on error and closes the session.

    Yields:
        Async database session
    """
    session = get_session_factory()()

    try:
        logger.debug("Database session created")
        yield session
    except Exception as e:
        await session.rollback()
        logger.error(
            "Database session rolled back",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await session.close()
        logger.debug("Database session closed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session dependency."""
    async with get_session() as session:
        yield session


async def check_database_health() -> bool:
    """Run ``SELECT 1``; False if the database cannot be reached."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.warning(
            "Database health check failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        return False


async def close_database_connections() -> None:
    """Dispose the cached engine. The next session creates a new one."""
    global _engine, _session_factory

    if _engine is not None:
        try:
            await _engine.dispose()
            logger.info("Database connections closed and engine disposed")
        finally:
            _engine = None
            _session_factory = None
