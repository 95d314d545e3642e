"""
Database connection management with SQLAlchemy async engine.

Provides the process-wide async engine and session factory, a transactional
session context manager, the FastAPI ``get_db`` dependency and startup /
shutdown helpers. PostgreSQL (asyncpg) is the production target; SQLite
(aiosqlite) is supported for local runs and tests.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from ridecycle.core.config import get_settings
from ridecycle.core.logging import get_logger

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def convert_database_url_to_async(url: str) -> str:
    """Use the asyncpg driver for plain postgresql:// URLs."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def _enable_sqlite_transactions(engine: AsyncEngine) -> None:
    """
    Let SQLAlchemy emit BEGIN itself on SQLite.

    The sqlite3 driver defers BEGIN until the first write, which makes
    SAVEPOINT release commit the whole transaction. WAL keeps open read
    transactions from blocking a writer on another connection.

    SQLite has no row locks, so `FOR UPDATE` is a no-op there. An engine
    or connection carrying the `sqlite_begin="IMMEDIATE"` execution option
    takes the database write lock at BEGIN instead, which serializes
    competing transactions the way a row lock does on PostgreSQL.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        mode = conn.get_execution_options().get("sqlite_begin", "DEFERRED")
        conn.exec_driver_sql(f"BEGIN {mode}")


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Create async SQLAlchemy engine.

    Args:
        database_url: Override for the configured URL

    Returns:
        Configured async SQLAlchemy engine
    """
    settings = get_settings()
    url = convert_database_url_to_async(database_url or settings.database_url)

    engine_kwargs: dict[str, Any] = {"echo": settings.debug}

    if url.startswith("sqlite"):
        engine_kwargs["poolclass"] = NullPool
    elif settings.is_test:
        engine_kwargs["poolclass"] = NullPool
    else:
        engine_kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
            connect_args={
                "server_settings": {"application_name": settings.app_name},
                "command_timeout": 60,
                "timeout": 10,
            },
        )

    engine = create_async_engine(url, **engine_kwargs)
    if url.startswith("sqlite"):
        _enable_sqlite_transactions(engine)

    logger.info(
        "Database engine created",
        dialect=engine.dialect.name,
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


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by the app, the sweeper CLI and the tests."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the global session factory."""
    global _session_factory

    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
        logger.info("Database session factory created")

    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Open a session that commits on success and rolls back on error.

    Yields:
        Async database session
    """
    session = get_session_factory()()

    try:
        yield session
        await session.commit()
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


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for database session injection.

    Example:
        @router.get("/orders")
        async def list_orders(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with get_session() as session:
        yield session


async def check_database_health(max_retries: int = 3, retry_delay: float = 1.0) -> bool:
    """
    Check database connectivity with exponential backoff.

    Returns:
        True if database is healthy, False otherwise
    """
    for attempt in range(max_retries):
        try:
            async with get_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.debug("Database health check passed", attempt=attempt + 1)
            return True
        except (OperationalError, DBAPIError) as e:
            logger.warning(
                "Database health check failed",
                attempt=attempt + 1,
                max_retries=max_retries,
                error=str(e),
            )
        except SQLAlchemyError as e:
            logger.error(
                "Database health check failed - SQLAlchemy error",
                attempt=attempt + 1,
                error=str(e),
                error_type=type(e).__name__,
            )
        if attempt < max_retries - 1:
            await asyncio.sleep(retry_delay * (2**attempt))

    logger.error("Database health check failed after all retries", max_retries=max_retries)
    return False


async def close_database_connections() -> None:
    """Dispose of the engine during application shutdown."""
    global _engine, _session_factory

    if _engine is not None:
        try:
            await _engine.dispose()
            logger.info("Database connections closed and engine disposed")
        finally:
            _engine = None
            _session_factory = None


async def initialize_database() -> None:
    """
    Verify connectivity during application startup.

    Raises:
        RuntimeError: If the database is unreachable
    """
    logger.info("Initializing database connection")
    get_session_factory()

    if not await check_database_health(max_retries=5, retry_delay=2.0):
        raise RuntimeError("Database health check failed during initialization")

    logger.info("Database initialized successfully")
