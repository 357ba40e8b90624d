"""
Database engine configuration for the Completion Engine

Async SQLAlchemy 2.0 setup with connection pooling and a bounded
transaction helper that translates driver errors into the engine's
store error family.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

from loguru import logger
from sqlalchemy import exc as sa_exc
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)

from config.config import (
    DATABASE_URL,
    ENVIRONMENT,
    DB_POOL_SIZE,
    DB_MAX_OVERFLOW,
    DB_POOL_TIMEOUT_SECONDS,
    DB_TRANSACTION_TIMEOUT_SECONDS,
)
from completion_engine.core.exceptions import (
    CompletionEngineError,
    StoreConnectionError,
    TransactionTimeout,
    WriteConflict,
)
from completion_engine.database.models import Base

T = TypeVar("T")

SessionFactory = async_sessionmaker[AsyncSession]

# Driver messages that mean "someone else touched the same rows"
WRITE_CONFLICT_MARKERS = (
    "could not serialize",
    "serialization failure",
    "deadlock",
    "database is locked",
    "lock not available",
    "concurrent update",
)


# Global engine and session maker
engine: AsyncEngine | None = None
AsyncSessionLocal: SessionFactory | None = None


def build_engine(database_url: str = DATABASE_URL) -> AsyncEngine:
    """
    Create an async engine with bounded pool wait and statement timeout

    Args:
        database_url: SQLAlchemy URL

    Returns:
        Configured AsyncEngine instance
    """
    if database_url.startswith("sqlite"):
        return create_async_engine(
            database_url,
            echo=False,
            connect_args={"timeout": DB_POOL_TIMEOUT_SECONDS},
        )

    is_production = ENVIRONMENT == "production"
    statement_timeout_ms = int(DB_TRANSACTION_TIMEOUT_SECONDS * 1000)

    return create_async_engine(
        database_url,
        # Connection pooling
        pool_size=DB_POOL_SIZE * 2 if is_production else DB_POOL_SIZE,
        max_overflow=DB_MAX_OVERFLOW,
        pool_timeout=DB_POOL_TIMEOUT_SECONDS,  # Bounded wait for a connection
        pool_pre_ping=True,
        pool_recycle=3600,
        # Snapshot isolation for every crediting transaction
        isolation_level="REPEATABLE READ",
        echo=False,
        connect_args={
            "statement_cache_size": 0,
            "server_settings": {
                "application_name": "completion_engine",
                "statement_timeout": str(statement_timeout_ms),
            },
        },
    )


def get_engine() -> AsyncEngine:
    """
    Create and configure async database engine

    Returns:
        Configured AsyncEngine instance
    """
    global engine

    if engine is None:
        engine = build_engine(DATABASE_URL)
        logger.info(f"Database engine created - Environment: {ENVIRONMENT}")

    return engine


def get_session_maker() -> SessionFactory:
    """
    Create async session maker

    Returns:
        Configured async_sessionmaker instance
    """
    global AsyncSessionLocal

    if AsyncSessionLocal is None:
        AsyncSessionLocal = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,  # Important for async!
            autoflush=False,
        )

        logger.info("Session maker created")

    return AsyncSessionLocal


def translate_store_error(error: BaseException) -> BaseException:
    """
    Map driver / SQLAlchemy failures onto the store error family

    Returns the original error when it is not a store-level failure.
    """
    # asyncio.TimeoutError is the builtin TimeoutError (an OSError) since 3.11
    if isinstance(error, TimeoutError):
        return TransactionTimeout(f"Transaction exceeded its deadline: {error}")

    if isinstance(error, sa_exc.TimeoutError):
        return TransactionTimeout(f"Timed out waiting for a pooled connection: {error}")

    if isinstance(error, sa_exc.DBAPIError):
        message = str(error.orig or error).lower()
        if any(marker in message for marker in WRITE_CONFLICT_MARKERS):
            return WriteConflict(str(error.orig or error))
        if "statement timeout" in message or "canceling statement" in message:
            return TransactionTimeout(str(error.orig or error))
        if error.connection_invalidated or isinstance(
            error, (sa_exc.OperationalError, sa_exc.InterfaceError)
        ):
            return StoreConnectionError(str(error.orig or error))
        return error

    if isinstance(error, (sa_exc.DisconnectionError, ConnectionError)):
        return StoreConnectionError(str(error))

    return error


async def run_in_transaction(
    session_factory: Callable[[], AsyncSession],
    operation: Callable[[AsyncSession], Awaitable[T]],
    *,
    timeout: float = DB_TRANSACTION_TIMEOUT_SECONDS,
) -> T:
    """
    Run operation inside one transaction with a hard deadline

    Commits when operation returns, rolls back when it raises. Store-level
    failures are re-raised as StoreConnectionError / WriteConflict /
    TransactionTimeout so callers can decide whether to retry.

    Args:
        session_factory: Callable returning a new AsyncSession
        operation: Coroutine function receiving the session
        timeout: Deadline in seconds for the whole transaction

    Returns:
        Whatever operation returns
    """
    try:
        async with asyncio.timeout(timeout):
            async with session_factory() as session:
                async with session.begin():
                    return await operation(session)
    except CompletionEngineError:
        raise
    except Exception as error:
        translated = translate_store_error(error)
        if translated is error:
            raise
        raise translated from error


async def init_db(eng: AsyncEngine | None = None) -> None:
    """
    Initialize database - create all tables

    WARNING: This creates tables if they don't exist.
    For production, use migrations instead.
    """
    eng = eng or get_engine()

    logger.info("Creating database tables...")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables created successfully")


async def dispose_engine() -> None:
    """
    Dispose database engine and close all connections

    Call this on application shutdown
    """
    global engine, AsyncSessionLocal

    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")
        engine = None
        AsyncSessionLocal = None


async def check_connection() -> bool:
    """
    Check database connection

    Returns:
        True if connection successful, False otherwise
    """
    try:
        eng = get_engine()
        async with eng.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection check: OK")
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
