"""
Database connection and session management for the AddonSync backend.

Provides the declarative Base, a lazily created async engine and session
factory, and FastAPI/background-task session helpers.
"""

from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .config import get_settings_instance
from .exceptions import DatabaseConnectionError, DatabaseSessionError
from .logging import get_logger

logger = get_logger(__name__)

# Create declarative base
Base = declarative_base()

# Global async engine and session factory - lazy initialization
_async_engine = None
_AsyncSessionLocal = None


def _safe_host(database_url: str) -> str:
    """Host/database part of the URL without credentials, for logs."""
    return database_url.split("@", 1)[1] if "@" in database_url else "URL format"


def get_async_engine():
    global _async_engine  # noqa: PLW0603
    if _async_engine is None:
        settings = get_settings_instance()
        database_url = settings.database_url
        if database_url.startswith("postgresql://"):
            database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        try:
            logger.debug(f"Database configuration: {_safe_host(database_url)}")
            _async_engine = create_async_engine(
                database_url,
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_timeout=settings.database_pool_timeout,
                pool_recycle=settings.database_pool_recycle,
                pool_pre_ping=True,
                echo=False,
            )
        except Exception as e:
            logger.error(f"Failed to create async database engine: {e!s}")
            raise DatabaseConnectionError(f"engine creation: {e!s}")
    return _async_engine


def get_async_session_local():
    global _AsyncSessionLocal  # noqa: PLW0603
    if _AsyncSessionLocal is None:
        try:
            _AsyncSessionLocal = async_sessionmaker(
                bind=get_async_engine(),
                expire_on_commit=False,
                autoflush=False,
                class_=AsyncSession,
            )
        except DatabaseConnectionError:
            raise
        except Exception as e:
            logger.error(f"Failed to create async session factory: {e!s}")
            raise DatabaseSessionError(f"session factory creation: {e!s}")
    return _AsyncSessionLocal


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    session_local = get_async_session_local()
    async with session_local() as session:
        try:
            yield session
        except SQLAlchemyError as e:
            logger.error(f"Database session error: {e!s}")
            await session.rollback()
            raise DatabaseSessionError(f"session operation: {e!s}")


def get_db_session() -> AsyncSession:
    """Get a database session for background tasks (caller closes it)."""
    session_local = get_async_session_local()
    return session_local()


async def init_db() -> None:
    """Create tables for all registered models (development convenience)."""
    try:
        from ..models import register_all_models

        register_all_models()
        engine = get_async_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e!s}")
        raise DatabaseSessionError(f"database initialization: {e!s}")


async def close_db() -> None:
    global _async_engine, _AsyncSessionLocal  # noqa: PLW0603
    if _async_engine is None:
        return
    try:
        await _async_engine.dispose()
        logger.debug("Database connections closed")
    except Exception as e:
        logger.error(f"Error closing database connections: {e!s}")
    finally:
        _async_engine = None
        _AsyncSessionLocal = None


async def check_db_connection() -> bool:
    """Check if database connection is working."""
    try:
        engine = get_async_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e!s}")
        return False
