"""Async database session management with connection pooling.

Tuned for serverless PostgreSQL with pre-ping health checks; SQLite URLs
are accepted for local runs and tests.
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from gateway.core.config import get_settings
from gateway.core.exceptions import StoreError
from gateway.core.logging import get_logger

logger = get_logger(__name__)

# Global engine and session factory
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async database engine."""
    global _engine

    if _engine is None:
        settings = get_settings()
        url = settings.processed_database_url

        engine_kwargs: dict[str, Any] = {
            "echo": settings.db_echo,
            "pool_pre_ping": True,
        }

        if url.startswith("sqlite"):
            connect_args: dict[str, Any] = {}
        else:
            # pgbouncer-style poolers reject cached prepared statements
            connect_args = {
                "statement_cache_size": 0,
                "prepared_statement_cache_size": 0,
            }

        if "neon.tech" in url:
            engine_kwargs["poolclass"] = NullPool
            logger.info("Using NullPool for serverless database")
        elif not url.startswith("sqlite"):
            engine_kwargs.update({
                "pool_size": settings.db_pool_size,
                "max_overflow": settings.db_max_overflow,
                "pool_timeout": settings.db_pool_timeout,
                "pool_recycle": 1800,
            })
            logger.info(
                "Using connection pool",
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
            )

        _engine = create_async_engine(url, connect_args=connect_args, **engine_kwargs)
        logger.info("Database engine created")

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the async session factory."""
    global _session_factory

    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    return _session_factory


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Transactional session scope: commit on success, rollback on error."""
    session_factory = factory or get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise StoreError(str(e)) from e
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create missing tables.

    Schema evolution is owned by the administration service; this only
    bootstraps empty databases.
    """
    from gateway.db.models import Base

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables initialized")


async def close_db() -> None:
    """Close database connections and dispose of the engine."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database connections closed")


async def check_db_health(timeout: float = 5.0) -> bool:
    """Check database connectivity with timeout."""

    async def _check() -> bool:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    try:
        return await asyncio.wait_for(_check(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error("Database health check timed out", timeout=timeout)
        return False
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return False
