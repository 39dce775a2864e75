"""
Event Store Database Connection

Async SQLAlchemy engine lifecycle for the SQL event store: initialization
with a connectivity check, and shutdown.
"""

from typing import Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from seller_analytics.config import get_settings

logger = structlog.get_logger(__name__)

_engine: Optional[AsyncEngine] = None


async def init_database(url: Optional[str] = None) -> AsyncEngine:
    """
    Initialize the database engine.

    Args:
        url: Database URL; defaults to the configured event store database

    Returns:
        AsyncEngine: The initialized database engine
    """
    global _engine

    if _engine is not None:
        logger.warning("Database already initialized")
        return _engine

    settings = get_settings()

    # asyncpg pools its own connections
    _engine = create_async_engine(
        url or settings.database.async_url,
        echo=settings.database.echo,
        pool_pre_ping=True,
        poolclass=NullPool,
    )

    try:
        async with _engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info(
            "Database connection established",
            host=settings.database.host,
            database=settings.database.db,
        )
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        await _engine.dispose()
        _engine = None
        raise

    return _engine


async def close_database() -> None:
    """Dispose of the database engine"""
    global _engine

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        logger.info("Database connection closed")

