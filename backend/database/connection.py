"""
Database connection

The engine is created lazily from settings so that importing the models
does not require a configured database.
"""

from functools import lru_cache
import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import text

from config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


@lru_cache()
def get_engine() -> AsyncEngine:
    """Create the async engine from DATABASE_URL"""
    settings = get_settings()
    connect_args = {"ssl": "require"} if settings.DATABASE_SSL else {}
    return create_async_engine(
        settings.get_database_url(),
        echo=False,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        connect_args=connect_args,
    )


@lru_cache()
def get_session_factory() -> async_sessionmaker:
    return async_sessionmaker(
        get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def get_db():
    """Dependency to get database session"""
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """Verify the connection and create the identity tables if missing"""
    # Register the identity tables on Base.metadata
    import identity.models  # noqa: F401

    try:
        async with get_engine().begin() as conn:
            await conn.execute(text("SELECT 1"))
            logger.info("PostgreSQL connection successful")
            await conn.run_sync(Base.metadata.create_all)
            logger.info(f"Identity tables ready: {sorted(Base.metadata.tables)}")
            return True
    except Exception as e:
        logger.error(f"Database initialization error: {e}")
        raise


async def dispose_engine():
    """Close pooled connections (application shutdown)"""
    if get_engine.cache_info().currsize:
        await get_engine().dispose()
        get_engine.cache_clear()
        get_session_factory.cache_clear()
