"""Database connection and session management"""
from datetime import datetime, timezone
from functools import lru_cache
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from equity_ledger.config import get_settings


def utcnow() -> datetime:
    """Naive UTC timestamp for created_at / updated_at columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models"""
    pass


@lru_cache()
def get_engine() -> AsyncEngine:
    """Create the engine on first use so importing models needs no driver"""
    settings = get_settings()
    options = {"echo": settings.database_echo}
    if not settings.database_url.startswith("sqlite"):
        options["pool_size"] = settings.database_pool_size
    return create_async_engine(settings.database_url, **options)


@lru_cache()
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits on success and rolls back on error.

    Every service call made inside one session shares a transaction, so a
    mutation and the recalculation of its derived fields commit together.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db():
    """Initialize database tables"""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Close database connections"""
    await get_engine().dispose()
    get_engine.cache_clear()
    get_session_factory.cache_clear()
