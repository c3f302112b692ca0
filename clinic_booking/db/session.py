"""Async engine, session factory and transaction helpers."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from clinic_booking.core.config import settings

engine_options: dict = {"echo": settings.database_echo, "pool_pre_ping": True}
if settings.is_postgres:
    engine_options["isolation_level"] = settings.database_isolation_level

engine = create_async_engine(settings.database_url, **engine_options)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for a single request."""
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Run a block as one atomic unit.

    Commits when the block completes and rolls back when it raises,
    including driver errors raised mid-transaction. The exception is
    always re-raised so callers see which rule failed.
    """
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise
