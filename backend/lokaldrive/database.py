"""Async SQLAlchemy engine and session factory for the SQL metadata index.

Usage:
    from lokaldrive.database import create_engine_and_sessionmaker

    engine, session_factory = create_engine_and_sessionmaker(settings.DATABASE_URL)
    async with session_factory() as session:
        result = await session.execute(select(FileRow))
"""
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine


def create_engine_and_sessionmaker(
    database_url: str,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Build an engine and a session factory bound to it."""
    engine_kwargs = {"echo": False, "pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        engine_kwargs.update(pool_size=10, max_overflow=20)
    engine = create_async_engine(database_url, **engine_kwargs)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return engine, session_factory
