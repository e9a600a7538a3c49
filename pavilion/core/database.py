"""Async database engine, session factory and declarative base."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from pavilion.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""

    pass


def _engine_kwargs(url: str) -> dict:
    # SQLite (tests) uses a static pool and rejects pool sizing arguments
    if url.startswith("sqlite"):
        return {}
    return {"pool_size": 10, "max_overflow": 20, "pool_pre_ping": True}


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    **_engine_kwargs(settings.DATABASE_URL),
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db() -> None:
    """Create all tables. Used where migrations are not run."""
    # Import models so they register with the metadata
    from pavilion.modules.ingest import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def task_session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Yield a session factory on a fresh engine.

    Celery tasks run each coroutine under its own ``asyncio.run`` loop, and
    pooled asyncpg connections cannot cross loops.
    """
    task_engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    try:
        yield async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await task_engine.dispose()
