"""Engines, session factories and the request-scoped session dependency."""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from taskboard.config import Settings, get_settings


def build_engine(settings: Settings, pooled: bool = True) -> AsyncEngine:
    """Create an engine for ``settings.database_url``.

    Args:
        settings: Application settings.
        pooled: Keep a connection pool. Worker jobs pass False because every
            ``asyncio.run`` call gets a fresh event loop and pooled asyncpg
            connections cannot cross loops.
    """
    if not pooled:
        return create_async_engine(settings.database_url, poolclass=NullPool, echo=settings.debug)
    return create_async_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout,
        pool_pre_ping=True,
        echo=settings.debug,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False, autoflush=False)


engine = build_engine(get_settings())
async_session_factory = build_session_factory(engine)


async def init_db() -> None:
    """Fail fast at startup when the database is unreachable."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def close_db() -> None:
    await engine.dispose()


@asynccontextmanager
async def worker_session() -> AsyncIterator[AsyncSession]:
    """One-shot session for a background job; commits on success."""
    job_engine = build_engine(get_settings(), pooled=False)
    try:
        async with build_session_factory(job_engine)() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    finally:
        await job_engine.dispose()


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; commits what the command layer left pending."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


DBSession = Annotated[AsyncSession, Depends(get_db_session)]
