# db/session.py
"""
Session factories. The API gets one session per request through get_db();
the worker opens its own short sessions per claim and per attempt.
"""
from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from db.engine import dispose_engine, get_engine

_session_factory: async_sessionmaker[AsyncSession] | None = None


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Jobs returned by a committed claim are read after the claim session
    # closes, so attributes must not expire on commit.
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


async def close_sessions() -> None:
    """Drop the cached factory and close pooled connections."""
    global _session_factory
    _session_factory = None
    await dispose_engine()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: commit when the caller is done, roll back on error."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
