# tests/conftest.py
from __future__ import annotations

import os

# Settings are read lazily, but must exist before the first get_settings().
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("API_SECRET_KEY", "test-secret")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from api.app.config import Settings
from db.session import build_session_factory
from models import Base


@pytest.fixture
async def engine(tmp_path):
    # File-backed so concurrent sessions get separate connections.
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    """Zero retry delay so a failed job is immediately claimable again."""
    return Settings(
        job_retry_base_delay=0.0,
        job_retry_max_delay=0.0,
        worker_post_job_delay=0.0,
    )


@pytest.fixture
def owner_id() -> str:
    return "user-123"
