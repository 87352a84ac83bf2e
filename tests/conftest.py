"""
Shared pytest fixtures.

Every test gets its own in-memory SQLite database; ``StaticPool`` keeps the
single connection alive so all sessions see the same data.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("OBSERVABILITY__LOG_FORMAT", "text")

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from randevu.platform.billing import models as _billing_models  # noqa: F401
from randevu.platform.business import models as _business_models  # noqa: F401
from randevu.platform.db import Base


@pytest_asyncio.fixture
async def engine():
    """In-memory database with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(engine):
    return async_sessionmaker(
        bind=engine, class_=AsyncSession, autoflush=False, expire_on_commit=False
    )


@pytest_asyncio.fixture
async def db_session(session_maker):
    async with session_maker() as session:
        yield session
