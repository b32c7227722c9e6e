"""Pytest configuration and shared fixtures.

This module provides:
- A fresh SQLite (aiosqlite) database file per test, schema from the models
- Async session and session-maker fixtures for repository/service tests
- FastAPI test client for route tests (user id via the X-User-Id header)
- Timezone fixtures shared by the service tests

PostgreSQL-only behaviour (true concurrent writers) is covered by tests
marked ``integration`` that skip when no server is reachable.
"""

# Set environment variables BEFORE any imports that trigger Settings validation
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_streaks.db")
os.environ.setdefault("CRON_SECRET", "test_cron_secret")
os.environ.setdefault("DEBUG", "true")

from collections.abc import AsyncGenerator, Generator
from pathlib import Path

import pytest
import pytest_asyncio
import pytz
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pytz.tzinfo import BaseTzInfo
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

import models  # noqa: F401
from core.config import clear_settings_cache
from core.database import Base

# =============================================================================
# Constants
# =============================================================================

TEST_USER_ID = "user_test_123456789"
TEST_CRON_SECRET = "test_cron_secret"


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine]:
    """One SQLite file per test; tables created from the models."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'streaks.db'}",
        poolclass=NullPool,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Session for arranging data and calling services directly.

    Tests that hand work to code opening its own sessions (auto-claim,
    jobs) must commit first.
    """
    session = session_maker()
    try:
        yield session
    finally:
        await session.rollback()
        await session.close()


# =============================================================================
# FastAPI Test Client Fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def app(
    test_engine: AsyncEngine,
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[FastAPI]:
    """FastAPI app wired to the per-test database."""
    from main import app as fastapi_app

    fastapi_app.state.engine = test_engine
    fastapi_app.state.session_maker = session_maker
    fastapi_app.state.init_done = True
    fastapi_app.state.init_error = None

    yield fastapi_app


@pytest_asyncio.fixture(scope="function")
async def client(app: FastAPI, test_user_id: str) -> AsyncGenerator[AsyncClient]:
    """Web client: identified by the gateway header, no bearer token."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-User-Id": test_user_id},
    ) as ac:
        yield ac


@pytest_asyncio.fixture(scope="function")
async def mobile_client(
    app: FastAPI, test_user_id: str
) -> AsyncGenerator[AsyncClient]:
    """Mobile client: bearer-authenticated, must always send a timezone."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-User-Id": test_user_id, "Authorization": "Bearer mobile-token"},
    ) as ac:
        yield ac


@pytest_asyncio.fixture(scope="function")
async def anonymous_client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# =============================================================================
# Utility Fixtures
# =============================================================================


@pytest.fixture
def test_user_id() -> str:
    return TEST_USER_ID


@pytest.fixture
def utc_tz() -> BaseTzInfo:
    return pytz.timezone("UTC")


@pytest.fixture
def ny_tz() -> BaseTzInfo:
    return pytz.timezone("America/New_York")


@pytest.fixture
def anyio_backend() -> str:
    """Use asyncio backend for anyio (required by httpx)."""
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None]:
    """Reset settings cache before each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
