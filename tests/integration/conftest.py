"""Pytest fixtures for integration tests.

Provides async database fixtures for testing query functions and the
lifecycle core against a SQLite database file. While the production
system uses PostgreSQL, these tests use SQLite (via aiosqlite) for fast,
isolated testing of query and transition logic. A file database is used
rather than ``:memory:`` so that concurrent sessions get their own
connections, as they do in production.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from examclock.config import ExamclockConfig, SchedulerConfig, SweepConfig
from examclock.database.models.base import Base
from examclock.lifecycle.service import WindowLifecycleService
from examclock.web.app import create_app


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a SQLite async engine with all tables created.

    Yields:
        Configured AsyncEngine instance.
    """
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'examclock.db'}",
        echo=False,
    )

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(
    engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the test engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a new async database session for each test.

    Yields:
        AsyncSession instance for the test.
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def config() -> ExamclockConfig:
    """Configuration with the background loops disabled.

    Tests drive the scheduler and the sweep explicitly.
    """
    return ExamclockConfig(
        scheduler=SchedulerConfig(enabled=False),
        sweep=SweepConfig(enabled=False),
    )


@pytest_asyncio.fixture
async def lifecycle(
    config: ExamclockConfig,
    session_factory: async_sessionmaker[AsyncSession],
    clock,
) -> AsyncGenerator[WindowLifecycleService, None]:
    """Lifecycle service wired to the test database and the manual clock."""
    service = WindowLifecycleService(config, session_factory, clock=clock)
    yield service
    await service.stop()


@pytest_asyncio.fixture
async def app(
    config: ExamclockConfig,
    session_factory: async_sessionmaker[AsyncSession],
    lifecycle: WindowLifecycleService,
) -> FastAPI:
    """FastAPI app with the state its lifespan would normally create."""
    test_app = create_app(config)
    test_app.state.session_factory = session_factory
    test_app.state.lifecycle = lifecycle
    return test_app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing the FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
