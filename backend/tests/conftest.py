from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from tutorpay.db import get_session
from tutorpay.main import app
from tutorpay.models import SQLModel
from tutorpay.services.directory import InMemoryDirectoryService, set_directory_service
from tutorpay.services.scheduling import InMemorySchedulingService, set_scheduling_service
from tutorpay.services.xero import InMemoryAccountingService, set_accounting_service

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator

    from sqlalchemy.ext.asyncio import AsyncEngine

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite://")


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    """Create a fresh database per test.

    Defaults to an in-memory SQLite database; set TEST_DATABASE_URL to run the
    suite against PostgreSQL instead.
    """
    if TEST_DATABASE_URL.startswith("sqlite"):
        _engine = create_async_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        _engine = create_async_engine(TEST_DATABASE_URL)
    async with _engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)
    yield _engine
    async with _engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
    await _engine.dispose()


@pytest.fixture
async def db_session(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Yield a database session; services commit for real against the per-test database."""
    session = AsyncSession(bind=engine, expire_on_commit=False)
    yield session
    await session.close()


@pytest.fixture
async def async_client(db_session: AsyncSession) -> AsyncIterator[AsyncClient]:
    """Async HTTP client with the database session dependency overridden."""

    async def _override_get_session() -> AsyncIterator[AsyncSession]:
        yield db_session

    app.dependency_overrides[get_session] = _override_get_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Collaborators: a fresh in-memory implementation for every test
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def scheduling() -> Iterator[InMemorySchedulingService]:
    svc = InMemorySchedulingService()
    set_scheduling_service(svc)
    yield svc
    set_scheduling_service(InMemorySchedulingService())


@pytest.fixture(autouse=True)
def directory() -> Iterator[InMemoryDirectoryService]:
    svc = InMemoryDirectoryService()
    set_directory_service(svc)
    yield svc
    set_directory_service(InMemoryDirectoryService())


@pytest.fixture(autouse=True)
def accounting() -> Iterator[InMemoryAccountingService]:
    svc = InMemoryAccountingService()
    set_accounting_service(svc)
    yield svc
    set_accounting_service(InMemoryAccountingService())
