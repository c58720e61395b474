"""Shared pytest fixtures.

Provides:
- clock, owner_repo, meeting_repo, provisioner: in-memory doubles (tests/doubles.py)
- session_factory: SQLite-backed AsyncSession factory for repository tests
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from src.app.core.database import Base
from tests.doubles import (
    FakeClock,
    FakeProvisioner,
    InMemoryMeetingRepository,
    InMemoryOwnerRepository,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def owner_repo() -> InMemoryOwnerRepository:
    return InMemoryOwnerRepository()


@pytest.fixture
def meeting_repo() -> InMemoryMeetingRepository:
    return InMemoryMeetingRepository()


@pytest.fixture
def provisioner() -> FakeProvisioner:
    return FakeProvisioner()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """AsyncSession factory over a fresh SQLite database file.

    A file (not ``:memory:``) so every session gets its own connection.
    """
    from src.app.meetings import models  # noqa: F401

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.sqlite'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    yield factory

    await engine.dispose()
