"""Test fixtures for Taskiq, the async runtime and an in-memory database."""

import os
import sys
from collections.abc import AsyncIterator
from pathlib import Path

os.environ["TASKIQ_TESTING"] = "1"

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import src.models  # noqa: F401
from src.models.base import Base
from src.taskiq_app.broker import broker
from src.taskiq_app.dedup import _MEMORY_LOCKS

FIXTURES_DIR = ROOT_DIR / "fixtures"


@pytest.fixture(scope="function", autouse=True)
async def init_taskiq() -> AsyncIterator[None]:
    """Initialize broker per test when using InMemoryBroker."""

    _MEMORY_LOCKS.clear()
    await broker.startup()
    yield
    await broker.shutdown()
    _MEMORY_LOCKS.clear()


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Fresh in-memory SQLite schema shared by every session of one test."""

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR
