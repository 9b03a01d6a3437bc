"""Shared test fixtures."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from muster.config import Settings
from muster.db.engine import create_engine, get_session
from muster.db.migrations import apply_migrations
from muster.db.repository import Repository


@pytest.fixture
def settings() -> Settings:
    """Test settings with defaults."""
    return Settings(
        muster_env="development",
        database_url="sqlite+aiosqlite:///:memory:",
        bot_api_secret="test-secret",
    )


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """A file-backed SQLite engine with the schema migrated.

    File-backed so separate sessions (reclaimer, API requests) see the same data.
    """
    eng = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'muster.db'}")
    async with eng.begin() as conn:
        await apply_migrations(conn)
    yield eng
    await eng.dispose()


@pytest.fixture
async def repo(engine: AsyncEngine) -> AsyncGenerator[Repository, None]:
    """Yield a repository with a session bound to the test database."""
    async with get_session(engine) as session:
        yield Repository(session)
