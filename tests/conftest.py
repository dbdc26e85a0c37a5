"""Shared test fixtures.

Every test gets a fresh SQLite database (aiosqlite) built from the ORM
metadata, and an AsyncMock standing in for the Redis client.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from liqrewards.auth.jwt import create_access_token
from liqrewards.database import close_db, get_engine, get_session_factory, init_db
from liqrewards.db.base import Base
from liqrewards.dependencies import get_redis_dep
from liqrewards.gamification.seed import seed_all
from liqrewards.main import create_app


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite so separate sessions see each other's commits."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'rewards.db'}")
    eng = get_engine()
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await close_db()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for test assertions."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seeded_db(db_session: AsyncSession) -> AsyncSession:
    """Session over a database with achievements, quests, loot boxes and skill trees seeded."""
    await seed_all(db_session)
    return db_session


@pytest.fixture
def mock_redis() -> AsyncMock:
    redis = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    return redis


@pytest.fixture
def auth_headers() -> Callable[[int], dict[str, str]]:
    """Build a bearer header for an account id."""

    def _headers(account_id: int) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(account_id)}"}

    return _headers


@pytest_asyncio.fixture
async def client(seeded_db: AsyncSession, mock_redis: AsyncMock) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client over the seeded database."""
    app = create_app()

    async def _redis_override() -> AsyncGenerator[AsyncMock, None]:
        yield mock_redis

    app.dependency_overrides[get_redis_dep] = _redis_override

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
