"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from liqrewards.database import get_session as _get_session
from liqrewards.redis_client import get_redis_or_none

get_db = _get_session


async def get_redis_dep() -> AsyncGenerator[object | None, None]:
    """Yield the Redis client (or None when push is disabled) as a FastAPI dependency."""
    yield get_redis_or_none()
