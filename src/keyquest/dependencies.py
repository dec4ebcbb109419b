"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from keyquest.redis_client import get_redis as _get_redis


async def get_redis_dep() -> AsyncGenerator[object, None]:
    """Yield the Redis client (or None) as a FastAPI dependency."""
    yield _get_redis()
