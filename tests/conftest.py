"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta, timezone

# Settings are read at import time by keyquest.main, so the test environment
# has to be in place first.
os.environ["KQ_JWT_ALGORITHM"] = "HS256"
os.environ["KQ_JWT_SECRET"] = "keyquest-test-secret-with-at-least-32-bytes"
os.environ["KQ_REDIS_URL"] = ""
os.environ["KQ_LOG_FORMAT"] = "console"

import jwt  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from keyquest.auth.jwt import reset_keys  # noqa: E402
from keyquest.config import get_settings  # noqa: E402
from keyquest.database import close_db, get_engine, get_session_factory, init_db  # noqa: E402
from keyquest.db.base import Base  # noqa: E402
from keyquest.users.service import Account, load_account, set_premium_status  # noqa: E402

get_settings.cache_clear()
reset_keys()


@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncGenerator[None, None]:
    """Fresh SQLite file per test, schema created from the models."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'keyquest_test.db'}")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(database) -> AsyncGenerator[AsyncSession, None]:
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def other_session(database) -> AsyncGenerator[AsyncSession, None]:
    """A second, independent session on the same database."""
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def make_account(db_session: AsyncSession) -> Callable[..., Awaitable[Account]]:
    """Create (or load) a user by handle, optionally premium."""

    async def _make(
        handle: str = "user_test_1",
        *,
        premium: bool = False,
        expires_at: datetime | None = None,
    ) -> Account:
        account = await load_account(db_session, handle)
        if premium or expires_at is not None:
            account = await set_premium_status(db_session, handle, True, expires_at)
        return account

    return _make


@pytest_asyncio.fixture
async def account(make_account) -> Account:
    return await make_account()


@pytest_asyncio.fixture
async def premium_account(make_account) -> Account:
    return await make_account("user_premium_1", premium=True)


def make_token(handle: str, *, expires_in: timedelta = timedelta(hours=1), issuer: str | None = None) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": handle,
        "iat": now,
        "exp": now + expires_in,
        "iss": issuer or settings.jwt_issuer,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


@pytest_asyncio.fixture
async def client(database) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app. The database fixture stands in for the lifespan."""
    from keyquest.main import create_app

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token('user_api_1')}"}


@pytest.fixture
def token_for() -> Callable[..., str]:
    return make_token
