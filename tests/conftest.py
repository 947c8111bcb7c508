"""
Shared fixtures: a throwaway SQLite database per test, a controllable clock,
a cipher, and helpers for faking YNAB's token endpoint.
"""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from connectors.encryption import TokenCipher
from database.models import User
from database.session import create_tables

START = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


def token_payload(clock: FakeClock, *, access="access-1", refresh="refresh-1", expires_in=7200) -> dict:
    return {
        "access_token": access,
        "token_type": "bearer",
        "expires_in": expires_in,
        "refresh_token": refresh,
        "created_at": int(clock().timestamp()),
    }


def form_of(request: httpx.Request) -> dict:
    """Flatten a form-encoded request body into a plain dict."""
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'broker.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def users(session_factory):
    async with session_factory() as session:
        session.add_all(
            [
                User(id="user-1", email="one@example.com", name="One"),
                User(id="user-2", email="two@example.com", name="Two"),
            ]
        )
        await session.commit()
    return ["user-1", "user-2"]


@pytest.fixture(scope="session")
def cipher() -> TokenCipher:
    return TokenCipher("test-token-encryption-secret", "test-salt")
