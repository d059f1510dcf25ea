"""
Test fixtures for the Mock UPI API test suite.

This module provides shared fixtures used across all test files:

  - db_engine / db_session: Fresh in-memory SQLite database for each test
  - notifier: Records every published event instead of pushing to sockets
  - finzen_stub / finzen: A real FinzenClient wired to an httpx.MockTransport
  - client: Async HTTP test client with the above injected
  - register: Helper that signs a user up and returns auth headers

Key design decisions:
  - In-memory SQLite (sqlite+aiosqlite://) is used for speed and isolation.
    Each test gets a completely fresh database.
  - We override get_db, get_notifier and get_finzen_client so the
    application code runs unchanged against test collaborators.
  - Users are created through POST /upi/register, so the real signup flow
    is exercised rather than bare DB inserts.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("LOG_JSON", "false")

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from app.database import Base, get_db
from app.dependencies import get_finzen_client, get_notifier
from app.main import app
from app.notifications import Notifier
from app.services.finzen_sync import FinzenClient


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"


class RecordingNotifier(Notifier):
    """Collects (upi_id, event) pairs in publish order."""

    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    async def publish(self, upi_id: str, event: dict) -> None:
        self.events.append((upi_id, event))


class FinzenStub:
    """
    Stand-in for the Finzen HTTP API.

    `records` is what GET /transactions returns; setting `fail_next` to N
    makes the next N requests answer 503; every request is kept in
    `requests`.
    """

    def __init__(self):
        self.records: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.fail_next = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_next > 0:
            self.fail_next -= 1
            return httpx.Response(503, json={"message": "unavailable"})
        if request.method == "GET":
            return httpx.Response(200, json=self.records)
        return httpx.Response(201, json={"ok": True})

    @property
    def posts(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]


@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = create_async_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide an async session bound to the test engine."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def finzen_stub():
    return FinzenStub()


@pytest_asyncio.fixture
async def finzen(finzen_stub):
    """A FinzenClient talking to finzen_stub, with no backoff delay."""
    client = FinzenClient(
        base_url="http://finzen.test",
        api_key="test-key",
        timeout=1.0,
        max_attempts=3,
        backoff_seconds=0,
        transport=httpx.MockTransport(finzen_stub.handler),
    )
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def disabled_finzen():
    """A FinzenClient with no FINZEN_API_URL: forwards are skipped."""
    client = FinzenClient(base_url=None, api_key="unused")
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def client(session_factory, notifier, finzen):
    """
    Async HTTP test client with the test database and collaborators injected.
    """

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_finzen_client] = lambda: finzen

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def register(client):
    """
    Return an async helper: register(user_id, balance_paise=0) -> headers.

    The headers carry the new user's bearer token.
    """

    async def _register(user_id: str, balance_paise: int = 0) -> dict:
        response = await client.post(
            "/upi/register",
            json={
                "user_id": user_id,
                "name": user_id.title(),
                "password": f"{user_id}-Secret123!",
                "initial_balance_paise": balance_paise,
            },
        )
        assert response.status_code == 201, f"Register failed: {response.text}"
        return {"Authorization": f"Bearer {response.json()['token']}"}

    return _register
