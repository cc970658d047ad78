"""Pytest configuration and fixtures"""

from collections.abc import AsyncGenerator
from datetime import timedelta
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from tempsocial.db import models  # noqa: F401
from tempsocial.db.database import Base, get_db
from tempsocial.db.models import User
from tempsocial.main import app
from tempsocial.services.payment_gateway import MockGateway
from tempsocial.services.presence import PresenceRegistry
from tempsocial.services.relay import ClientConnection, RelayService
from tempsocial.services.sessions import create_session_token
from tempsocial.utils.time import utcnow


class RecordingNotifier:
    """Notifier that keeps every message instead of sending it"""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    async def send(self, phone_number: str, text: str) -> str | None:
        self.sent.append((phone_number, text))
        return f"SM{len(self.sent)}"


class FakeConnection(ClientConnection):
    """Connection that records emitted frames and close codes"""

    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        self.frames: list[dict[str, Any]] = []
        self.close_code: int | None = None

    async def _send(self, frame: dict[str, Any]) -> None:
        self.frames.append(frame)

    async def _close(self, code: int) -> None:
        self.close_code = code

    def events(self, name: str) -> list[Any]:
        return [f["data"] for f in self.frames if f["event"] == name]


@pytest.fixture
def connection_factory():
    """Build FakeConnection instances (optionally bound to an authenticated identity)"""
    return FakeConnection


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite so every session gets its own connection"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'tempsocial_test.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session"""
    async with session_factory() as session:
        yield session


@pytest.fixture
def presence() -> PresenceRegistry:
    return PresenceRegistry()


@pytest.fixture
def relay(presence, session_factory) -> RelayService:
    return RelayService(presence, session_factory)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def gateway() -> MockGateway:
    return MockGateway(secret="test-gateway-secret")


@pytest.fixture
def make_user(test_db):
    """Factory persisting a live identity"""

    async def _make_user(
        username: str,
        phone_number: str,
        upi_id: str | None = None,
        session_left: timedelta = timedelta(hours=5),
        is_active: bool = True,
    ) -> User:
        now = utcnow()
        session_end = now + session_left
        user = User(
            username=username,
            phone_number=phone_number,
            upi_id=upi_id,
            session_start=min(now, session_end - timedelta(hours=5)),
            session_end=session_end,
            is_active=is_active,
            last_active=now,
            otp_verified=True,
        )
        test_db.add(user)
        await test_db.commit()
        await test_db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def auth_headers():
    def _auth_headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_session_token(user)}"}

    return _auth_headers


@pytest_asyncio.fixture
async def client(
    test_db: AsyncSession,
    session_factory,
    presence,
    relay,
    notifier,
    gateway,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with overridden database dependency and app state"""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.state.session_factory = session_factory
    app.state.presence = presence
    app.state.relay = relay
    app.state.notifier = notifier
    app.state.gateway = gateway

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
