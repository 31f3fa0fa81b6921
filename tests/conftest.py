import os
from contextlib import contextmanager
from typing import AsyncGenerator
from unittest.mock import AsyncMock, patch

# Settings are cached on first import; pin the test values before that.
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test-unused.db"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_webhook_secret"
os.environ["DB_SUPPORTS_TRANSACTIONS"] = "true"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.db.base import Base
from libs.db.session import get_async_db

# Import all models so metadata includes every table
from services.communications_service import models as _communications_models  # noqa: F401
from services.members_service import models as _member_models  # noqa: F401
from services.payments_service import models as _payments_models  # noqa: F401
from services.store_service import models as _store_models  # noqa: F401
from services.wallet_service import models as _wallet_models  # noqa: F401

settings = get_settings()


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """
    A fresh SQLite database file per test.

    A file (not :memory:) so that two sessions can interleave on separate
    connections, the way two API workers would.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", future=True
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a database session with the same options the services use.
    """
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def other_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    A second, independent session: a concurrent caller.
    """
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Side effects
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def mock_email_client():
    """
    Never talk to the email service from tests.
    """
    with patch(
        "libs.common.emails.client.EmailClient.send_template",
        new_callable=AsyncMock,
        return_value=True,
    ) as send_template:
        yield send_template


# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------


def make_member_user(user_id, email: str = "member@test.com") -> AuthUser:
    return AuthUser(user_id=str(user_id), email=email, role="customer")


def make_admin_user() -> AuthUser:
    return AuthUser(
        user_id="00000000-0000-0000-0000-00000000a0a0",
        email="admin@test.com",
        role="admin",
    )


def make_service_user(service: str = "members") -> AuthUser:
    return AuthUser(user_id=f"service:{service}", role="service_role")


@contextmanager
def override_auth(app, user: AuthUser):
    """
    Temporarily authenticate every request to ``app`` as ``user``.
    """
    previous = app.dependency_overrides.get(get_current_user)
    app.dependency_overrides[get_current_user] = lambda: user
    try:
        yield
    finally:
        if previous is None:
            app.dependency_overrides.pop(get_current_user, None)
        else:
            app.dependency_overrides[get_current_user] = previous


# ---------------------------------------------------------------------------
# HTTP clients
# ---------------------------------------------------------------------------


@contextmanager
def _bind_db(app, session_factory):
    async def _get_test_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = _get_test_db
    try:
        yield
    finally:
        app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def store_client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    from services.store_service.app.main import app

    with _bind_db(app, session_factory):
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as ac:
            yield ac


@pytest_asyncio.fixture
async def payments_client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    from services.payments_service.app.main import app

    with _bind_db(app, session_factory):
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as ac:
            yield ac


@pytest_asyncio.fixture
async def wallet_client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    from services.wallet_service.app.main import app

    with _bind_db(app, session_factory):
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as ac:
            yield ac


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_gateway(monkeypatch):
    """
    Replace the shared Paystack client with an in-process fake.
    """
    from services.payments_service import paystack_client
    from tests.factories import FakeGateway

    gateway = FakeGateway()
    monkeypatch.setattr(paystack_client, "_paystack_client", gateway)
    return gateway
