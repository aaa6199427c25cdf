import os
from typing import Any, AsyncGenerator, Dict, List

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Use in-memory SQLite for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Set env before importing the app
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("UPI_ID", "tyrefusion@upi")

ADMIN_EMAIL = "admin@example.com"
PASSWORD = "s3cret-pass"


@pytest_asyncio.fixture
async def test_engine():
    """A fresh in-memory database per test."""
    from tyrestore import models

    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(name="session")
async def session_fixture(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest.fixture(autouse=True)
def outbox(monkeypatch) -> List[Dict[str, Any]]:
    """Capture outgoing e-mail instead of calling a provider."""
    from tyrestore import mailer

    sent: List[Dict[str, Any]] = []

    def fake_send_email(to, subject, html, text, attachments=None):
        sent.append({"to": to, "subject": subject, "html": html, "text": text, "attachments": attachments or []})
        return True, None

    monkeypatch.setattr(mailer, "send_email", fake_send_email)
    return sent


@pytest_asyncio.fixture(name="client")
async def client_fixture(session_maker, monkeypatch) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the session dependency pointed at the test database."""
    from tyrestore import auth_routes
    from tyrestore.db import get_session
    from tyrestore.main import app

    async def get_session_override() -> AsyncGenerator[AsyncSession, None]:
        async with session_maker() as session:
            yield session

    monkeypatch.setattr(auth_routes, "ADMIN_EMAILS", {ADMIN_EMAIL})
    app.dependency_overrides[get_session] = get_session_override

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://localhost") as client:
        yield client

    app.dependency_overrides.clear()


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def register_and_login(client: AsyncClient, email: str, name: str = "Test User", password: str = PASSWORD) -> str:
    r = await client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
    assert r.status_code == 201, r.text
    r = await client.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()["token"]


@pytest_asyncio.fixture
async def user_token(client) -> str:
    return await register_and_login(client, "ravi@example.com", name="Ravi Kumar")


@pytest_asyncio.fixture
async def admin_token(client) -> str:
    return await register_and_login(client, ADMIN_EMAIL, name="Admin")


async def add_tyre(client: AsyncClient, admin_token: str, **overrides: Any) -> Dict[str, Any]:
    body = {
        "brand": "Apollo",
        "title": "Apollo Amazer 4G",
        "size": "185/65 R15",
        "price": 4800,
        "stock": 10,
        "features": ["All-season"],
    }
    body.update(overrides)
    r = await client.post("/api/admin/tyres", json=body, headers=bearer(admin_token))
    assert r.status_code == 201, r.text
    return r.json()
