"""
Pytest configuration and fixtures for University Lead Generation API tests.
"""
import os

# Settings are cached on first import, so the environment goes first.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_leads.db"
os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["N8N_WEBHOOK_URL"] = ""
os.environ["SENTRY_DSN"] = ""

import asyncio
from typing import AsyncGenerator

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from admissions.database import Database, get_database
from admissions.services.background import BackgroundDispatcher, get_dispatcher
from admissions.services.webhook_notifier import WebhookNotifier, get_webhook_notifier


WEBHOOK_URL = "https://n8n.test/webhook/university-leads"


class FakeTransport:
    """
    Stand-in for the webhook HTTP transport.

    ``responses`` is consumed one per call (the last entry repeats). An entry
    is either a status code or an exception instance to raise.
    """

    def __init__(self, responses=None, delay: float = 0.0):
        self.responses = list(responses or [200])
        self.delay = delay
        self.calls = []

    async def post(self, url, payload, timeout):
        self.calls.append({"url": url, "payload": payload, "timeout": timeout})
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class RecordingSleep:
    """Replacement for asyncio.sleep that returns immediately."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def lead_payload() -> dict:
    """A valid landing form submission (wire field names)."""
    return {
        "name": "Aarav Sharma",
        "phoneNumber": "9876543210",
        "email": "Aarav.Sharma@Example.com",
        "stream": "Science",
    }


@pytest.fixture
async def database(tmp_path) -> AsyncGenerator[Database, None]:
    """
    Fresh file-backed SQLite database per test (one connection per session).
    """
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'leads.db'}")
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
async def db_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    async with database.session() as session:
        yield session


@pytest.fixture
async def dispatcher() -> AsyncGenerator[BackgroundDispatcher, None]:
    bg = BackgroundDispatcher()
    yield bg
    await bg.drain(timeout=5.0)


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def webhook_transport() -> FakeTransport:
    return FakeTransport([200])


@pytest.fixture
def notifier(webhook_transport: FakeTransport, fake_sleep: RecordingSleep) -> WebhookNotifier:
    """Notifier without a URL: deliveries are skipped."""
    return WebhookNotifier(url=None, transport=webhook_transport, sleep=fake_sleep)


@pytest.fixture
async def app(database: Database, dispatcher: BackgroundDispatcher, notifier: WebhookNotifier):
    from admissions.main import app as fastapi_app

    fastapi_app.dependency_overrides[get_database] = lambda: database
    fastapi_app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    fastapi_app.dependency_overrides[get_webhook_notifier] = lambda: notifier
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async HTTP client talking to the app in-process."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
