"""Pytest configuration and fixtures."""

import os
from typing import AsyncGenerator, Generator
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment variables before importing app
os.environ.setdefault("JWT_SECRET", "test-access-secret-for-exposureshield-tests")
os.environ.setdefault("REDIS_URL", "")

from exposureshield.config import Settings
from exposureshield.services.auth_service import AuthService
from exposureshield.services.email_service import EmailService, await_pending_emails
from exposureshield.services.kv_store import MemoryKeyValueStore

JWT_SECRET = "test-access-secret-for-exposureshield-tests"
JWT_REFRESH_SECRET = "test-refresh-secret-for-exposureshield-tests"


def make_settings(**overrides) -> Settings:
    """Build Settings for tests, ignoring any local .env file."""
    values = {
        "jwt_secret": JWT_SECRET,
        "jwt_refresh_secret": JWT_REFRESH_SECRET,
        "redis_url": "",
        "email_enabled": False,
        "log_level": "WARNING",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeClock:
    """Controllable monotonic clock for TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """Manually advanced clock starting at 1000.0."""
    return FakeClock()


@pytest.fixture
def settings_factory():
    """Factory for Settings with per-test overrides."""
    return make_settings


@pytest.fixture
def settings() -> Settings:
    """Settings with both signing secrets configured and the memory store."""
    return make_settings()


@pytest.fixture
def kv_store() -> MemoryKeyValueStore:
    """Fresh in-memory store per test."""
    return MemoryKeyValueStore()


@pytest.fixture
def mock_mailer() -> MagicMock:
    """EmailService stand-in that records sends."""
    mailer = MagicMock(spec=EmailService)
    mailer.send_verification_email = AsyncMock(return_value=True)
    mailer.send_password_reset_email = AsyncMock(return_value=True)
    mailer.send = AsyncMock(return_value=True)
    return mailer


@pytest.fixture
async def auth_service(
    settings: Settings, kv_store: MemoryKeyValueStore, mock_mailer: MagicMock
) -> AsyncGenerator[AuthService, None]:
    """AuthService on the memory store; drains background emails on teardown."""
    yield AuthService(settings, kv_store, mailer=mock_mailer)
    await await_pending_emails(timeout=5.0)


@pytest.fixture
def client(
    settings: Settings, kv_store: MemoryKeyValueStore, mock_mailer: MagicMock
) -> Generator:
    """TestClient running the full app (lifespan included) on the memory store."""
    from fastapi.testclient import TestClient

    from exposureshield.main import create_app

    app = create_app(settings=settings, kv_store=kv_store, mailer=mock_mailer)
    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc


@pytest.fixture
def drain_emails(client):
    """Callable that waits for background email tasks in the app's loop."""

    def _drain() -> None:
        client.portal.call(await_pending_emails)

    return _drain
