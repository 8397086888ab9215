"""
Shared test fixtures.

Provides a FastAPI TestClient wired to:
  • a temporary SQLite database (via app lifespan)
  • fresh passcode / rate-limit stores driven by a fake clock
  • a mocked email sender (no network, codes captured for assertions)

The `client` fixture runs the full lifespan (DB init / shutdown, sweepers).
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from app.dependencies import get_current_user, get_passcode_manager, get_rate_limiter
from app.main import app
from app.rate_limit import RateLimiter
from app.services import email as email_service
from app.services.passcodes import PasscodeManager
from app.services.store import InMemoryStore
from tests.mocks.models import CLIENT_IP, MOCK_USER
from tests.mocks.services import FakeClock


# ── Stores ─────────────────────────────────────────────────────────────────


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def passcode_manager(clock: FakeClock) -> PasscodeManager:
    return PasscodeManager(InMemoryStore(), clock=clock)


@pytest.fixture()
def rate_limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(InMemoryStore(), clock=clock)


# ── Email ──────────────────────────────────────────────────────────────────


@pytest.fixture()
def sent_otps(monkeypatch) -> AsyncMock:
    """
    Replaces the passcode email sender. Each call's args are
    ``(email, code, expiry_minutes)``.
    """
    mock = AsyncMock(return_value="test-message-id")
    monkeypatch.setattr(email_service, "send_otp_email", mock)
    monkeypatch.setattr(email_service, "send_welcome_email", AsyncMock(return_value=""))
    return mock


# ── App ────────────────────────────────────────────────────────────────────


@pytest.fixture()
def _test_env(monkeypatch, tmp_path, passcode_manager, rate_limiter, sent_otps):
    """
    Points the DB at a temp file and swaps the app's stores for the
    per-test instances above.
    """
    import app.db as db_mod

    monkeypatch.setattr(db_mod, "DB_PATH", str(tmp_path / "test.db"))

    app.dependency_overrides[get_passcode_manager] = lambda: passcode_manager
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def client(_test_env) -> TestClient:
    """TestClient calling from a fixed client IP (via X-Forwarded-For)."""
    with TestClient(
        app,
        raise_server_exceptions=False,
        headers={"X-Forwarded-For": CLIENT_IP},
    ) as tc:
        yield tc


@pytest.fixture()
def authed_client(_test_env) -> TestClient:
    """TestClient with the current user dependency bypassed."""

    async def _mock_current_user():
        return MOCK_USER

    app.dependency_overrides[get_current_user] = _mock_current_user

    with TestClient(
        app,
        raise_server_exceptions=False,
        headers={"X-Forwarded-For": CLIENT_IP},
    ) as tc:
        yield tc
