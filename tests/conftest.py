"""
tests/conftest.py -- Shared test fixtures for Enigma.

This module provides:
  - FakeClock / clock: a controllable UTC clock injected into the session engine
  - db: a fresh in-memory Database per test
  - service: an AuthService over db with cheap bcrypt and the fake clock
  - alice: a user "alice"/"secret1" created in service
  - api_client: TestClient with an admin session, for API integration tests

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

ENIGMA_BCRYPT_ROUNDS must be set before any core/auth import so the cached
Settings (used by the API lifespan and CLI) hash with the minimum bcrypt cost.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any core/auth import so get_settings() sees them.
os.environ.setdefault("ENIGMA_DEBUG", "true")
os.environ.setdefault("ENIGMA_BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import TrackInformation
from auth.service import AuthService
from auth.store import Database

TEST_ROUNDS = 4

# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 1, 12, 0, 0, 250_000, tzinfo=timezone.utc))


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def db() -> Generator[Database, None, None]:
    database = Database("sqlite:///:memory:")
    yield database
    database.close()


@pytest.fixture
def service(db: Database, clock: FakeClock) -> AuthService:
    return AuthService(db, bcrypt_rounds=TEST_ROUNDS, clock=clock)


@pytest.fixture
def alice(service: AuthService) -> int:
    """Create alice/secret1 and return the new user id."""
    return service.create_user("alice", "secret1", email="alice@example.com")


@pytest.fixture
def track() -> TrackInformation:
    return TrackInformation(
        device="Android",
        user_agent="Safari",
        ip_address="192.168.1.1",
        location="USA",
        os="iOS",
        browser="Safari",
        screen_resolution="1125x2436",
        timezone="UTC-5",
    )


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService):
    """Return a lifespan that wires the pre-built test service into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth = service
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, AuthService], None, None]:
    """Yield (client, admin_token, service) for API integration tests.

    The admin user holds the default admin grant (enigma:admin). Each test
    module gets its own shared-memory database, named after the module.
    """
    name = request.module.__name__.rsplit(".", 1)[-1]
    service = AuthService(
        Database(f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true"),
        bcrypt_rounds=TEST_ROUNDS,
    )
    admin_id = service.create_user("testadmin", "testpass123")
    service.add_permission(admin_id, "enigma", "admin")
    token = service.create_session("testadmin", "testpass123").session_token

    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client, token, service

    service.close()
