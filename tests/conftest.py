"""
tests/conftest.py -- Shared test fixtures for CourseHub Auth.

This module provides:
  - RecordingMailer / FakeClock: test doubles injected into AuthService
  - store / service: in-memory AuthStore + AuthService for unit tests
  - api_client: TestClient wired to isolated stores, with an admin token

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API fixture because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. Unit-test fixtures run on one thread and use :memory:.

DEBUG and RATE_LIMIT_ENABLED must be set before any auth/api/core import:
get_settings() is cached on first call and the limiter reads it at import.
"""

from __future__ import annotations

import asyncio
import os
import re
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any auth/core import so get_settings() auto-generates
# SECRET_KEY in dev mode and the shared limiter starts disabled.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.service import AuthService
from auth.store import AuthStore

ADMIN_EMAIL = "root@coursehub.test"
ADMIN_PASSWORD = "adminpass123"

_TOKEN_RE = re.compile(r"token=([A-Za-z0-9_\-]+)")


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


@dataclass
class SentMail:
    to: str
    subject: str
    body: str


class RecordingMailer:
    """Mailer that keeps every message in memory instead of sending it."""

    def __init__(self) -> None:
        self.outbox: list[SentMail] = []

    def send(self, to: str, subject: str, body: str) -> None:
        self.outbox.append(SentMail(to, subject, body))

    def to(self, address: str) -> list[SentMail]:
        return [m for m in self.outbox if m.to == address.lower()]

    def last_token(self, address: str) -> str:
        """Return the link token from the newest message sent to address."""
        messages = self.to(address)
        assert messages, f"no email sent to {address}"
        match = _TOKEN_RE.search(messages[-1].body)
        assert match, f"no link token in last email to {address}"
        return match.group(1)


class FakeClock:
    """Callable clock that only moves when advance() is called."""

    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    s = AuthStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(store: AuthStore, mailer: RecordingMailer, clock: FakeClock) -> AuthService:
    return AuthService(store, mailer, clock=clock)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AuthStore, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test objects into app.state so TestClient routes see an
    isolated DB and a recording mailer. The sweep_task is a long-sleeping
    coroutine so shutdown's .cancel() has a real task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_store = store
        app.state.mailer = service.mailer
        app.state.auth_service = service
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


@dataclass
class ApiHarness:
    client: TestClient
    mailer: RecordingMailer
    service: AuthService
    admin_token: str


@pytest.fixture(scope="module")
def api_client(request) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness for HTTP integration tests, one per test module.

    A confirmed admin is bootstrapped before the client starts and logged in
    through the service so tests can call admin-only routes.
    """
    db_name = request.module.__name__.replace(".", "_")
    store = AuthStore(f"sqlite:///file:test_auth_{db_name}?mode=memory&cache=shared&uri=true")
    mailer = RecordingMailer()
    service = AuthService(store, mailer)

    service.bootstrap_admin(ADMIN_EMAIL, ADMIN_PASSWORD)
    admin_token = service.login(ADMIN_EMAIL, ADMIN_PASSWORD).access_token

    app.router.lifespan_context = _patch_lifespan(store, service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, mailer=mailer, service=service, admin_token=admin_token)

    store.close()
