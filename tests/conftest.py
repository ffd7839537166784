"""
tests/conftest.py -- Shared fixtures for AuthShell unit and integration tests.

This module provides:
  - make_user_store():   isolated named shared-memory SQLite UserStore
  - store / gateway:     fresh StateStore + ActionGateway per test
  - provider:            LocalAuthProvider over a fresh UserStore
  - api_client:          module-scoped TestClient with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync work in a thread pool. Plain :memory: DBs are
per-connection and would present a blank schema to each worker thread.

DEBUG must be set before any auth/api import so get_settings() auto-generates
SECRET_KEY instead of raising. LOGIN_RATE_LIMIT is raised so the shared
in-memory limiter never throttles a test session.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_shell
from auth.local import LocalAuthProvider, OutboxMailer
from auth.store import UserStore
from core.config import get_settings
from core.gateway import ActionGateway
from core.store import StateStore


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_user_store(db_suffix: str | None = None) -> UserStore:
    """Create an isolated named shared-memory UserStore."""
    suffix = db_suffix or uuid.uuid4().hex
    return UserStore(db_url=f"sqlite:///file:test_users_{suffix}?mode=memory&cache=shared&uri=true")


@pytest.fixture
def store() -> StateStore:
    return StateStore()


@pytest.fixture
def gateway(store) -> ActionGateway:
    return ActionGateway(store)


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    users = make_user_store()
    yield users
    users.close()


@pytest.fixture
def provider(user_store) -> LocalAuthProvider:
    return LocalAuthProvider(user_store, mailer=OutboxMailer())


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _test_settings():
    """Settings with tiny instability weights so multi-step HTTP flows are never throttled."""
    return get_settings().model_copy(
        update={
            "instability_weight_auth": 0.01,
            "instability_weight_view": 0.005,
            "instability_weight_error": 0.005,
        }
    )


def _patch_lifespan(user_store: UserStore):
    """Return a lifespan that wires the real shell graph over a test UserStore.

    The OAuth registry is mocked to prevent network calls. The watchdog task
    is a long-sleeping coroutine so shutdown still has a real task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_shell(app, _test_settings(), user_store, oauth=MagicMock())
        app.state.watchdog_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.watchdog_task.cancel()
        try:
            await app.state.watchdog_task
        except asyncio.CancelledError:
            pass
        app.state.observer.stop()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with an isolated user database.

    base_url uses localhost so TrustedHostMiddleware accepts the requests.
    """
    user_store = make_user_store()
    app.router.lifespan_context = _patch_lifespan(user_store)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client

    user_store.close()
