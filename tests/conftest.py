"""
tests/conftest.py -- Shared test fixtures for SessionGate.

This module provides:
  - settings: explicit low-cost Settings for unit tests (bcrypt cost 4)
  - store: an isolated in-memory UserStore per test
  - make_user / make_context / make_authenticator: small factories
  - api_client: TestClient with a patched lifespan, follow_redirects=False

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool and
every pooled connection must see the same database.

DEBUG and BCRYPT_ROUNDS must be set before any auth/api import so
get_settings() auto-generates SECRET_KEY and hashes stay cheap.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# Set before any auth/core/api import (see module docstring).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.authenticator import Authenticator
from auth.authorization import Authorization
from auth.models import RequestContext, User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import Settings, get_settings

TEST_ROUNDS = 4
PASSWORD = "correct horse battery"

# Login tests hit POST /login far more often than the production limit allows.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(debug=True, secret_key="s" * 40, bcrypt_rounds=TEST_ROUNDS)


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def make_user(store: UserStore):
    """Factory: insert a user and return the stored record."""

    def _make(
        email: str = "alice@example.com",
        username: str | None = "alice",
        password: str = PASSWORD,
        rounds: int = TEST_ROUNDS,
        **flags,
    ) -> User:
        flags.setdefault("active", True)
        user_id = store.create_user(
            User(
                email=email,
                username=username,
                password_hash=hash_password(password, rounds=rounds),
                **flags,
            )
        )
        return store.get_by_id(user_id)

    return _make


@pytest.fixture
def make_context():
    """Factory: a RequestContext with a fresh dict session."""

    def _make(session: dict | None = None, cookies: dict | None = None, url: str = "/admin/reports") -> RequestContext:
        return RequestContext(
            session=session if session is not None else {},
            cookies=cookies or {},
            ip_address="203.0.113.7",
            url=url,
        )

    return _make


@pytest.fixture
def make_authenticator(store: UserStore, settings: Settings, make_context):
    def _make(context: RequestContext | None = None, **overrides) -> Authenticator:
        cfg = settings.model_copy(update=overrides) if overrides else settings
        return Authenticator(store, context or make_context(), cfg)

    return _make


@pytest.fixture
def authorization(store: UserStore) -> Authorization:
    return Authorization(store)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore):
    """Return a lifespan that wires the test store into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = get_settings()
        app.state.user_store = user_store
        app.state.authorization = Authorization(user_store)
        yield

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[tuple[TestClient, UserStore], None, None]:
    """Yield (client, store) with an admin and a regular user pre-created.

    Users (password PASSWORD for both):
      admin@example.com / admin  -- role admin
      bob@example.com / bob      -- no roles
    """
    user_store = UserStore("sqlite:///file:test_auth_api?mode=memory&cache=shared&uri=true")
    authorization = Authorization(user_store)
    authorization.create_role("admin", "Site administrators")
    admin_id = user_store.create_user(
        User(email="admin@example.com", username="admin", password_hash=hash_password(PASSWORD), active=True)
    )
    authorization.add_user_to_role(admin_id, "admin")
    user_store.create_user(
        User(email="bob@example.com", username="bob", password_hash=hash_password(PASSWORD), active=True)
    )

    app.router.lifespan_context = _patch_lifespan(user_store)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, user_store

    user_store.close()
