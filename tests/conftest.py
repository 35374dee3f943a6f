"""
tests/conftest.py -- Shared test fixtures for UserAdmin.

This module provides:
  - user_store / session_store: isolated in-memory stores, one pair per test
  - db_url: the URI factory behind them, for tests that need extra stores
  - make_client: factory for TestClients wired to those stores, so a test can
    drive several independent browsers (each with its own cookie jar)
  - client: a single TestClient from make_client
  - seed_user: create a user directly in the store with a real bcrypt hash

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Each URI carries a random suffix so tests never share state.

DEBUG and BCRYPT_ROUNDS must be set before any auth/core import: DEBUG lets
get_settings() auto-generate SECRET_KEY, and the minimum work factor keeps
bcrypt from dominating the test run.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# Must precede every auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.models import Role, User
from auth.passwords import hash_password
from auth.sessions import SessionStore
from auth.store import UserStore


def memory_db_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def _patch_lifespan(user_store: UserStore, session_store: SessionStore):
    """Return a lifespan that wires the test stores into app.state.

    Replaces the real lifespan so no database file is opened and no purge
    task is started.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.session_store = session_store
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


@pytest.fixture
def db_url() -> Callable[[str], str]:
    """Return memory_db_url, for tests that build their own stores."""
    return memory_db_url


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(memory_db_url("users"))
    yield store
    store.close()


@pytest.fixture
def session_store() -> Generator[SessionStore, None, None]:
    store = SessionStore(memory_db_url("sessions"))
    yield store
    store.close()


@pytest.fixture
def seed_user(user_store: UserStore) -> Callable[..., User]:
    """Return a helper that inserts a user with a hashed password."""

    def _seed(name: str, email: str, password: str = "password123", role: Role = Role.user) -> User:
        return user_store.create(name, email, hash_password(password), role)

    return _seed


# ---------------------------------------------------------------------------
# HTTP clients
# ---------------------------------------------------------------------------


@pytest.fixture
def make_client(
    user_store: UserStore, session_store: SessionStore
) -> Generator[Callable[..., TestClient], None, None]:
    """Yield a factory of TestClients bound to this test's stores.

    follow_redirects=False is essential: tests assert on redirect locations,
    which are invisible once the client follows them.
    """
    app.router.lifespan_context = _patch_lifespan(user_store, session_store)
    clients: list[TestClient] = []

    def _make(**kwargs) -> TestClient:
        kwargs.setdefault("follow_redirects", False)
        client = TestClient(app, **kwargs)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client: Callable[..., TestClient]) -> TestClient:
    return make_client()
