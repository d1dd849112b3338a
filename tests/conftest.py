"""
tests/conftest.py -- Shared test fixtures for TaskManager tests.

This module provides:
  - Stores / make_stores(): one Engine with UserStore, TokenLedger,
    SessionManager and TaskStore on it
  - make_user(): insert a user with a known password
  - stores: function-scoped in-memory stores for unit tests
  - api_client: TestClient with tokens for an Admin, a Manager and two Users

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
API client because TestClient runs route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.ledger import TokenLedger
from auth.models import Role, User
from auth.session import SessionManager
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from core.db import now_iso
from tasks.store import TaskStore

TEST_PASSWORD = "Passw0rd!"


@dataclass
class Stores:
    users: UserStore
    ledger: TokenLedger
    sessions: SessionManager
    tasks: TaskStore

    def close(self) -> None:
        self.users.close()


def make_stores(db_url: str) -> Stores:
    users = UserStore(db_url=db_url)
    ledger = TokenLedger(users.engine)
    return Stores(users=users, ledger=ledger, sessions=SessionManager(users, ledger), tasks=TaskStore(users.engine))


def make_user(
    store: UserStore,
    email: str,
    role: Role = Role.USER,
    password: str = TEST_PASSWORD,
    name: str | None = None,
) -> User:
    """Insert an active user and return it with its id set."""
    user = User(
        name=name or email.split("@")[0].title(),
        email=email,
        hashed_password=hash_password(password),
        role=role,
        created_at=now_iso(),
    )
    user.id = store.create_user(user)
    return user


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stores() -> Generator[Stores, None, None]:
    """Fresh in-memory stores sharing one engine."""
    s = make_stores("sqlite:///:memory:")
    yield s
    s.close()


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(s: Stores):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = s.users
        app.state.ledger = s.ledger
        app.state.sessions = s.sessions
        app.state.task_store = s.tasks
        yield

    return test_lifespan


@dataclass
class ApiContext:
    client: TestClient
    stores: Stores
    ids: dict[str, int]
    tokens: dict[str, str]

    def headers(self, who: str) -> dict[str, str]:
        return auth_headers(self.tokens[who])


@pytest.fixture(scope="module")
def api_client(request) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    Users (all with TEST_PASSWORD):
      admin   -- admin@example.com, Admin
      manager -- manager@example.com, Manager
      alice   -- alice@example.com, User
      bob     -- bob@example.com, User

    tokens holds a ready-made access token per user. The database is named
    after the test module so modules never share state.
    """
    name = request.module.__name__.rsplit(".", 1)[-1]
    s = make_stores(f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")
    s.tasks.seed_default_categories()
    users = {
        "admin": make_user(s.users, "admin@example.com", Role.ADMIN),
        "manager": make_user(s.users, "manager@example.com", Role.MANAGER),
        "alice": make_user(s.users, "alice@example.com"),
        "bob": make_user(s.users, "bob@example.com"),
    }
    tokens = {who: create_access_token(u).token for who, u in users.items()}

    limiter.enabled = False
    app.router.lifespan_context = _patch_lifespan(s)

    # TrustedHostMiddleware only admits localhost names.
    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield ApiContext(client=client, stores=s, ids={w: u.id for w, u in users.items()}, tokens=tokens)

    limiter.enabled = True
    s.close()
