"""
tests/conftest.py -- Shared test fixtures for the AssetMIS auth test suite.

This module provides:
  - make_stores(): creates isolated in-memory user + session stores
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - AuthHarness: TestClient plus helpers to seed users and walk the login flow
  - fresh_app: harness over an empty database (first-run / setup state)
  - auth_app: harness with an MFA-enrolled admin already in the database

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment must be set before any auth/core import: get_settings() is cached
and several modules read it at import time.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
import time
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any auth/core import.
#   DEBUG               -- auto-generated SECRET_KEY, low KDF rounds allowed
#   PASSWORD_KDF_ROUNDS -- keeps hashing fast; production default is 100
#   ALLOWED_HOSTS       -- TestClient sends Host: testserver
#   *_RATE_LIMIT        -- the whole suite shares one slowapi counter per IP
#   MAX_FAILED_ATTEMPTS -- lockout is tested explicitly with its own throttle
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("PASSWORD_KDF_ROUNDS", "1")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "10000/minute")
os.environ.setdefault("MFA_RATE_LIMIT", "10000/minute")
os.environ.setdefault("MAX_FAILED_ATTEMPTS", "1000")
os.environ.setdefault("AUTH_LOG_DIR", tempfile.mkdtemp(prefix="assetmis_auth_logs_"))

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_service
from auth.audit import AuthEventLog
from auth.models import User
from auth.passwords import hash_password
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.totp import current_code

PASSWORD = "password123"
ADMIN_SECRET = "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP"


def wrong_code(secret: str) -> str:
    """Return a well-formed code that is not valid for secret anywhere in the current window."""
    now = int(time.time())
    valid = {current_code(secret, for_time=now + 30 * step) for step in range(-3, 4)}
    return next(f"{n:06d}" for n in range(1_000_000) if f"{n:06d}" not in valid)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def memory_db_url(name: str | None = None) -> str:
    """Return a named shared-memory SQLite URL unique to this call unless name is given."""
    return f"sqlite:///file:test_auth_{name or uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_stores() -> tuple[UserStore, SessionStore]:
    """Create a user store and a session store over the same fresh in-memory DB."""
    url = memory_db_url()
    return UserStore(db_url=url), SessionStore(db_url=url)


def _patch_lifespan(user_store: UserStore, session_store: SessionStore, log_dir: str):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the production database, and points the
    audit log at a per-test directory.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_service(app, user_store, session_store)
        app.state.audit = AuthEventLog(log_dir=log_dir)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Harness
# ---------------------------------------------------------------------------


class AuthHarness:
    """A running TestClient plus direct access to the stores behind it."""

    def __init__(self, client: TestClient, users: UserStore, sessions: SessionStore, log_dir: str) -> None:
        self.client = client
        self.users = users
        self.sessions = sessions
        self.log_dir = log_dir
        self.admin_id: int | None = None

    @property
    def service(self):
        return self.client.app.state.auth_service

    def add_user(
        self,
        username: str,
        password: str = PASSWORD,
        *,
        is_admin: bool = False,
        role_id: int | None = None,
        mfa_secret: str | None = None,
        force_password_change: bool = False,
        plaintext: bool = False,
    ) -> int:
        """Insert a user directly into the store and return its id.

        mfa_secret given -> the user is fully enrolled.
        plaintext=True   -> the password is stored unhashed (pre-hashing rows).
        """
        return self.users.create_user(
            User(
                username=username,
                password=password if plaintext else hash_password(password),
                is_admin=is_admin,
                role_id=role_id,
                mfa_enabled=mfa_secret is not None,
                mfa_secret=mfa_secret,
                force_password_change=force_password_change,
            )
        )

    def login(self, username: str, password: str = PASSWORD):
        return self.client.post("/api/login", json={"username": username, "password": password})

    def verify(self, user_id: int, secret: str):
        return self.client.post("/api/mfa/verify", json={"userId": user_id, "token": current_code(secret)})

    def login_with_mfa(self, username: str, secret: str, password: str = PASSWORD):
        """Run both login steps for an enrolled user; returns the /mfa/verify response."""
        first = self.login(username, password)
        assert first.status_code == 200, first.text
        assert first.json()["requiresMfa"] is True
        return self.verify(first.json()["userId"], secret)

    def enroll(self) -> str:
        """Run /mfa/setup + /mfa/enable for the logged-in caller; returns the new secret."""
        secret = self.client.post("/api/mfa/setup").json()["secret"]
        resp = self.client.post("/api/mfa/enable", json={"token": current_code(secret)})
        assert resp.status_code == 200, resp.text
        return secret

    def logout(self):
        return self.client.post("/api/logout")


def _harness(seed_admin: bool, tmp_path) -> Generator[AuthHarness, None, None]:
    user_store, session_store = make_stores()
    harness_admin_id = None
    if seed_admin:
        harness_admin_id = user_store.create_user(
            User(
                username="admin",
                password=hash_password(PASSWORD),
                is_admin=True,
                mfa_enabled=True,
                mfa_secret=ADMIN_SECRET,
            )
        )
    log_dir = str(tmp_path / "auth_logs")
    app.router.lifespan_context = _patch_lifespan(user_store, session_store, log_dir)

    with TestClient(app, raise_server_exceptions=True) as client:
        harness = AuthHarness(client, user_store, session_store, log_dir)
        harness.admin_id = harness_admin_id
        yield harness

    session_store.close()
    user_store.close()


# ---------------------------------------------------------------------------
# Function-scoped fixtures -- the login flows mutate state, so no sharing
# ---------------------------------------------------------------------------


@pytest.fixture()
def fresh_app(tmp_path) -> Generator[AuthHarness, None, None]:
    """Harness over an empty database: the app starts in first-run setup state."""
    yield from _harness(seed_admin=False, tmp_path=tmp_path)


@pytest.fixture()
def auth_app(tmp_path) -> Generator[AuthHarness, None, None]:
    """Harness with one MFA-enrolled admin ("admin" / PASSWORD / ADMIN_SECRET)."""
    yield from _harness(seed_admin=True, tmp_path=tmp_path)


@pytest.fixture()
def admin_client(auth_app: AuthHarness) -> AuthHarness:
    """auth_app with the admin already logged in through both login steps."""
    resp = auth_app.login_with_mfa("admin", ADMIN_SECRET)
    assert resp.status_code == 200, resp.text
    return auth_app


@pytest.fixture()
def stores() -> Generator[tuple[UserStore, SessionStore], None, None]:
    """Bare stores for unit tests that do not need the HTTP layer."""
    user_store, session_store = make_stores()
    yield user_store, session_store
    session_store.close()
    user_store.close()
