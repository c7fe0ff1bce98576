"""
tests/conftest.py -- Shared test fixtures for Lectoria.

This module provides:
  - make_stores(): isolated in-memory DBs for users + documents
  - _patch_lifespan(): wires test collaborators into app.state, bypassing real startup
  - api: module-scoped ApiHarness (TestClient + FakeClock + admin token)
  - fresh_api: function-scoped ApiHarness for tests that trip the login lockout
  - helpers to create users and upload documents over HTTP

Design: named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

Environment must be set before any api/auth/core import: get_settings() is
cached on first use and route modules read throttle strings at import time.
"""

from __future__ import annotations

import asyncio
import itertools
import os
import tempfile
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "10")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("SHARE_RATE_LIMIT", "1000/minute")
os.environ.setdefault("UPLOAD_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="lectoria-uploads-"))

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.audit import AccessAuditLog
from auth.models import Role, User
from auth.passwords import hash_password
from auth.ratelimit import InMemoryRateLimitStore, LoginRateLimiter
from auth.store import UserStore
from auth.tokens import TokenIssuer, TokenValidator
from core.clock import FakeClock
from core.config import get_settings
from library.files import FileStorage
from library.shares import ShareLinkManager
from library.store import DocumentStore

ADMIN_PASSWORD = "Admin-pass-123"
USER_PASSWORD = "User-pass-123"
PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\ntrailer\n<<>>\n%%EOF\n"

_db_counter = itertools.count()

_STATE_KEYS = (
    "clock",
    "audit",
    "user_store",
    "document_store",
    "file_storage",
    "token_issuer",
    "token_validator",
    "login_limiter",
    "share_manager",
    "maintenance_task",
)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_stores(db_suffix: str) -> tuple[UserStore, DocumentStore]:
    """Create isolated named shared-memory SQLite stores.

    Both stores point at the same in-memory database, like production where
    they share DATABASE_URL. The counter keeps repeated suffixes apart.
    """
    url = f"sqlite:///file:lectoria_{db_suffix}_{next(_db_counter)}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=url), DocumentStore(db_url=url)


@dataclass
class ApiHarness:
    client: TestClient
    clock: FakeClock
    user_store: UserStore
    document_store: DocumentStore
    audit: AccessAuditLog
    admin_id: int
    admin_token: str

    def auth(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    @property
    def admin_headers(self) -> dict[str, str]:
        return self.auth(self.admin_token)


def _patch_lifespan(user_store: UserStore, document_store: DocumentStore, clock: FakeClock, audit: AccessAuditLog):
    """Return an async context manager that replaces the real lifespan.

    Every collaborator shares the FakeClock so tests move time with
    clock.advance() instead of sleeping. The maintenance task is a
    long-sleeping coroutine (a real Task is required for .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        app.state.clock = clock
        app.state.audit = audit
        app.state.user_store = user_store
        app.state.document_store = document_store
        app.state.file_storage = FileStorage(settings.upload_dir, settings.max_upload_bytes)
        app.state.token_issuer = TokenIssuer.from_settings(settings, clock)
        app.state.token_validator = TokenValidator.from_settings(settings, clock)
        app.state.login_limiter = LoginRateLimiter(
            InMemoryRateLimitStore(),
            max_attempts=settings.login_max_attempts,
            window=timedelta(seconds=settings.login_lockout_seconds),
            clock=clock,
        )
        app.state.share_manager = ShareLinkManager(document_store, audit, clock)
        app.state.maintenance_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.maintenance_task.cancel()

    return test_lifespan


def _start(db_suffix: str) -> Generator[ApiHarness, None, None]:
    user_store, document_store = make_stores(db_suffix)
    clock = FakeClock()
    audit = AccessAuditLog(clock=clock)

    admin = User(
        username="testadmin",
        email="admin@example.com",
        role=Role.ADMIN,
        hashed_password=hash_password(ADMIN_PASSWORD),
    )
    admin_id = user_store.create_user(admin, now=clock.now())
    admin_token = TokenIssuer.from_settings(get_settings(), clock).issue_for(admin_id, "testadmin", Role.ADMIN)

    # Harnesses nest (fresh_api inside a module-scoped api), so whatever the
    # enclosing harness wired into the shared app is put back on exit.
    previous_lifespan = app.router.lifespan_context
    previous_state = {key: getattr(app.state, key) for key in _STATE_KEYS if hasattr(app.state, key)}
    app.router.lifespan_context = _patch_lifespan(user_store, document_store, clock, audit)
    try:
        with TestClient(app, raise_server_exceptions=True) as client:
            yield ApiHarness(client, clock, user_store, document_store, audit, admin_id, admin_token)
    finally:
        app.router.lifespan_context = previous_lifespan
        for key in _STATE_KEYS:
            if key in previous_state:
                setattr(app.state, key, previous_state[key])
            elif hasattr(app.state, key):
                delattr(app.state, key)
        user_store.close()
        document_store.close()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api(request) -> Generator[ApiHarness, None, None]:
    """Module-scoped harness: one TestClient and database per test module."""
    yield from _start(request.module.__name__.rsplit(".", 1)[-1])


@pytest.fixture
def fresh_api() -> Generator[ApiHarness, None, None]:
    """Function-scoped harness with its own lockout state and clock.

    Use for tests that lock the TestClient's address out.
    """
    yield from _start("fresh")


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def create_user(api: ApiHarness, username: str, role: Role = Role.USER, password: str = USER_PASSWORD) -> tuple[int, str]:
    """Insert a user directly and return (user_id, bearer token)."""
    user = User(
        username=username,
        email=f"{username}@example.com",
        role=role,
        hashed_password=hash_password(password),
    )
    user_id = api.user_store.create_user(user, now=api.clock.now())
    token = TokenIssuer.from_settings(get_settings(), api.clock).issue_for(user_id, username, role)
    return user_id, token


def upload_document(api: ApiHarness, token: str, title: str = "Dune", filename: str = "dune.pdf") -> dict:
    resp = api.client.post(
        "/api/v1/documents",
        headers=api.auth(token),
        data={"title": title, "author": "Frank Herbert", "doc_type": "book"},
        files={"file": (filename, PDF_BYTES, "application/pdf")},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()
