"""
tests/conftest.py -- Shared test fixtures for Landing Gate.

This module provides:
  - unit fixtures: in-memory IdentityStore, PasswordHasher, a FakeClock-driven
    TokenService, the path table, guard, and both services
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - api_client: TestClient plus an admin token for integration tests

Design: the integration store uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Unit tests run on one thread, so plain :memory: is enough there.

DEBUG, RATE_LIMIT_ENABLED and PASSWORD_HASH_ROUNDS must be set before any
api/ or core/ import: get_settings() is cached on first call and the limiter
reads it at import time.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before importing api/ or core/.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "1")

import pytest
from fastapi.testclient import TestClient

from api.main import app, install_services
from auth.guard import AuthGuard
from auth.login import LoginService
from auth.models import RegistrationForm
from auth.passwords import PasswordHasher
from auth.permissions import ProtectedPathTable
from auth.registration import RegistrationService
from auth.store import IdentityStore
from auth.tokens import TokenService
from core.config import get_settings

TEST_SECRET = "test-secret-key-that-is-long-enough-0123"
TEST_SALT = "test-password-salt-0123"


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock pinned to an epoch second. Advance it explicitly."""

    def __init__(self, now: int = 1_700_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> Generator[IdentityStore, None, None]:
    s = IdentityStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(salt=TEST_SALT, rounds=1)


@pytest.fixture
def tokens(clock: FakeClock) -> TokenService:
    return TokenService(secret=TEST_SECRET, clock=clock)


@pytest.fixture
def path_table() -> ProtectedPathTable:
    return ProtectedPathTable({"/api/v1/admin": ["admin"]})


@pytest.fixture
def guard(store: IdentityStore, tokens: TokenService, path_table: ProtectedPathTable) -> AuthGuard:
    return AuthGuard(store, tokens, path_table)


@pytest.fixture
def registration(store: IdentityStore, tokens: TokenService, hasher: PasswordHasher) -> RegistrationService:
    return RegistrationService(store, tokens, hasher, default_role="user")


@pytest.fixture
def login_service(store: IdentityStore, tokens: TokenService, hasher: PasswordHasher) -> LoginService:
    return LoginService(store, tokens, hasher)


def _registration_form(**overrides) -> RegistrationForm:
    """A registration form that passes every rule unless overridden."""
    fields = {
        "name": "John",
        "email": "j@x.com",
        "phone_country_code": 1,
        "phone_number": "1111111111",
        "password": "qwerty123",
    }
    fields.update(overrides)
    return RegistrationForm(**fields)


@pytest.fixture
def make_form():
    """Factory fixture: make_form(phone_number="2222") -> RegistrationForm."""
    return _registration_form


@pytest.fixture
def token_secret() -> str:
    return TEST_SECRET


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: IdentityStore):
    """Return an async context manager that replaces the real lifespan.

    Uses the real wiring (install_services) so routes see the same service
    graph as production, just on an isolated store.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        install_services(app, get_settings(), store)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, IdentityStore], None, None]:
    """Yield (client, admin_token, store) for API integration tests.

    Each test module gets its own shared-memory DB, named after the module.
    The admin identity is registered through the real service and then given
    the "admin" role directly in the store.
    """
    db_name = request.module.__name__.replace(".", "_")
    store = IdentityStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, raise_server_exceptions=True) as client:
        issued = app.state.registration.register(
            _registration_form(name="Admin", email="admin@example.com", phone_number="9990000001", password="adminpass1")
        )
        store.assign_roles(issued.identity_id, ["admin"])
        yield client, issued.token, store

    store.close()
