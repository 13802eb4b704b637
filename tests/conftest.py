"""
tests/conftest.py -- Shared fixtures for the auth service tests.

This module provides:
  - FakeClock / clock: a controllable UTC clock shared by store and codec
  - settings: test Settings (bcrypt cost 4, OTP preset 000000)
  - store / auth: a file-backed CredentialStore and the wired components
  - make_user: factory for verified users with a known password
  - api_client: TestClient over the real app with a patched lifespan

Design: stores are file-backed SQLite databases under tmp_path rather than
shared-cache :memory: URIs. Shared-cache mode uses table locks that ignore the
busy timeout, which would make the concurrency tests fail spuriously.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("OTP_DEV_PRESET", "000000")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.components import AuthComponents, build_components
from auth.models import Role, User, parse_identity
from auth.store import CredentialStore
from core.config import Settings

# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock frozen at `now` until advance() is called."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------


def _test_settings(**overrides) -> Settings:
    values = dict(
        debug=True,
        secret_key="test-secret-key-with-plenty-of-entropy-0123456789",
        bcrypt_rounds=4,
        otp_dev_preset="000000",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return _test_settings()


@pytest.fixture
def store(tmp_path, clock: FakeClock) -> Generator[CredentialStore, None, None]:
    s = CredentialStore(f"sqlite:///{tmp_path / 'auth.db'}", clock=clock)
    yield s
    s.close()


@pytest.fixture
def auth(settings: Settings, store: CredentialStore, clock: FakeClock) -> AuthComponents:
    return build_components(settings, store=store, clock=clock)


def _create_user(
    auth: AuthComponents,
    identity: str,
    password: str = "oldPass123",
    role: Role = Role.CUSTOMER,
    verified: bool = True,
) -> User:
    ident = parse_identity(identity)
    user = User(
        role=role,
        hashed_password=auth.hasher.hash(password),
        email=ident.value if ident.kind == "email" else None,
        phone=ident.value if ident.kind == "phone" else None,
        name="Test User",
        otp_verified=verified,
    )
    user.id = auth.store.create_user(user)
    return user


@pytest.fixture
def make_user(auth: AuthComponents) -> Callable[..., User]:
    """Factory: make_user("a@example.com", password=..., role=..., verified=...)."""

    def factory(identity: str, **kwargs) -> User:
        return _create_user(auth, identity, **kwargs)

    return factory


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(components: AuthComponents):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine (a real asyncio.Task is
    required; a MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth = components
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, AuthComponents, str], None, None]:
    """Yield (client, components, admin_token) for API integration tests.

    One TestClient per test module for speed; tests use distinct identities
    so they do not interfere. Rate limiting is disabled here and re-enabled
    only by the test that exercises it.
    """
    db_path = tmp_path_factory.mktemp("api") / "auth.db"
    components = build_components(_test_settings(), store=CredentialStore(f"sqlite:///{db_path}"))

    admin = _create_user(components, "admin@example.com", password="adminPass123", role=Role.ADMIN)
    admin_token = components.sessions.create_session(admin.id, Role.ADMIN).access_token

    app.router.lifespan_context = _patch_lifespan(components)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, components, admin_token

    limiter.enabled = True
    components.close()


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
