"""
tests/conftest.py -- Shared test fixtures for the identity service tests.

This module provides:
  - now / ctx: a fixed UTC instant and a session-less RequestContext at it
  - store / users: an isolated InMemoryUserStore and the UserUseCases over it
  - admin / member: two registered users (the first registration is ADMIN)
  - admin_ctx / member_ctx: contexts carrying a live Session for each
  - make_user(): build a stored-ready User without paying for a bcrypt hash
  - api_client: TestClient over the real app with a patched lifespan

bcrypt cost 10 is used throughout: the lowest cost the service accepts, so
tests stay fast without bypassing the floor.

The DEBUG env var must be set before any import that reads Settings so
get_settings() auto-generates SECRET_KEY in dev mode rather than raising
ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any core/identity import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import bcrypt
import pytest
from fastapi.testclient import TestClient

from api.main import app
from identity.context import RequestContext
from identity.memory import InMemoryUserStore
from identity.models import NewUser, Session, User, default_validation_provider
from identity.tokens import TokenIssuer
from identity.usecases import UserUseCases

TEST_ROUNDS = 10
SESSION_DURATION = timedelta(hours=1)
TEST_SECRET = "test-secret-key-that-is-at-least-32-chars"

# One real hash shared by make_user(); stores never re-verify it.
SHARED_HASH = bcrypt.hashpw(b"password123", bcrypt.gensalt(rounds=TEST_ROUNDS)).decode("utf-8")


def make_user(email: str, name: str = "Test User", roles: list[str] | None = None, created: datetime | None = None) -> User:
    """Return a structurally valid User whose password is "password123"."""
    created = created or datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)
    return User(
        id=str(uuid.uuid4()),
        name=name,
        email=email,
        password_hash=SHARED_HASH,
        roles=list(roles) if roles is not None else ["USER"],
        date_created=created,
        date_updated=created,
    )


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def ctx(now: datetime) -> RequestContext:
    return RequestContext(now=now)


@pytest.fixture
def validator():
    return default_validation_provider()


@pytest.fixture
def store() -> InMemoryUserStore:
    return InMemoryUserStore()


@pytest.fixture
def users(store: InMemoryUserStore) -> UserUseCases:
    return UserUseCases(store, SESSION_DURATION, bcrypt_rounds=TEST_ROUNDS)


@pytest.fixture
def admin(users: UserUseCases, ctx: RequestContext) -> User:
    """First registration: granted ADMIN and USER."""
    return users.register(ctx, NewUser(name="Ada Admin", email="admin@example.com", password="adminpass"))


@pytest.fixture
def member(users: UserUseCases, ctx: RequestContext, admin: User) -> User:
    """Second registration: USER only."""
    return users.register(ctx, NewUser(name="Max Member", email="member@example.com", password="memberpass"))


@pytest.fixture
def admin_ctx(ctx: RequestContext, admin: User, now: datetime) -> RequestContext:
    return ctx.with_session(Session.new(admin, now + SESSION_DURATION))


@pytest.fixture
def member_ctx(ctx: RequestContext, member: User, now: datetime) -> RequestContext:
    return ctx.with_session(Session.new(member, now + SESSION_DURATION))


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: InMemoryUserStore, service: UserUseCases, issuer: TokenIssuer):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-built test objects into app.state so TestClient routes use an
    isolated store and a known signing key instead of the configured ones.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.users = service
        app.state.token_issuer = issuer
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, User], None, None]:
    """Yield (client, admin_token, admin) for API integration tests.

    The admin registers before the client starts (so it is the first user and
    holds ADMIN) and its bearer token is signed with the test issuer. The
    admin's password is "adminpass123".
    """
    user_store = InMemoryUserStore()
    service = UserUseCases(user_store, SESSION_DURATION, bcrypt_rounds=TEST_ROUNDS)
    issuer = TokenIssuer(TEST_SECRET, "identity-test")

    seed_ctx = RequestContext.background()
    admin = service.register(
        seed_ctx, NewUser(name="API Admin", email="apiadmin@example.com", password="adminpass123")
    )
    token = issuer.issue(Session.new(admin, seed_ctx.now + SESSION_DURATION), seed_ctx.now)

    app.router.lifespan_context = _patch_lifespan(user_store, service, issuer)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, admin
