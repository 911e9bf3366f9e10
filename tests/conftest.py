"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of farmhub.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from farmhub.config import FarmhubConfig  # noqa: E402
from farmhub.database.models import Base, DiscussionPost, User  # noqa: E402
from farmhub.database.seed import seed_defaults  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all FarmHub tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in the rate limiter).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    seed_defaults(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def config() -> FarmhubConfig:
    return FarmhubConfig()


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------
def make_user(session: Session, user_id: int, username: str | None = None, **kw) -> User:
    user = User(id=user_id, username=username or f"user{user_id}", **kw)
    session.add(user)
    session.flush()
    return user


def make_post(
    session: Session,
    author_id: int,
    *,
    title: str = "How do you store maize safely?",
    content: str = "Looking for tips on storing maize through the rainy season.",
    approved: bool = True,
    **kw,
) -> DiscussionPost:
    """Insert a post directly, bypassing scoring (for tests that need content)."""
    post = DiscussionPost(
        title=title, content=content, author_id=author_id, is_approved=approved, **kw
    )
    session.add(post)
    session.flush()
    return post


@pytest.fixture
def users(db_session):
    """Three members: alice (1), bob (2), carol (3)."""
    return (
        make_user(db_session, 1, "alice"),
        make_user(db_session, 2, "bob"),
        make_user(db_session, 3, "carol"),
    )


# ---------------------------------------------------------------------------
# API helpers
# ---------------------------------------------------------------------------
def make_token(
    sub: str = "1001",
    username: str = "member",
    *,
    is_admin: bool = False,
    is_moderator: bool = False,
) -> str:
    """Create a signed JWT.  Usable as a factory from any test module."""
    import jwt

    from farmhub.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, "is_admin": is_admin, "is_moderator": is_moderator},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_token("99999", "FixtureAdmin", is_admin=True)


@pytest.fixture
def client(db_engine):
    """FastAPI TestClient wired to the in-memory database.

    The lifespan doesn't run without ``with TestClient(...)``, so the
    staff rate limiter is configured here directly.
    """
    from fastapi.testclient import TestClient

    from farmhub.api import deps, rate_limit
    from farmhub.api.main import app

    def _session():
        with Session(db_engine) as session:
            yield session

    app.dependency_overrides[deps.get_engine] = lambda: db_engine
    app.dependency_overrides[deps.get_session] = _session
    app.dependency_overrides[deps.get_config] = lambda: FarmhubConfig()
    rate_limit.configure_rate_limiter(engine=db_engine)
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()
