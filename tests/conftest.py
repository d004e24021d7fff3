"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of taskledger.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

from datetime import UTC, datetime  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine, event  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from taskledger.database.models import Base  # noqa: E402
from taskledger.engine.rules import EconomyRules  # noqa: E402
from taskledger.services import account_service  # noqa: E402

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


def _sqlite_transactions(engine: Engine, begin: str) -> None:
    """Let SQLAlchemy own BEGIN so SAVEPOINTs behave on pysqlite."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql(begin)


# Fixed clock for every time-dependent test
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all taskledger tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in the API handlers).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _sqlite_transactions(engine, "BEGIN")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def concurrent_engine(tmp_path) -> Engine:
    """File-backed SQLite engine for multi-threaded tests.

    Every transaction starts with ``BEGIN IMMEDIATE`` so writers queue on
    the database lock instead of failing with "database is locked".
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30},
        pool_size=10,
        max_overflow=10,
        pool_timeout=30,
    )
    _sqlite_transactions(engine, "BEGIN IMMEDIATE")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def rules() -> EconomyRules:
    """Default economy with the withdrawal referral gate switched off."""
    return EconomyRules(min_referrals_for_withdrawal=0)


def open_accounts(engine: Engine, *account_ids: int, now: datetime = NOW) -> None:
    for account_id in account_ids:
        account_service.open_account(
            engine, account_id, username=f"user{account_id}", now=now,
        )


@pytest.fixture
def member(db_engine) -> int:
    """A freshly opened account (id 1001)."""
    open_accounts(db_engine, 1001)
    return 1001


@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_admin_token()


def make_admin_token(sub: str = "99999", username: str = "FixtureAdmin") -> str:
    """Create an admin JWT.  Usable as both a fixture and a factory function."""
    import jwt

    from taskledger.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, "is_admin": True},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


@pytest.fixture
def notifier():
    mock = AsyncMock()
    mock.send.return_value = True
    return mock


@pytest.fixture
def membership():
    mock = AsyncMock()
    mock.is_member.return_value = True
    return mock


@pytest.fixture
def app(db_engine, notifier, membership):
    """An application wired to the in-memory engine and mock collaborators."""
    from taskledger.api.main import create_app
    from taskledger.config import LedgerConfig
    from taskledger.database.seed import seed_default_settings
    from taskledger.engine.cache import ConfigCache
    from taskledger.services import settings_service

    seed_default_settings(db_engine)
    settings_service.upsert_setting(
        db_engine, key="withdrawals.min_referrals", value=0, category="withdrawals",
    )
    cache = ConfigCache(db_engine)
    cache.load()
    return create_app(
        db_engine,
        cache=cache,
        notifier=notifier,
        membership=membership,
        config=LedgerConfig(
            community_name="Test Rewards",
            api_port=8000,
            required_chats=("@rewards_channel",),
            admin_chat_id=555,
        ),
    )


@pytest.fixture
def client(app):
    """Create a FastAPI TestClient with raise_server_exceptions=False."""
    from fastapi.testclient import TestClient

    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def make_accounts():
    """Factory fixture: ``make_accounts(engine, 1, 2, 3)`` opens accounts."""
    return open_accounts


def add_catalog_task(
    engine: Engine,
    kind: str = "channel_join",
    target: str = "@news",
    points: int = 10,
    *,
    platform: str | None = None,
    name: str | None = None,
    active: bool = True,
) -> int:
    from taskledger.services import catalog_service

    if kind == "social" and platform is None:
        platform = "twitter"
    entry = catalog_service.add_task(
        engine,
        kind=kind,
        name=name or target,
        target=target,
        points=points,
        platform=platform,
        now=NOW,
    )
    if not active:
        catalog_service.toggle_task(engine, entry.id)
    return entry.id


@pytest.fixture
def make_task():
    """Factory fixture: ``make_task(engine, "group_join", "@grp", 15)`` returns the id."""
    return add_catalog_task
