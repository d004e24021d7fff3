"""
taskledger.database.engine — Database Connection & Async Helper
================================================================

The ledger services are plain synchronous SQLAlchemy code: every operation
opens one :class:`~sqlalchemy.orm.Session`, does its work inside a single
transaction, and commits or rolls back as a unit.

The API runs on an ``asyncio`` event loop, so handlers never call the
services directly.  They go through :func:`run_db`, which ships the
synchronous call to a worker thread via ``asyncio.to_thread()`` and keeps
the loop free while the database works.

The engine itself is an explicit dependency: the caller creates it once at
process start, passes it into every service call, and disposes it at
shutdown.  Nothing in this package holds a module-level engine.

Usage::

    from taskledger.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    # Inside an async handler:
    result = await run_db(ledger_service.credit, engine, account_id, ...)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from taskledger.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from *url* or ``DATABASE_URL``.

    The connection pool is sized for many short ledger transactions:
    * ``pool_size=10`` — ten persistent connections.
    * ``max_overflow=20`` — up to 20 extra connections under load.
    * ``pool_timeout=10`` — fail after 10 s if no connection is available.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,   # Reconnect stale connections automatically
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`taskledger.database.models`.

    Safe to call on every startup.  After creating tables, seeds the
    default economy settings (only keys that don't already exist).

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained for dev/test environments.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")

    from taskledger.database.seed import seed_default_settings

    seed_default_settings(engine)


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine, **kwargs):
    """Yield a :class:`Session` that commits on success and rolls back on
    exception.

    Usage::

        with get_session(engine) as session:
            session.add(Account(id=123))
            # commit happens automatically on block exit
    """
    session = Session(engine, **kwargs)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Every service call made from an async handler should go through this
    wrapper::

        result = await run_db(my_sync_service, engine, account_id)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
