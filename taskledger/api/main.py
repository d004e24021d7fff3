"""
taskledger.api.main — FastAPI application entry point
======================================================

Run with::

    uvicorn taskledger.api.main:app --reload --port 8000

:func:`create_app` builds an application around explicit dependencies so
tests (and embedding processes) can pass their own engine and
collaborators.  Anything not supplied is created from the environment.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError

load_dotenv()

from taskledger import __version__  # noqa: E402
from taskledger.api.routes.admin import router as admin_router  # noqa: E402
from taskledger.api.routes.public import router as public_router  # noqa: E402
from taskledger.config import LedgerConfig, load_config  # noqa: E402
from taskledger.database.engine import create_db_engine, init_db  # noqa: E402
from taskledger.engine.cache import ConfigCache  # noqa: E402
from taskledger.engine.errors import (  # noqa: E402
    AccountBanned,
    AccountNotFound,
    CatalogTaskExists,
    CatalogTaskNotFound,
    ClaimNotFound,
    LedgerError,
    MembershipRequired,
    QuotaExceeded,
    WithdrawalNotFound,
    WithdrawalsDisabled,
)
from taskledger.services.notifications import (  # noqa: E402
    AllowAllMembership,
    LogNotifier,
    MembershipChecker,
    Notifier,
    TelegramMembershipChecker,
    TelegramNotifier,
)

logger = logging.getLogger(__name__)

_STATUS_FOR_ERROR: dict[type[LedgerError], int] = {
    AccountNotFound: 404,
    WithdrawalNotFound: 404,
    ClaimNotFound: 404,
    CatalogTaskNotFound: 404,
    AccountBanned: 403,
    WithdrawalsDisabled: 403,
    MembershipRequired: 403,
    QuotaExceeded: 429,
    CatalogTaskExists: 409,
}


def status_for(exc: LedgerError) -> int:
    for cls in type(exc).__mro__:
        if cls in _STATUS_FOR_ERROR:
            return _STATUS_FOR_ERROR[cls]
    return 400


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


def _default_config() -> LedgerConfig:
    path = os.getenv("TASKLEDGER_CONFIG", "config.yaml")
    try:
        return load_config(path)
    except FileNotFoundError:
        logger.warning("No %s found; using built-in defaults (no membership gate)", path)
        return LedgerConfig(community_name="Task Rewards", api_port=8000)


def _default_collaborators(cfg: LedgerConfig) -> tuple[Notifier, MembershipChecker]:
    token = os.getenv("BOT_TOKEN", "").strip()
    if not token:
        return LogNotifier(), AllowAllMembership()
    return (
        TelegramNotifier(token, api_base=cfg.telegram_api_base),
        TelegramMembershipChecker(token, api_base=cfg.telegram_api_base),
    )


def create_app(
    engine: Engine | None = None,
    *,
    cache: ConfigCache | None = None,
    notifier: Notifier | None = None,
    membership: MembershipChecker | None = None,
    config: LedgerConfig | None = None,
) -> FastAPI:
    """Build the API application.

    A supplied *engine* is used as-is and never disposed by the app; a
    missing one is created from ``DATABASE_URL`` at startup.
    """
    cfg = config or _default_config()
    default_notifier, default_membership = _default_collaborators(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup/shutdown lifecycle — build the engine and warm the cache."""
        owns_engine = app.state.engine is None
        if owns_engine:
            app.state.engine = create_db_engine()
            init_db(app.state.engine)
        if app.state.cache is None:
            app.state.cache = ConfigCache(app.state.engine)
        app.state.cache.load()
        logger.info("taskledger API started — engine ready (%s)", app.state.engine.url.database)
        yield
        logger.info("taskledger API shutting down")
        if owns_engine:
            app.state.engine.dispose()

    app = FastAPI(
        title="taskledger API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.cache = cache or (ConfigCache(engine) if engine is not None else None)
    app.state.config = cfg
    app.state.notifier = notifier or default_notifier
    app.state.membership = membership or default_membership

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerError)
    async def _ledger_error(request: Request, exc: LedgerError):
        return JSONResponse(
            status_code=status_for(exc),
            content={"error": exc.code, "detail": exc.message},
        )

    @app.exception_handler(SQLAlchemyError)
    async def _storage_error(request: Request, exc: SQLAlchemyError):
        logger.exception("Storage failure on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "storage_error", "detail": "Please try again."},
        )

    app.include_router(public_router, prefix="/api")
    app.include_router(admin_router, prefix="/api")

    @app.get("/api/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
