"""
taskledger.engine.cache — In-Memory Settings Cache
===================================================

Settings are read on nearly every ledger operation, so they are cached in
memory and turned into an immutable :class:`EconomyRules` snapshot.
Admin writes through :mod:`taskledger.services.settings_service` call
:meth:`ConfigCache.load` afterwards so the next request sees the change.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from taskledger.database.models import Setting
from taskledger.engine.rules import EconomyRules

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


class ConfigCache:
    """Thread-safe in-memory cache of the ``settings`` table.

    Usage:
        cache = ConfigCache(engine)
        cache.load()

        rules = cache.rules()
        limit = cache.get_int("quota.daily_task_limit", default=5)
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._lock = threading.Lock()
        # key → parsed JSON value
        self._settings: dict[str, Any] = {}
        self._rules: EconomyRules | None = None

    # -------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------
    def load(self) -> None:
        """(Re)load every setting from the DB.  Call on startup and after writes."""
        with Session(self._engine) as session:
            rows = session.scalars(select(Setting)).all()
            parsed: dict[str, Any] = {}
            for row in rows:
                try:
                    parsed[row.key] = json.loads(row.value_json)
                except (json.JSONDecodeError, TypeError):
                    parsed[row.key] = row.value_json

        with self._lock:
            self._settings = parsed
            self._rules = None
        logger.info("ConfigCache loaded: %d settings", len(parsed))

    # -------------------------------------------------------------------
    # Typed setting accessors (thread-safe)
    # -------------------------------------------------------------------
    def get_setting(self, key: str, default: Any = None) -> Any:
        """Return the parsed JSON value for *key*, or *default*."""
        with self._lock:
            return self._settings.get(key, default)

    def get_int(self, key: str, default: int = 0) -> int:
        val = self.get_setting(key)
        if val is None:
            return default
        try:
            return int(val)
        except (TypeError, ValueError):
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        val = self.get_setting(key)
        if val is None:
            return default
        try:
            return float(val)
        except (TypeError, ValueError):
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        val = self.get_setting(key)
        if val is None:
            return default
        return bool(val)

    # -------------------------------------------------------------------
    # Rules snapshot
    # -------------------------------------------------------------------
    def rules(self) -> EconomyRules:
        """Return the current :class:`EconomyRules`, built once per load."""
        with self._lock:
            if self._rules is None:
                settings = self._settings
                self._rules = EconomyRules.from_settings(
                    lambda key, default: settings.get(key, default)
                )
            return self._rules
