"""
taskledger.services.settings_service — Settings CRUD
=====================================================

Provides typed read/write access to the ``settings`` table.
Writers pass the process's :class:`~taskledger.engine.cache.ConfigCache`
so it reloads after commit and the next request sees the new rules.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from taskledger.database.models import Setting
from taskledger.services.admin_service import log_admin_action

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from taskledger.engine.cache import ConfigCache

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_setting_value(session: Session, key: str, default=None):
    """Read a single setting's parsed value from an existing session.

    Returns the JSON-decoded value, or *default* when the key does not
    exist.
    """
    row = session.get(Setting, key)
    if row is None:
        return default
    try:
        return json.loads(row.value_json)
    except (json.JSONDecodeError, TypeError):
        return row.value_json


def get_all_settings(engine: Engine) -> list[dict]:
    """Every setting, ordered by category then key, as plain dicts."""
    with Session(engine) as session:
        rows = session.scalars(
            select(Setting).order_by(Setting.category, Setting.key)
        ).all()
        return [
            {
                "key": r.key,
                "value": get_setting_value(session, r.key),
                "category": r.category,
                "description": r.description,
            }
            for r in rows
        ]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def upsert_setting(
    engine: Engine,
    *,
    key: str,
    value: Any,
    category: str = "general",
    description: str | None = None,
    cache: ConfigCache | None = None,
) -> None:
    """Insert or update a single setting."""
    value_json = json.dumps(value)
    with Session(engine) as session:
        existing = session.get(Setting, key)
        if existing:
            existing.value_json = value_json
            if category:
                existing.category = category
            if description is not None:
                existing.description = description
        else:
            session.add(Setting(
                key=key,
                value_json=value_json,
                category=category,
                description=description,
            ))
        session.commit()

    logger.info("Setting %s updated", key)
    if cache is not None:
        cache.load()


def bulk_upsert(
    engine: Engine,
    settings: list[dict],
    *,
    actor_id: int | None = None,
    cache: ConfigCache | None = None,
) -> int:
    """Upsert many settings at once.

    Each dict should have at least ``key`` and ``value``.
    Optional: ``category``, ``description``.

    When *actor_id* is provided, each change is individually recorded in the
    ``admin_log`` table with before/after snapshots.

    Returns the number of rows touched.
    """
    count = 0
    with Session(engine) as session:
        for item in settings:
            key = item["key"]
            value_json = json.dumps(item["value"])
            existing = session.get(Setting, key)

            before_snapshot: dict | None = None
            if existing and actor_id is not None:
                before_snapshot = {
                    "key": existing.key,
                    "value": json.loads(existing.value_json) if existing.value_json else None,
                    "category": existing.category,
                    "description": existing.description,
                }

            if existing:
                existing.value_json = value_json
                if "category" in item:
                    existing.category = item["category"]
                if "description" in item:
                    existing.description = item["description"]
            else:
                existing = Setting(
                    key=key,
                    value_json=value_json,
                    category=item.get("category", key.split(".", 1)[0]),
                    description=item.get("description"),
                )
                session.add(existing)

            if actor_id is not None:
                after_snapshot = {
                    "key": key,
                    "value": item["value"],
                    "category": existing.category,
                    "description": existing.description,
                }
                # Only log if something actually changed
                if before_snapshot != after_snapshot:
                    log_admin_action(
                        session,
                        actor_id=actor_id,
                        action_type="UPDATE" if before_snapshot else "CREATE",
                        target_table="settings",
                        target_id=key,
                        before=before_snapshot,
                        after=after_snapshot,
                    )

            count += 1
        session.commit()

    logger.info("Bulk settings update: %d keys", count)
    if cache is not None:
        cache.load()
    return count
