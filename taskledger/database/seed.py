"""
taskledger.database.seed — Default Settings Seeder
===================================================

Baseline economy settings seeded on first startup so the ledger is usable
before an admin touches anything.

Idempotent — only inserts keys that don't already exist.  Admin edits are
never overwritten.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from taskledger.database.models import Setting
from taskledger.engine.rules import SETTING_KEYS, EconomyRules

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
_DESCRIPTIONS: dict[str, str] = {
    "channel_join_points": "Points for joining a listed channel",
    "group_join_points": "Points for joining a listed group",
    "daily_login_points": "Points for the daily check-in",
    "referral_points": "Points credited to the referrer per referred member",
    "social_task_points": "Default reward for a new social task",
    "daily_task_limit": "Max task-pool completions (joins, check-in, referral) per day",
    "daily_claim_limit": "Base number of random daily claims per day",
    "referrals_per_bonus_block": "Referrals needed for each block of bonus claims (0 disables)",
    "bonus_claims_per_block": "Extra daily claims per block of referrals",
    "min_claim_points": "Lowest random daily claim",
    "max_claim_points": "Highest random daily claim",
    "social_claim_delay_minutes": "Minutes before a social-task claim matures",
    "website_claim_delay_minutes": "Minutes before a website-visit claim matures",
    "withdrawals_enabled": "Accept new withdrawal requests",
    "min_withdrawal": "Smallest withdrawal in points",
    "max_withdrawal": "Largest withdrawal in points",
    "withdrawal_fee_percent": "Fee withheld from each withdrawal, in percent",
    "min_referrals_for_withdrawal": "Referrals required before the first withdrawal (0 disables)",
    "payout_edit_fee": "Points charged to change saved payout details",
}


def _build_defaults() -> dict[str, tuple[object, str, str]]:
    defaults = EconomyRules()
    catalogue: dict[str, tuple[object, str, str]] = {}
    for field_name, key in SETTING_KEYS.items():
        category = key.split(".", 1)[0]
        catalogue[key] = (
            getattr(defaults, field_name),
            category,
            _DESCRIPTIONS.get(field_name, ""),
        )
    return catalogue


DEFAULT_SETTINGS: dict[str, tuple[object, str, str]] = _build_defaults()
"""Each entry maps ``key`` → ``(default_value, category, description)``."""


# ---------------------------------------------------------------------------
# Seeder
# ---------------------------------------------------------------------------
def seed_default_settings(engine: Engine) -> None:
    """Insert default settings that don't yet exist.

    Runs on every startup but only writes rows for keys that are missing,
    so it is safe to call repeatedly.
    """
    session = Session(engine)
    inserted = 0
    try:
        for key, (value, category, desc) in DEFAULT_SETTINGS.items():
            existing = session.get(Setting, key)
            if existing is None:
                session.add(Setting(
                    key=key,
                    value_json=json.dumps(value),
                    category=category,
                    description=desc,
                ))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default settings.", inserted)
