"""
taskledger.engine.rules — Economy Rules & Pure Reward Maths
============================================================

No DB I/O in here.  :class:`EconomyRules` is an immutable snapshot of the
tuning values stored in the ``settings`` table; services receive one per
call so a request sees a consistent set of limits from start to finish.

The helpers below are the only place quota limits, claim delays,
withdrawal fees and random claim draws are computed.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass, fields
from datetime import timedelta
from typing import Any

from taskledger.constants import QuotaPool

__all__ = [
    "EconomyRules",
    "SETTING_KEYS",
    "draw_claim_points",
    "withdrawal_fee",
]


@dataclass(frozen=True, slots=True)
class EconomyRules:
    """Tuning values for the points economy.

    Defaults mirror the seeded ``settings`` rows.
    """

    # Points per completion
    channel_join_points: int = 10
    group_join_points: int = 15
    daily_login_points: int = 5
    referral_points: int = 25
    social_task_points: int = 10

    # Task pool
    daily_task_limit: int = 5

    # Claim pool — base limit plus a bonus per block of referrals
    daily_claim_limit: int = 5
    referrals_per_bonus_block: int = 10
    bonus_claims_per_block: int = 2
    min_claim_points: int = 50
    max_claim_points: int = 500

    # Delayed social claims
    social_claim_delay_minutes: int = 15
    website_claim_delay_minutes: int = 20

    # Withdrawals
    withdrawals_enabled: bool = True
    min_withdrawal: int = 1000
    max_withdrawal: int = 50000
    withdrawal_fee_percent: float = 5.0
    min_referrals_for_withdrawal: int = 10
    payout_edit_fee: int = 3000

    # -------------------------------------------------------------------
    # Construction from settings
    # -------------------------------------------------------------------
    @classmethod
    def from_settings(cls, get: Callable[[str, Any], Any]) -> EconomyRules:
        """Build rules from a ``get(key, default)`` settings accessor.

        Unknown or malformed values fall back to the dataclass default.
        """
        defaults = cls()
        values: dict[str, Any] = {}
        for f in fields(cls):
            default = getattr(defaults, f.name)
            raw = get(SETTING_KEYS[f.name], default)
            values[f.name] = _coerce(raw, default)
        return cls(**values)

    # -------------------------------------------------------------------
    # Derived values
    # -------------------------------------------------------------------
    def limit_for(self, pool: str, referral_count: int = 0) -> int:
        """Effective daily limit for *pool*.

        The claim pool grows by ``bonus_claims_per_block`` for every full
        block of ``referrals_per_bonus_block`` referrals.  The referral count
        is read at evaluation time, so capacity can grow intraday.
        """
        if pool == QuotaPool.TASK:
            return self.daily_task_limit
        if pool == QuotaPool.CLAIM:
            bonus = 0
            if self.referrals_per_bonus_block > 0:
                blocks = max(referral_count, 0) // self.referrals_per_bonus_block
                bonus = blocks * self.bonus_claims_per_block
            return self.daily_claim_limit + bonus
        raise ValueError(f"Unknown quota pool: {pool!r}")

    def delay_for(self, platform: str | None) -> timedelta:
        """Maturation delay for a social claim on *platform*."""
        if platform == "website":
            return timedelta(minutes=self.website_claim_delay_minutes)
        return timedelta(minutes=self.social_claim_delay_minutes)


# Settings-table key for every rules field
SETTING_KEYS: dict[str, str] = {
    "channel_join_points": "points.channel_join",
    "group_join_points": "points.group_join",
    "daily_login_points": "points.daily_login",
    "referral_points": "points.referral",
    "social_task_points": "points.social_task",
    "daily_task_limit": "quota.daily_task_limit",
    "daily_claim_limit": "quota.daily_claim_limit",
    "referrals_per_bonus_block": "quota.referrals_per_bonus_block",
    "bonus_claims_per_block": "quota.bonus_claims_per_block",
    "min_claim_points": "claims.min_points",
    "max_claim_points": "claims.max_points",
    "social_claim_delay_minutes": "claims.social_delay_minutes",
    "website_claim_delay_minutes": "claims.website_delay_minutes",
    "withdrawals_enabled": "withdrawals.enabled",
    "min_withdrawal": "withdrawals.min_amount",
    "max_withdrawal": "withdrawals.max_amount",
    "withdrawal_fee_percent": "withdrawals.fee_percent",
    "min_referrals_for_withdrawal": "withdrawals.min_referrals",
    "payout_edit_fee": "withdrawals.payout_edit_fee",
}


def _coerce(raw: Any, default: Any) -> Any:
    if raw is None:
        return default
    try:
        if isinstance(default, bool):
            if isinstance(raw, str):
                return raw.strip().lower() not in ("false", "0", "no", "")
            return bool(raw)
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except (TypeError, ValueError):
        return default
    return raw


# ---------------------------------------------------------------------------
# Withdrawal fee
# ---------------------------------------------------------------------------
def withdrawal_fee(amount: int, fee_percent: float) -> tuple[int, int]:
    """Return ``(fee_points, receivable_points)`` for a withdrawal."""
    fee = int(amount * max(fee_percent, 0.0)) // 100
    return fee, max(0, amount - fee)


# ---------------------------------------------------------------------------
# Random daily claim
# ---------------------------------------------------------------------------
NEW_ACCOUNT_WINDOW = timedelta(hours=24)


def draw_claim_points(
    rules: EconomyRules,
    account_age: timedelta,
    rng: random.Random | None = None,
) -> int:
    """Draw the points for one daily claim.

    Accounts younger than 24 h draw from the upper 40 % of the range with
    70 % probability.  Older accounts are capped at the lower half of the
    range.
    """
    rng = rng or random.Random()
    low = rules.min_claim_points
    high = max(rules.max_claim_points, low)
    span = high - low

    if account_age < NEW_ACCOUNT_WINDOW:
        if span > 0 and rng.random() < 0.7:
            return rng.randint(low + int(span * 0.6), high)
        return rng.randint(low, high)

    cap = low + int(span * 0.5)
    return rng.randint(low, max(low, cap))
