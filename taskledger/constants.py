"""
taskledger.constants — Task Kinds & Quota Pools
================================================

Single source of truth for the task-kind vocabulary and which daily quota
pool each kind draws from.  Import from here instead of scattering string
literals across services.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime


class TaskKind(enum.StrEnum):
    """Kinds of completion that can credit points."""
    CHANNEL_JOIN = "channel_join"
    GROUP_JOIN = "group_join"
    DAILY_LOGIN = "daily_login"
    REFERRAL = "referral"
    SOCIAL = "social"
    DAILY_CLAIM = "daily_claim"
    ADMIN_CREDIT = "admin_credit"


class LedgerKind(enum.StrEnum):
    """History-only kinds: balance changes that are not completions."""
    DEBIT = "debit"
    WITHDRAWAL = "withdrawal"
    WITHDRAWAL_REFUND = "withdrawal_refund"
    PAYOUT_EDIT_FEE = "payout_edit_fee"
    ADMIN_DEBIT = "admin_debit"


class QuotaPool(enum.StrEnum):
    """Independent per-day counters."""
    TASK = "task"
    CLAIM = "claim"


class ClaimStatus(enum.StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"


class WithdrawalStatus(enum.StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"


# ---------------------------------------------------------------------------
# Kind → pool.  Kinds missing from this map never consume quota.
# ---------------------------------------------------------------------------
POOL_FOR_KIND: dict[str, QuotaPool] = {
    TaskKind.CHANNEL_JOIN: QuotaPool.TASK,
    TaskKind.GROUP_JOIN: QuotaPool.TASK,
    TaskKind.DAILY_LOGIN: QuotaPool.TASK,
    TaskKind.REFERRAL: QuotaPool.TASK,
    TaskKind.DAILY_CLAIM: QuotaPool.CLAIM,
}

# Kinds an admin can publish in the task catalog
CATALOG_KINDS: frozenset[str] = frozenset({
    TaskKind.CHANNEL_JOIN,
    TaskKind.GROUP_JOIN,
    TaskKind.SOCIAL,
})

# Kinds that bump Account.tasks_completed when credited
TASK_COUNTER_KINDS: frozenset[str] = frozenset({
    TaskKind.CHANNEL_JOIN,
    TaskKind.GROUP_JOIN,
    TaskKind.DAILY_LOGIN,
    TaskKind.REFERRAL,
    TaskKind.SOCIAL,
})

# Telegram chat-member statuses that count as "joined"
MEMBER_STATUSES: frozenset[str] = frozenset({"member", "administrator", "creator"})


# ---------------------------------------------------------------------------
# Time helpers — the ledger is UTC throughout
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
