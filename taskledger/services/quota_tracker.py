"""
taskledger.services.quota_tracker — Atomic Daily Quotas
========================================================

Per-account, per-day counters for two independent pools:

* ``task``  — channel/group joins, daily check-in, referrals
* ``claim`` — random daily claims (limit grows with referrals)

:func:`try_consume` is a single conditional ``UPDATE`` — the check and the
increment happen in one statement, so N concurrent callers against a limit
of K see exactly K successes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from taskledger.constants import as_utc, utcnow
from taskledger.database.models import Account, DailyQuotaCounter
from taskledger.engine.errors import AccountNotFound

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from taskledger.engine.rules import EconomyRules

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class QuotaStatus:
    pool: str
    day: date
    consumed: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.consumed)


def limit_for(pool: str, rules: EconomyRules, referral_count: int = 0) -> int:
    """Effective daily limit for *pool*.  See :meth:`EconomyRules.limit_for`."""
    return rules.limit_for(pool, referral_count)


def _ensure_counter(session: Session, account_id: int, pool: str, day: date) -> None:
    """Create the counter row for (account, day, pool) if it is missing."""
    if session.get(DailyQuotaCounter, (account_id, day, pool)) is not None:
        return
    try:
        with session.begin_nested():
            session.add(DailyQuotaCounter(
                account_id=account_id, day=day, pool=pool, consumed=0,
            ))
            session.flush()
    except IntegrityError:
        # Row already created by a concurrent transaction; the conditional
        # UPDATE below serialises behind it.
        logger.debug("Quota counter %s/%s/%s created concurrently", account_id, day, pool)


def try_consume(
    session: Session,
    account_id: int,
    pool: str,
    day: date,
    limit: int,
) -> bool:
    """Consume one unit of *pool* for *day* if fewer than *limit* are used.

    Returns True and increments on success, False when the quota is
    exhausted.  Runs inside the caller's transaction.
    """
    if limit <= 0:
        return False
    _ensure_counter(session, account_id, pool, day)
    result = session.execute(
        update(DailyQuotaCounter)
        .where(
            DailyQuotaCounter.account_id == account_id,
            DailyQuotaCounter.day == day,
            DailyQuotaCounter.pool == pool,
            DailyQuotaCounter.consumed < limit,
        )
        .values(consumed=DailyQuotaCounter.consumed + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def consumed(session: Session, account_id: int, pool: str, day: date) -> int:
    """Units of *pool* consumed by the account on *day*."""
    value = session.scalar(
        select(DailyQuotaCounter.consumed).where(
            DailyQuotaCounter.account_id == account_id,
            DailyQuotaCounter.day == day,
            DailyQuotaCounter.pool == pool,
        )
    )
    return value or 0


def quota_status(
    engine: Engine,
    account_id: int,
    pool: str,
    rules: EconomyRules,
    *,
    now: datetime | None = None,
) -> QuotaStatus:
    """Consumed / limit for today — the "earn status" read path."""
    day = as_utc(now or utcnow()).date()
    with Session(engine) as session:
        referral_count = session.scalar(
            select(Account.referral_count).where(Account.id == account_id)
        )
        if referral_count is None:
            raise AccountNotFound(account_id)
        return QuotaStatus(
            pool=pool,
            day=day,
            consumed=consumed(session, account_id, pool, day),
            limit=limit_for(pool, rules, referral_count),
        )
