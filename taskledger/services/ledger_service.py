"""
taskledger.services.ledger_service — Credit / Debit / Refund Primitive
=======================================================================

The only module allowed to change ``Account.balance`` and
``Account.lifetime_earned``.  Delayed claims, referrals, withdrawals and
admin adjustments all come through here, so every balance change shares
one atomic boundary and leaves one ``ledger_history`` row.

``credit`` pipeline (one transaction):
  1. Completion already registered?  → "already credited", no side effects
  2. Register the completion (unique constraint, SAVEPOINT)
  3. Consume quota (conditional UPDATE) if required → ``QuotaExceeded``
  4. Increment balance + lifetime-earned (SQL expression, no read-modify-write)
  5. Append a ledger history entry

Steps 2 and 3 share a SAVEPOINT so a quota rejection also discards the
completion record, even when the caller owns the outer transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from taskledger.constants import POOL_FOR_KIND, TASK_COUNTER_KINDS, LedgerKind, as_utc, utcnow
from taskledger.database.models import Account, LedgerEntry
from taskledger.engine.errors import AccountNotFound, DuplicateCompletion, QuotaExceeded
from taskledger.engine.rules import EconomyRules
from taskledger.services import completion_registry, quota_tracker

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CreditResult:
    """Outcome of :func:`credit`.  ``credited`` is False for duplicates."""

    credited: bool
    new_balance: int
    points: int = 0


@dataclass(frozen=True, slots=True)
class LedgerEntrySnapshot:
    id: int
    kind: str
    reference: str | None
    delta: int
    balance_after: int
    created_at: datetime | None


# ---------------------------------------------------------------------------
# Account row helpers
# ---------------------------------------------------------------------------
def require_account(session: Session, account_id: int) -> Account:
    """Fetch the account or raise :class:`AccountNotFound`."""
    account = session.get(Account, account_id)
    if account is None:
        raise AccountNotFound(account_id)
    return account


def lock_account(session: Session, account_id: int) -> Account:
    """Fetch the account with ``SELECT ... FOR UPDATE``.

    Serialises operations that must read the balance before writing it
    (withdrawals, fee debits).  Only this account's row is locked.
    """
    account = session.scalars(
        select(Account)
        .where(Account.id == account_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).first()
    if account is None:
        raise AccountNotFound(account_id)
    return account


def current_balance(session: Session, account_id: int) -> int:
    balance = session.scalar(select(Account.balance).where(Account.id == account_id))
    if balance is None:
        raise AccountNotFound(account_id)
    return balance


def _append_history(
    session: Session,
    account_id: int,
    kind: str,
    reference: str | None,
    delta: int,
    balance_after: int,
    now: datetime,
) -> None:
    session.add(LedgerEntry(
        account_id=account_id,
        kind=kind,
        reference=reference,
        delta=delta,
        balance_after=balance_after,
        created_at=now,
    ))
    session.flush()


# ---------------------------------------------------------------------------
# Credit
# ---------------------------------------------------------------------------
def credit_in_session(
    session: Session,
    account_id: int,
    kind: str,
    reference: str,
    points: int,
    requires_quota: bool,
    *,
    rules: EconomyRules | None = None,
    now: datetime | None = None,
) -> CreditResult:
    """Credit *points* for a completion inside the caller's transaction.

    The caller commits.  On :class:`QuotaExceeded` nothing from this call
    is left in the session.
    """
    if points < 0:
        raise ValueError("credit points must be non-negative")
    now = as_utc(now or utcnow())
    rules = rules or EconomyRules()
    reference = str(reference)

    referral_count = session.scalar(
        select(Account.referral_count).where(Account.id == account_id)
    )
    if referral_count is None:
        raise AccountNotFound(account_id)

    if completion_registry.exists(session, account_id, kind, reference):
        logger.debug("Already credited: account=%s %s:%s", account_id, kind, reference)
        return CreditResult(False, current_balance(session, account_id))

    try:
        with session.begin_nested():
            completion_registry.register(session, account_id, kind, reference, points, now)
            if requires_quota:
                pool = POOL_FOR_KIND.get(kind)
                if pool is None:
                    raise ValueError(f"Task kind {kind!r} has no quota pool")
                limit = quota_tracker.limit_for(pool, rules, referral_count)
                if not quota_tracker.try_consume(session, account_id, pool, now.date(), limit):
                    logger.warning(
                        "Quota exhausted: account=%s pool=%s limit=%d",
                        account_id, pool, limit,
                    )
                    raise QuotaExceeded(pool, limit)
    except DuplicateCompletion:
        # Lost the race to a concurrent writer — same outcome as a retry.
        logger.debug("Concurrent duplicate: account=%s %s:%s", account_id, kind, reference)
        return CreditResult(False, current_balance(session, account_id))

    values = {
        "balance": Account.balance + points,
        "lifetime_earned": Account.lifetime_earned + points,
        "updated_at": now,
    }
    if kind in TASK_COUNTER_KINDS:
        values["tasks_completed"] = Account.tasks_completed + 1
    session.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    new_balance = current_balance(session, account_id)
    _append_history(session, account_id, kind, reference, points, new_balance, now)
    return CreditResult(True, new_balance, points)


def credit(
    engine: Engine,
    account_id: int,
    kind: str,
    reference: str,
    points: int,
    requires_quota: bool,
    *,
    rules: EconomyRules | None = None,
    now: datetime | None = None,
) -> CreditResult:
    """Credit a completion in its own transaction.

    Idempotent: a repeated (account, kind, reference) returns
    ``credited=False`` with the unchanged balance.

    Raises
    ------
    QuotaExceeded
        The pool for *kind* is exhausted for today (only when
        *requires_quota*).
    AccountNotFound
        The account has not been opened.
    """
    with Session(engine) as session:
        result = credit_in_session(
            session, account_id, kind, reference, points, requires_quota,
            rules=rules, now=now,
        )
        session.commit()

    if result.credited:
        logger.info(
            "Credited %d points to account %s for %s:%s (balance %d)",
            points, account_id, kind, reference, result.new_balance,
        )
    return result


# ---------------------------------------------------------------------------
# Debit / refund
# ---------------------------------------------------------------------------
def debit_in_session(
    session: Session,
    account_id: int,
    points: int,
    *,
    kind: str = LedgerKind.DEBIT,
    reference: str | None = None,
    now: datetime | None = None,
) -> int:
    """Decrease the balance by *points*, clamped at zero.

    Never touches ``lifetime_earned`` and never raises for insufficient
    funds — callers that care check the balance first.  Returns the new
    balance.
    """
    if points < 0:
        raise ValueError("debit points must be non-negative")
    now = as_utc(now or utcnow())

    before = lock_account(session, account_id).balance
    session.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(
            balance=case(
                (Account.balance > points, Account.balance - points),
                else_=0,
            ),
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    after = current_balance(session, account_id)
    _append_history(session, account_id, kind, reference, after - before, after, now)
    return after


def debit(
    engine: Engine,
    account_id: int,
    points: int,
    *,
    kind: str = LedgerKind.DEBIT,
    reference: str | None = None,
    now: datetime | None = None,
) -> int:
    """Debit in its own transaction.  See :func:`debit_in_session`."""
    with Session(engine) as session:
        new_balance = debit_in_session(
            session, account_id, points, kind=kind, reference=reference, now=now,
        )
        session.commit()
    logger.info("Debited %d points from account %s (%s)", points, account_id, kind)
    return new_balance


def refund_in_session(
    session: Session,
    account_id: int,
    points: int,
    *,
    kind: str = LedgerKind.WITHDRAWAL_REFUND,
    reference: str | None = None,
    now: datetime | None = None,
) -> int:
    """Return previously debited points.  Not counted as lifetime earnings."""
    if points < 0:
        raise ValueError("refund points must be non-negative")
    now = as_utc(now or utcnow())
    session.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(balance=Account.balance + points, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    after = current_balance(session, account_id)
    _append_history(session, account_id, kind, reference, points, after, now)
    return after


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------
def history(engine: Engine, account_id: int, limit: int = 20) -> list[LedgerEntrySnapshot]:
    """Most recent ledger entries for an account, newest first."""
    with Session(engine) as session:
        require_account(session, account_id)
        rows = session.scalars(
            select(LedgerEntry)
            .where(LedgerEntry.account_id == account_id)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
            .limit(limit)
        ).all()
        return [
            LedgerEntrySnapshot(
                id=r.id,
                kind=r.kind,
                reference=r.reference,
                delta=r.delta,
                balance_after=r.balance_after,
                created_at=as_utc(r.created_at) if r.created_at else None,
            )
            for r in rows
        ]
