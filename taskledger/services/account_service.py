"""
taskledger.services.account_service — Account Store
====================================================

Accounts are keyed by the member's external user id and created on first
contact.  Two first contacts racing each other resolve to one row: the
insert runs in a SAVEPOINT and the loser simply reads the winner's row.

Balances are never written here; see
:mod:`taskledger.services.ledger_service`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import desc, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from taskledger.constants import as_utc, utcnow
from taskledger.database.models import Account
from taskledger.engine.errors import AccountNotFound
from taskledger.engine.rules import EconomyRules
from taskledger.services.ledger_service import require_account
from taskledger.services.referral_service import apply_referral_in_session

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AccountSnapshot:
    """Detached, read-only view of an ``accounts`` row."""

    id: int
    username: str | None
    display_name: str | None
    balance: int
    lifetime_earned: int
    referral_count: int
    tasks_completed: int
    is_banned: bool
    referrer_id: int | None
    created_at: datetime | None

    @classmethod
    def from_row(cls, row: Account) -> AccountSnapshot:
        return cls(
            id=row.id,
            username=row.username,
            display_name=row.display_name,
            balance=row.balance,
            lifetime_earned=row.lifetime_earned,
            referral_count=row.referral_count,
            tasks_completed=row.tasks_completed,
            is_banned=row.is_banned,
            referrer_id=row.referrer_id,
            created_at=as_utc(row.created_at) if row.created_at else None,
        )


def open_account(
    engine: Engine,
    account_id: int,
    *,
    username: str | None = None,
    display_name: str | None = None,
    referrer_id: int | None = None,
    rules: EconomyRules | None = None,
    now: datetime | None = None,
) -> AccountSnapshot:
    """Create the account on first contact, or refresh its names.

    When *referrer_id* is given the referral is applied in the same
    transaction (first referrer wins; later ones are ignored).
    """
    now = as_utc(now or utcnow())
    created = False
    with Session(engine) as session:
        account = session.get(Account, account_id)
        if account is None:
            try:
                with session.begin_nested():
                    session.add(Account(
                        id=account_id,
                        username=username,
                        display_name=display_name,
                        created_at=now,
                        updated_at=now,
                    ))
                    session.flush()
                created = True
            except IntegrityError:
                logger.debug("Account %s created concurrently", account_id)
            account = require_account(session, account_id)
        else:
            if username is not None:
                account.username = username
            if display_name is not None:
                account.display_name = display_name
            session.flush()

        if referrer_id is not None:
            apply_referral_in_session(
                session, account_id, referrer_id, rules or EconomyRules(), now,
            )
            session.expire_all()
            account = require_account(session, account_id)

        snapshot = AccountSnapshot.from_row(account)
        session.commit()

    if created:
        logger.info("Account %s opened (referrer=%s)", account_id, snapshot.referrer_id)
    return snapshot


def get_account(engine: Engine, account_id: int) -> AccountSnapshot:
    """Return the account or raise :class:`AccountNotFound`."""
    with Session(engine) as session:
        return AccountSnapshot.from_row(require_account(session, account_id))


def set_banned(engine: Engine, account_id: int, banned: bool) -> None:
    """Flip the ban flag without an audit entry (see ``admin_service.set_ban``)."""
    with Session(engine) as session:
        account = require_account(session, account_id)
        account.is_banned = banned
        session.commit()
    logger.info("Account %s banned=%s", account_id, banned)


# ---------------------------------------------------------------------------
# Rankings
# ---------------------------------------------------------------------------
def leaderboard(engine: Engine, limit: int = 10) -> list[AccountSnapshot]:
    """Top earners by lifetime points, ties broken by referral count."""
    with Session(engine) as session:
        rows = session.scalars(
            select(Account)
            .where(Account.is_banned.is_(False))
            .order_by(
                desc(Account.lifetime_earned),
                desc(Account.referral_count),
                Account.id,
            )
            .limit(limit)
        ).all()
        return [AccountSnapshot.from_row(r) for r in rows]


def rank_of(engine: Engine, account_id: int) -> int:
    """1-based rank of the account by current balance among unbanned accounts."""
    with Session(engine) as session:
        balance = session.scalar(select(Account.balance).where(Account.id == account_id))
        if balance is None:
            raise AccountNotFound(account_id)
        higher = session.scalar(
            select(func.count())
            .select_from(Account)
            .where(Account.balance > balance, Account.is_banned.is_(False))
        )
        return (higher or 0) + 1
