"""
taskledger.services.referral_service — Referral Cascade
========================================================

Binding a new member to the member who invited them is a one-shot
event.  A single transaction:

  1. ``UPDATE accounts SET referrer_id = :r WHERE id = :new AND referrer_id IS NULL``
     — first write wins; zero rows means the member is already bound.
  2. Credit the referrer (kind ``referral``, reference = the new member's
     id) through the Ledger Engine, so a replayed referral is a no-op.
  3. Bump the referrer's ``referral_count`` only if the credit applied.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from taskledger.constants import TaskKind, as_utc, utcnow
from taskledger.database.models import Account
from taskledger.engine.errors import AccountNotFound
from taskledger.services.ledger_service import credit_in_session

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from taskledger.engine.rules import EconomyRules

logger = logging.getLogger(__name__)


def apply_referral_in_session(
    session: Session,
    new_account_id: int,
    referrer_id: int,
    rules: EconomyRules,
    now: datetime,
) -> bool:
    """Bind and reward inside the caller's transaction.  See :func:`apply_referral`."""
    if new_account_id == referrer_id:
        logger.debug("Ignoring self-referral by account %s", new_account_id)
        return False

    current = session.scalar(
        select(Account.referrer_id).where(Account.id == new_account_id)
    )
    if current is None and session.get(Account, new_account_id) is None:
        raise AccountNotFound(new_account_id)
    if current is not None:
        return False

    referrer_exists = session.scalar(select(Account.id).where(Account.id == referrer_id))
    if referrer_exists is None:
        logger.debug("Referrer %s unknown; referral ignored", referrer_id)
        return False

    bound = session.execute(
        update(Account)
        .where(Account.id == new_account_id, Account.referrer_id.is_(None))
        .values(referrer_id=referrer_id, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if bound.rowcount != 1:
        return False

    result = credit_in_session(
        session, referrer_id, TaskKind.REFERRAL, str(new_account_id),
        rules.referral_points, requires_quota=False, rules=rules, now=now,
    )
    if not result.credited:
        return False

    session.execute(
        update(Account)
        .where(Account.id == referrer_id)
        .values(referral_count=Account.referral_count + 1)
        .execution_options(synchronize_session=False)
    )
    return True


def apply_referral(
    engine: Engine,
    new_account_id: int,
    referrer_id: int,
    rules: EconomyRules,
    now: datetime | None = None,
) -> bool:
    """Attribute *new_account_id* to *referrer_id* and credit the referrer.

    Returns True when this call bound the referrer; False for self
    referrals, unknown referrers and members that already have one.

    Raises
    ------
    AccountNotFound
        *new_account_id* has not been opened.
    """
    now = as_utc(now or utcnow())
    with Session(engine) as session:
        applied = apply_referral_in_session(session, new_account_id, referrer_id, rules, now)
        session.commit()

    if applied:
        logger.info(
            "Referral applied: %s invited %s (+%d points)",
            referrer_id, new_account_id, rules.referral_points,
        )
    return applied


def referrals_of(engine: Engine, referrer_id: int) -> list[int]:
    """Ids of every account bound to *referrer_id*, oldest first."""
    with Session(engine) as session:
        if session.get(Account, referrer_id) is None:
            raise AccountNotFound(referrer_id)
        return list(
            session.scalars(
                select(Account.id)
                .where(Account.referrer_id == referrer_id)
                .order_by(Account.created_at, Account.id)
            ).all()
        )
