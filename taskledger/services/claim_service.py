"""
taskledger.services.claim_service — Random Daily Claims
========================================================

A member may claim a random amount of points a few times per day.  Each
claim draws from the ``claim`` quota pool, whose limit grows with the
member's referral count.  The client supplies a request id so that a
retried request is recognised by the completion registry and credited
once.
"""

from __future__ import annotations

import logging
import random
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from taskledger.constants import TaskKind, as_utc, utcnow
from taskledger.engine.errors import AccountBanned
from taskledger.engine.rules import EconomyRules, draw_claim_points
from taskledger.services.ledger_service import CreditResult, credit, require_account

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def claim_daily_reward(
    engine: Engine,
    account_id: int,
    rules: EconomyRules,
    *,
    rng: random.Random | None = None,
    request_id: str | None = None,
    now: datetime | None = None,
) -> CreditResult:
    """Credit one random daily claim.

    Raises
    ------
    AccountNotFound
    AccountBanned
    QuotaExceeded
        The day's claims (base plus referral bonus) are used up.
    """
    now = as_utc(now or utcnow())
    with Session(engine) as session:
        account = require_account(session, account_id)
        if account.is_banned:
            raise AccountBanned()
        created_at = as_utc(account.created_at) if account.created_at else now

    points = draw_claim_points(rules, now - created_at, rng)
    reference = request_id or uuid.uuid4().hex
    return credit(
        engine, account_id, TaskKind.DAILY_CLAIM, reference, points,
        requires_quota=True, rules=rules, now=now,
    )
