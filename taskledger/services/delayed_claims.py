"""
taskledger.services.delayed_claims — Time-Gated Social Claims
==============================================================

A social task ("follow us", "visit the website") cannot be verified, so
the reward is held back for a maturation delay instead::

    request_claim ──► pending ──(now ≥ available_at, next poll)──► completed

There is no scheduler.  Maturation is lazy: whichever read path touches
the account first after ``available_at`` finalizes the claim.  The
credit goes through the completion registry and only the poll whose
credit applied moves the claim to completed, so concurrent polls credit
exactly once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from taskledger.constants import ClaimStatus, TaskKind, as_utc, utcnow
from taskledger.database.models import DelayedClaim
from taskledger.engine.errors import AccountBanned, ClaimNotFound
from taskledger.services.ledger_service import credit_in_session, require_account

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from taskledger.engine.rules import EconomyRules

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ClaimState:
    source_id: str
    status: str
    points: int
    available_at: datetime
    platform: str | None = None
    completed_at: datetime | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == ClaimStatus.COMPLETED

    def seconds_remaining(self, now: datetime | None = None) -> int:
        """Whole seconds until the claim matures (0 once due)."""
        if self.is_completed:
            return 0
        left = self.available_at - as_utc(now or utcnow())
        return max(0, int(left.total_seconds()))


def _state(claim: DelayedClaim) -> ClaimState:
    return ClaimState(
        source_id=claim.source_id,
        status=claim.status,
        points=claim.points,
        available_at=as_utc(claim.available_at),
        platform=claim.platform,
        completed_at=as_utc(claim.completed_at) if claim.completed_at else None,
    )


def _find(session: Session, account_id: int, source_id: str) -> DelayedClaim | None:
    return session.scalars(
        select(DelayedClaim).where(
            DelayedClaim.account_id == account_id,
            DelayedClaim.source_id == source_id,
        )
    ).first()


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------
def request_claim_in_session(
    session: Session,
    account_id: int,
    source_id: str,
    points: int,
    rules: EconomyRules,
    *,
    platform: str | None = None,
    delay: timedelta | None = None,
    now: datetime | None = None,
) -> ClaimState:
    """:func:`request_claim` inside the caller's transaction."""
    if points < 0:
        raise ValueError("claim points must be non-negative")
    now = as_utc(now or utcnow())
    source_id = str(source_id)
    if delay is None:
        delay = rules.delay_for(platform)

    account = require_account(session, account_id)
    existing = _find(session, account_id, source_id)
    if existing is not None:
        return _state(existing)
    if account.is_banned:
        raise AccountBanned()

    claim = DelayedClaim(
        account_id=account_id,
        source_id=source_id,
        platform=platform,
        status=ClaimStatus.PENDING.value,
        points=points,
        requested_at=now,
        available_at=now + delay,
    )
    try:
        with session.begin_nested():
            session.add(claim)
            session.flush()
    except IntegrityError:
        # Same claim opened by a concurrent request.
        return _state(_find(session, account_id, source_id))

    state = _state(claim)
    logger.info(
        "Claim %s requested by account %s (%d points, due %s)",
        source_id, account_id, points, state.available_at.isoformat(),
    )
    return state


def request_claim(
    engine: Engine,
    account_id: int,
    source_id: str,
    points: int,
    rules: EconomyRules,
    *,
    platform: str | None = None,
    delay: timedelta | None = None,
    now: datetime | None = None,
) -> ClaimState:
    """Open a pending claim for *source_id*.

    Idempotent: if the account already has a claim for *source_id* its
    current state is returned and nothing changes.  Member-facing callers
    go through :func:`taskledger.services.catalog_service.claim_social_task`,
    which takes *points* from the task catalog.

    Raises
    ------
    AccountNotFound
    AccountBanned
        Only when a new claim would be created.
    """
    with Session(engine) as session:
        state = request_claim_in_session(
            session, account_id, source_id, points, rules,
            platform=platform, delay=delay, now=now,
        )
        session.commit()
    return state


# ---------------------------------------------------------------------------
# Finalization
# ---------------------------------------------------------------------------
def finalize_due_in_session(
    session: Session,
    account_id: int,
    rules: EconomyRules | None,
    now: datetime,
) -> int:
    """Credit, then complete, every matured pending claim of the account.

    A claim moves to completed only when its credit was applied.  A poll
    that loses the race gets "already credited" from the completion
    registry and leaves the status to the winner.
    """
    due = session.scalars(
        select(DelayedClaim)
        .where(
            DelayedClaim.account_id == account_id,
            DelayedClaim.status == ClaimStatus.PENDING.value,
            DelayedClaim.available_at <= now,
        )
        .order_by(DelayedClaim.available_at, DelayedClaim.id)
    ).all()

    completed = 0
    for claim in due:
        result = credit_in_session(
            session, account_id, TaskKind.SOCIAL, claim.source_id, claim.points,
            requires_quota=False, rules=rules, now=now,
        )
        if not result.credited:
            logger.debug("Claim %s was already credited", claim.source_id)
            continue

        session.execute(
            update(DelayedClaim)
            .where(
                DelayedClaim.id == claim.id,
                DelayedClaim.status == ClaimStatus.PENDING.value,
            )
            .values(status=ClaimStatus.COMPLETED.value, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        completed += 1
        logger.info(
            "Claim %s matured: credited %d points to account %s",
            claim.source_id, claim.points, account_id,
        )
    return completed


def finalize_due(
    engine: Engine,
    account_id: int,
    rules: EconomyRules | None = None,
    now: datetime | None = None,
) -> int:
    """Complete and credit every matured pending claim of the account.

    Returns the number of claims credited by this call.
    """
    now = as_utc(now or utcnow())
    with Session(engine) as session:
        require_account(session, account_id)
        count = finalize_due_in_session(session, account_id, rules, now)
        session.commit()
    return count


def poll_claim(
    engine: Engine,
    account_id: int,
    source_id: str,
    rules: EconomyRules | None = None,
    now: datetime | None = None,
) -> ClaimState:
    """Return the state of one claim, finalizing the account's due claims.

    Raises
    ------
    ClaimNotFound
        The account never requested *source_id*.
    """
    now = as_utc(now or utcnow())
    source_id = str(source_id)
    with Session(engine) as session:
        claim = _find(session, account_id, source_id)
        if claim is None:
            raise ClaimNotFound()

        if claim.status == ClaimStatus.PENDING and as_utc(claim.available_at) <= now:
            finalize_due_in_session(session, account_id, rules, now)
            session.expire_all()
            claim = _find(session, account_id, source_id)
        elif claim.status == ClaimStatus.PENDING:
            logger.debug("Claim %s still pending for account %s", source_id, account_id)

        state = _state(claim)
        session.commit()
    return state


def list_claims(
    engine: Engine,
    account_id: int,
    rules: EconomyRules | None = None,
    now: datetime | None = None,
) -> list[ClaimState]:
    """All claims of the account, newest first, after lazy maturation."""
    now = as_utc(now or utcnow())
    with Session(engine) as session:
        require_account(session, account_id)
        finalize_due_in_session(session, account_id, rules, now)
        session.expire_all()
        rows = session.scalars(
            select(DelayedClaim)
            .where(DelayedClaim.account_id == account_id)
            .order_by(DelayedClaim.requested_at.desc(), DelayedClaim.id.desc())
        ).all()
        states = [_state(r) for r in rows]
        session.commit()
    return states
