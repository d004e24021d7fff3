"""
taskledger.services.withdrawal_service — Withdrawal Escrow
===========================================================

Withdrawals use a pessimistic hold: the full amount leaves the balance
when the request is created, and an admin later either approves it
(nothing else changes) or rejects it (the amount is refunded)::

    request ──► pending ──approve──► completed
                       └──reject───► rejected  (+amount back to balance)

The request validation runs under ``SELECT ... FOR UPDATE`` on the
account row, so two concurrent requests from one member cannot both pass
the daily-limit and balance checks.  Decisions are a conditional
``UPDATE ... WHERE status = 'pending'``: the second decision on the same
request fails instead of refunding twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time
from typing import TYPE_CHECKING

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from taskledger.constants import LedgerKind, WithdrawalStatus, as_utc, utcnow
from taskledger.database.models import PayoutDetails, WithdrawalRequest
from taskledger.engine.errors import (
    AboveMaximum,
    AccountBanned,
    BelowMinimum,
    DailyLimitReached,
    InsufficientBalance,
    InsufficientReferrals,
    MissingPayoutDetails,
    WithdrawalAlreadyProcessed,
    WithdrawalNotFound,
    WithdrawalsDisabled,
)
from taskledger.engine.rules import withdrawal_fee
from taskledger.services.admin_service import log_admin_action
from taskledger.services.ledger_service import (
    debit_in_session,
    lock_account,
    refund_in_session,
    require_account,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from taskledger.engine.rules import EconomyRules

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class WithdrawalSnapshot:
    id: int
    account_id: int
    amount: int
    fee_points: int
    receivable_points: int
    status: str
    created_at: datetime
    processed_at: datetime | None = None
    processed_by: int | None = None
    note: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "amount": self.amount,
            "fee_points": self.fee_points,
            "receivable_points": self.receivable_points,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "processed_by": self.processed_by,
            "note": self.note,
        }


@dataclass(frozen=True, slots=True)
class PayoutDetailsSnapshot:
    account_id: int
    account_name: str
    account_number: str
    bank_code: str
    fee_charged: int = 0


def _snapshot(row: WithdrawalRequest) -> WithdrawalSnapshot:
    return WithdrawalSnapshot(
        id=row.id,
        account_id=row.account_id,
        amount=row.amount,
        fee_points=row.fee_points,
        receivable_points=row.receivable_points,
        status=row.status,
        created_at=as_utc(row.created_at),
        processed_at=as_utc(row.processed_at) if row.processed_at else None,
        processed_by=row.processed_by,
        note=row.note,
    )


# ---------------------------------------------------------------------------
# Payout details
# ---------------------------------------------------------------------------
def save_payout_details(
    engine: Engine,
    account_id: int,
    account_name: str,
    account_number: str,
    bank_code: str,
    rules: EconomyRules,
    now: datetime | None = None,
) -> PayoutDetailsSnapshot:
    """Save where withdrawals are paid.

    The first save is free.  Every later change costs
    ``rules.payout_edit_fee`` points.

    Raises
    ------
    AccountNotFound
    InsufficientBalance
        An edit was requested but the balance is below the fee.
    """
    now = as_utc(now or utcnow())
    fee_charged = 0
    with Session(engine) as session:
        account = lock_account(session, account_id)
        details = session.get(PayoutDetails, account_id)

        if details is None:
            details = PayoutDetails(
                account_id=account_id,
                account_name=account_name,
                account_number=account_number,
                bank_code=bank_code,
                created_at=now,
                updated_at=now,
            )
            session.add(details)
        else:
            fee = rules.payout_edit_fee
            if fee > 0:
                if account.balance < fee:
                    raise InsufficientBalance(
                        f"Changing payout details costs {fee} points."
                    )
                debit_in_session(
                    session, account_id, fee,
                    kind=LedgerKind.PAYOUT_EDIT_FEE, now=now,
                )
                fee_charged = fee
            details.account_name = account_name
            details.account_number = account_number
            details.bank_code = bank_code
            details.updated_at = now

        session.flush()
        snapshot = PayoutDetailsSnapshot(
            account_id=account_id,
            account_name=details.account_name,
            account_number=details.account_number,
            bank_code=details.bank_code,
            fee_charged=fee_charged,
        )
        session.commit()

    logger.info("Payout details saved for account %s (fee %d)", account_id, fee_charged)
    return snapshot


def get_payout_details(engine: Engine, account_id: int) -> PayoutDetailsSnapshot | None:
    """Saved payout details, or None when the account has none yet.

    Raises
    ------
    AccountNotFound
    """
    with Session(engine) as session:
        require_account(session, account_id)
        details = session.get(PayoutDetails, account_id)
        if details is None:
            return None
        return PayoutDetailsSnapshot(
            account_id=details.account_id,
            account_name=details.account_name,
            account_number=details.account_number,
            bank_code=details.bank_code,
        )


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------
def _has_blocking_request(session: Session, account_id: int, now: datetime) -> bool:
    """A pending request, or a non-rejected one created today (UTC)."""
    day_start = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
    found = session.scalar(
        select(WithdrawalRequest.id)
        .where(
            WithdrawalRequest.account_id == account_id,
            or_(
                WithdrawalRequest.status == WithdrawalStatus.PENDING.value,
                (WithdrawalRequest.created_at >= day_start)
                & (WithdrawalRequest.status != WithdrawalStatus.REJECTED.value),
            ),
        )
        .limit(1)
    )
    return found is not None


def request_withdrawal(
    engine: Engine,
    account_id: int,
    amount: int,
    rules: EconomyRules,
    now: datetime | None = None,
) -> WithdrawalSnapshot:
    """Hold *amount* points and open a pending withdrawal request.

    Checks run in a fixed order and the first failure is raised:
    ``AccountNotFound``, ``AccountBanned``, ``WithdrawalsDisabled``,
    ``InsufficientReferrals``, ``BelowMinimum``, ``AboveMaximum``,
    ``MissingPayoutDetails``, ``DailyLimitReached``,
    ``InsufficientBalance``.
    """
    now = as_utc(now or utcnow())
    with Session(engine) as session:
        account = require_account(session, account_id)
        if account.is_banned:
            raise AccountBanned()
        if not rules.withdrawals_enabled:
            raise WithdrawalsDisabled()
        required = rules.min_referrals_for_withdrawal
        if required > 0 and account.referral_count < required:
            raise InsufficientReferrals(required)
        if amount < rules.min_withdrawal:
            raise BelowMinimum(rules.min_withdrawal)
        if amount > rules.max_withdrawal:
            raise AboveMaximum(rules.max_withdrawal)
        if session.get(PayoutDetails, account_id) is None:
            raise MissingPayoutDetails()

        account = lock_account(session, account_id)
        if _has_blocking_request(session, account_id, now):
            raise DailyLimitReached()
        if account.balance < amount:
            raise InsufficientBalance()

        fee, receivable = withdrawal_fee(amount, rules.withdrawal_fee_percent)
        request = WithdrawalRequest(
            account_id=account_id,
            amount=amount,
            fee_points=fee,
            receivable_points=receivable,
            status=WithdrawalStatus.PENDING.value,
            created_at=now,
        )
        session.add(request)
        session.flush()
        debit_in_session(
            session, account_id, amount,
            kind=LedgerKind.WITHDRAWAL, reference=str(request.id), now=now,
        )
        snapshot = _snapshot(request)
        session.commit()

    logger.info(
        "Withdrawal #%d requested by account %s: %d points (fee %d)",
        snapshot.id, account_id, amount, fee,
    )
    return snapshot


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------
def decide_withdrawal(
    engine: Engine,
    request_id: int,
    approve: bool,
    *,
    admin_id: int | None = None,
    note: str | None = None,
    now: datetime | None = None,
) -> WithdrawalSnapshot:
    """Approve or reject a pending request.

    Rejection refunds the full held amount in the same transaction.

    Raises
    ------
    WithdrawalNotFound
    WithdrawalAlreadyProcessed
        The request is no longer pending.
    """
    now = as_utc(now or utcnow())
    new_status = WithdrawalStatus.COMPLETED if approve else WithdrawalStatus.REJECTED
    with Session(engine) as session:
        request = session.get(WithdrawalRequest, request_id)
        if request is None:
            raise WithdrawalNotFound()
        before = _snapshot(request).to_dict()

        moved = session.execute(
            update(WithdrawalRequest)
            .where(
                WithdrawalRequest.id == request_id,
                WithdrawalRequest.status == WithdrawalStatus.PENDING.value,
            )
            .values(
                status=new_status.value,
                processed_at=now,
                processed_by=admin_id,
                note=note,
            )
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount != 1:
            raise WithdrawalAlreadyProcessed()

        if not approve:
            refund_in_session(
                session, request.account_id, request.amount,
                kind=LedgerKind.WITHDRAWAL_REFUND, reference=str(request_id), now=now,
            )

        session.refresh(request)
        snapshot = _snapshot(request)
        if admin_id is not None:
            log_admin_action(
                session,
                actor_id=admin_id,
                action_type="APPROVE" if approve else "REJECT",
                target_table="withdrawal_requests",
                target_id=str(request_id),
                before=before,
                after=snapshot.to_dict(),
                reason=note,
            )
        session.commit()

    logger.info(
        "Withdrawal #%d %s (account %s, %d points)",
        request_id, new_status.value, snapshot.account_id, snapshot.amount,
    )
    return snapshot


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def list_withdrawals(
    engine: Engine,
    status: str | None = None,
    limit: int = 50,
) -> list[WithdrawalSnapshot]:
    """Requests across all accounts, oldest first (the admin review queue)."""
    with Session(engine) as session:
        stmt = select(WithdrawalRequest)
        if status is not None:
            stmt = stmt.where(WithdrawalRequest.status == status)
        rows = session.scalars(
            stmt.order_by(WithdrawalRequest.created_at, WithdrawalRequest.id).limit(limit)
        ).all()
        return [_snapshot(r) for r in rows]


def withdrawals_for(engine: Engine, account_id: int) -> list[WithdrawalSnapshot]:
    """One account's requests, newest first."""
    with Session(engine) as session:
        require_account(session, account_id)
        rows = session.scalars(
            select(WithdrawalRequest)
            .where(WithdrawalRequest.account_id == account_id)
            .order_by(WithdrawalRequest.created_at.desc(), WithdrawalRequest.id.desc())
        ).all()
        return [_snapshot(r) for r in rows]
