"""
tests/test_withdrawal_service.py — Withdrawal Escrow Tests
===========================================================
Hold on request, refund on rejection, one request per day, ordered
validation and payout-detail edit fees.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from taskledger.constants import LedgerKind, TaskKind, WithdrawalStatus
from taskledger.database.models import Account, AdminLog, WithdrawalRequest
from taskledger.engine.errors import (
    AboveMaximum,
    AccountBanned,
    AccountNotFound,
    BelowMinimum,
    DailyLimitReached,
    InsufficientBalance,
    InsufficientReferrals,
    MissingPayoutDetails,
    WithdrawalAlreadyProcessed,
    WithdrawalNotFound,
    WithdrawalsDisabled,
)
from taskledger.services import account_service, ledger_service, withdrawal_service


def _fund(engine, account_id, points, now, ref="seed"):
    ledger_service.credit(
        engine, account_id, TaskKind.ADMIN_CREDIT, ref, points, False, now=now,
    )


def _balance(engine, account_id) -> int:
    with Session(engine) as session:
        return session.get(Account, account_id).balance


@pytest.fixture
def funded(db_engine, member, rules, now) -> int:
    """Member with 1500 points and saved payout details."""
    _fund(db_engine, member, 1500, now)
    withdrawal_service.save_payout_details(
        db_engine, member, "Ada Lovelace", "0123456789", "058", rules, now=now,
    )
    return member


class TestRequestWithdrawal:
    def test_holds_full_amount(self, db_engine, funded, rules, now):
        snap = withdrawal_service.request_withdrawal(db_engine, funded, 1500, rules, now=now)
        assert snap.status == WithdrawalStatus.PENDING
        assert snap.amount == 1500
        assert snap.fee_points == 75
        assert snap.receivable_points == 1425
        assert _balance(db_engine, funded) == 0

        latest = ledger_service.history(db_engine, funded, limit=1)[0]
        assert latest.kind == LedgerKind.WITHDRAWAL
        assert latest.delta == -1500
        assert latest.reference == str(snap.id)

    def test_second_request_same_day_hits_daily_limit(self, db_engine, funded, rules, now):
        withdrawal_service.request_withdrawal(db_engine, funded, 1500, rules, now=now)
        with pytest.raises(DailyLimitReached):
            withdrawal_service.request_withdrawal(
                db_engine, funded, 1000, rules, now=now + timedelta(hours=1),
            )

    def test_pending_request_blocks_next_day(self, db_engine, funded, rules, now):
        _fund(db_engine, funded, 2000, now, ref="top-up")
        withdrawal_service.request_withdrawal(db_engine, funded, 1000, rules, now=now)
        with pytest.raises(DailyLimitReached):
            withdrawal_service.request_withdrawal(
                db_engine, funded, 1000, rules, now=now + timedelta(days=1),
            )

    def test_rejected_request_frees_the_day(self, db_engine, funded, rules, now):
        snap = withdrawal_service.request_withdrawal(db_engine, funded, 1000, rules, now=now)
        withdrawal_service.decide_withdrawal(db_engine, snap.id, False, now=now)
        again = withdrawal_service.request_withdrawal(
            db_engine, funded, 1000, rules, now=now + timedelta(minutes=5),
        )
        assert again.status == WithdrawalStatus.PENDING

    def test_insufficient_balance(self, db_engine, funded, rules, now):
        with pytest.raises(InsufficientBalance):
            withdrawal_service.request_withdrawal(db_engine, funded, 2000, rules, now=now)
        assert _balance(db_engine, funded) == 1500

    def test_bounds(self, db_engine, funded, rules, now):
        with pytest.raises(BelowMinimum):
            withdrawal_service.request_withdrawal(db_engine, funded, 999, rules, now=now)
        with pytest.raises(AboveMaximum):
            withdrawal_service.request_withdrawal(db_engine, funded, 50001, rules, now=now)

    def test_missing_payout_details(self, db_engine, member, rules, now):
        _fund(db_engine, member, 1500, now)
        with pytest.raises(MissingPayoutDetails):
            withdrawal_service.request_withdrawal(db_engine, member, 1000, rules, now=now)

    def test_disabled(self, db_engine, funded, rules, now):
        with pytest.raises(WithdrawalsDisabled):
            withdrawal_service.request_withdrawal(
                db_engine, funded, 1000, replace(rules, withdrawals_enabled=False), now=now,
            )

    def test_referral_gate(self, db_engine, funded, rules, now):
        with pytest.raises(InsufficientReferrals) as exc_info:
            withdrawal_service.request_withdrawal(
                db_engine, funded, 1000, replace(rules, min_referrals_for_withdrawal=10),
                now=now,
            )
        assert exc_info.value.required == 10

    def test_banned(self, db_engine, funded, rules, now):
        account_service.set_banned(db_engine, funded, True)
        with pytest.raises(AccountBanned):
            withdrawal_service.request_withdrawal(db_engine, funded, 1000, rules, now=now)

    def test_bounds_checked_before_payout_details(self, db_engine, member, rules, now):
        with pytest.raises(BelowMinimum):
            withdrawal_service.request_withdrawal(db_engine, member, 10, rules, now=now)


class TestDecideWithdrawal:
    def test_reject_restores_exact_amount(self, db_engine, funded, rules, now):
        snap = withdrawal_service.request_withdrawal(db_engine, funded, 1200, rules, now=now)
        assert _balance(db_engine, funded) == 300

        decided = withdrawal_service.decide_withdrawal(
            db_engine, snap.id, False, admin_id=77, note="bad account", now=now,
        )
        assert decided.status == WithdrawalStatus.REJECTED
        assert decided.processed_at == now
        assert decided.processed_by == 77
        assert _balance(db_engine, funded) == 1500

        with Session(db_engine) as session:
            account = session.get(Account, funded)
            assert account.lifetime_earned == 1500

    def test_approve_changes_only_status(self, db_engine, funded, rules, now):
        snap = withdrawal_service.request_withdrawal(db_engine, funded, 1200, rules, now=now)
        decided = withdrawal_service.decide_withdrawal(db_engine, snap.id, True, now=now)
        assert decided.status == WithdrawalStatus.COMPLETED
        assert _balance(db_engine, funded) == 300

    def test_second_decision_rejected(self, db_engine, funded, rules, now):
        snap = withdrawal_service.request_withdrawal(db_engine, funded, 1200, rules, now=now)
        withdrawal_service.decide_withdrawal(db_engine, snap.id, False, now=now)
        with pytest.raises(WithdrawalAlreadyProcessed):
            withdrawal_service.decide_withdrawal(db_engine, snap.id, False, now=now)
        assert _balance(db_engine, funded) == 1500

    def test_unknown_request(self, db_engine):
        with pytest.raises(WithdrawalNotFound):
            withdrawal_service.decide_withdrawal(db_engine, 12345, True)

    def test_decision_is_audited(self, db_engine, funded, rules, now):
        snap = withdrawal_service.request_withdrawal(db_engine, funded, 1200, rules, now=now)
        withdrawal_service.decide_withdrawal(db_engine, snap.id, True, admin_id=5, now=now)
        with Session(db_engine) as session:
            entry = session.scalars(select(AdminLog)).one()
            assert entry.action_type == "APPROVE"
            assert entry.target_id == str(snap.id)
            assert entry.before_snapshot["status"] == WithdrawalStatus.PENDING
            assert entry.after_snapshot["status"] == WithdrawalStatus.COMPLETED


class TestListings:
    def test_queue_and_per_account(self, db_engine, funded, rules, now):
        snap = withdrawal_service.request_withdrawal(db_engine, funded, 1000, rules, now=now)
        pending = withdrawal_service.list_withdrawals(db_engine, status="pending")
        assert [w.id for w in pending] == [snap.id]
        assert withdrawal_service.list_withdrawals(db_engine, status="completed") == []
        assert [w.id for w in withdrawal_service.withdrawals_for(db_engine, funded)] == [snap.id]


class TestPayoutDetails:
    def test_first_save_free_edits_charged(self, db_engine, member, rules, now):
        _fund(db_engine, member, 5000, now)
        first = withdrawal_service.save_payout_details(
            db_engine, member, "Ada", "111", "058", rules, now=now,
        )
        assert first.fee_charged == 0
        assert _balance(db_engine, member) == 5000

        edit = withdrawal_service.save_payout_details(
            db_engine, member, "Ada", "222", "058", rules, now=now,
        )
        assert edit.fee_charged == rules.payout_edit_fee
        assert edit.account_number == "222"
        assert _balance(db_engine, member) == 5000 - rules.payout_edit_fee

    def test_edit_requires_fee_balance(self, db_engine, member, rules, now):
        withdrawal_service.save_payout_details(
            db_engine, member, "Ada", "111", "058", rules, now=now,
        )
        with pytest.raises(InsufficientBalance):
            withdrawal_service.save_payout_details(
                db_engine, member, "Ada", "222", "058", rules, now=now,
            )
        details = withdrawal_service.get_payout_details(db_engine, member)
        assert details.account_number == "111"

    def test_unknown_account(self, db_engine):
        with pytest.raises(AccountNotFound):
            withdrawal_service.get_payout_details(db_engine, 31337)


class TestConcurrentRequests:
    def test_parallel_requests_create_one_pending(self, concurrent_engine, make_accounts, rules, now):
        make_accounts(concurrent_engine, 9)
        _fund(concurrent_engine, 9, 5000, now)
        withdrawal_service.save_payout_details(
            concurrent_engine, 9, "Ada Lovelace", "0123456789", "058", rules, now=now,
        )

        def attempt(_: int):
            try:
                return withdrawal_service.request_withdrawal(
                    concurrent_engine, 9, 1000, rules, now=now,
                )
            except DailyLimitReached as exc:
                return exc

        with ThreadPoolExecutor(max_workers=2) as pool:
            outcomes = list(pool.map(attempt, range(2)))

        assert sum(isinstance(o, DailyLimitReached) for o in outcomes) == 1
        with Session(concurrent_engine) as session:
            pending = session.scalars(
                select(WithdrawalRequest).where(
                    WithdrawalRequest.account_id == 9,
                    WithdrawalRequest.status == WithdrawalStatus.PENDING.value,
                )
            ).all()
            assert len(pending) == 1
            assert session.get(Account, 9).balance == 4000
