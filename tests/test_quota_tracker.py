"""
tests/test_quota_tracker.py — Quota Tracker & Concurrency Tests
================================================================
The conditional-increment gate under contention: many threads crediting
distinct completions against one daily limit must see exactly ``limit``
successes.

Concurrency tests use the file-backed SQLite engine from conftest.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from sqlalchemy import select
from sqlalchemy.orm import Session

from taskledger.constants import QuotaPool, TaskKind
from taskledger.database.models import Account, CompletionRecord
from taskledger.engine.errors import QuotaExceeded
from taskledger.engine.rules import EconomyRules
from taskledger.services import ledger_service, quota_tracker


class TestTryConsume:
    def test_counts_up_to_limit(self, db_engine, member, now):
        day = now.date()
        with Session(db_engine) as session:
            results = [
                quota_tracker.try_consume(session, member, QuotaPool.TASK, day, 3)
                for _ in range(5)
            ]
            session.commit()
        assert results == [True, True, True, False, False]
        with Session(db_engine) as session:
            assert quota_tracker.consumed(session, member, QuotaPool.TASK, day) == 3

    def test_zero_limit_never_consumes(self, db_engine, member, now):
        with Session(db_engine) as session:
            assert not quota_tracker.try_consume(session, member, QuotaPool.CLAIM, now.date(), 0)

    def test_limit_for_delegates_to_rules(self):
        rules = EconomyRules(daily_claim_limit=5, referrals_per_bonus_block=10,
                             bonus_claims_per_block=2)
        assert quota_tracker.limit_for(QuotaPool.CLAIM, rules, 20) == 9


class TestConcurrentCredits:
    def test_fifty_concurrent_credits_against_limit_five(self, concurrent_engine, make_accounts, now):
        make_accounts(concurrent_engine, 7)
        rules = EconomyRules(daily_task_limit=5)

        def attempt(i: int) -> str:
            try:
                result = ledger_service.credit(
                    concurrent_engine, 7, TaskKind.CHANNEL_JOIN, f"@chan{i}", 10, True,
                    rules=rules, now=now,
                )
            except QuotaExceeded:
                return "quota"
            return "credited" if result.credited else "duplicate"

        with ThreadPoolExecutor(max_workers=10) as pool:
            outcomes = list(pool.map(attempt, range(50)))

        assert outcomes.count("credited") == 5
        assert outcomes.count("quota") == 45

        with Session(concurrent_engine) as session:
            assert session.get(Account, 7).balance == 50
            records = session.scalars(
                select(CompletionRecord).where(CompletionRecord.account_id == 7)
            ).all()
            assert len(records) == 5
            assert quota_tracker.consumed(session, 7, QuotaPool.TASK, now.date()) == 5

    def test_concurrent_duplicates_credit_once(self, concurrent_engine, make_accounts, now):
        make_accounts(concurrent_engine, 8)
        rules = EconomyRules(daily_task_limit=5)

        def attempt(_: int) -> bool:
            return ledger_service.credit(
                concurrent_engine, 8, TaskKind.CHANNEL_JOIN, "@same", 10, True,
                rules=rules, now=now,
            ).credited

        with ThreadPoolExecutor(max_workers=8) as pool:
            credited = list(pool.map(attempt, range(20)))

        assert credited.count(True) == 1
        with Session(concurrent_engine) as session:
            assert session.get(Account, 8).balance == 10
            assert quota_tracker.consumed(session, 8, QuotaPool.TASK, now.date()) == 1
