"""
tests/test_claim_and_tasks.py — Daily Claim & Task Entry Point Tests
=====================================================================
"""

from __future__ import annotations

import random
from datetime import timedelta

import pytest

from taskledger.engine.errors import (
    AccountBanned,
    AccountNotFound,
    CatalogTaskNotFound,
    QuotaExceeded,
)
from taskledger.engine.rules import EconomyRules
from taskledger.services import (
    account_service,
    claim_service,
    referral_service,
    task_service,
)


class TestDailyClaim:
    def test_credit_within_bounds(self, db_engine, member, rules, now):
        result = claim_service.claim_daily_reward(
            db_engine, member, rules, rng=random.Random(1), now=now,
        )
        assert result.credited
        assert rules.min_claim_points <= result.points <= rules.max_claim_points
        assert result.new_balance == result.points

    def test_retry_with_same_request_id_credits_once(self, db_engine, member, rules, now):
        first = claim_service.claim_daily_reward(
            db_engine, member, rules, request_id="req-1", now=now,
        )
        retry = claim_service.claim_daily_reward(
            db_engine, member, rules, request_id="req-1", now=now,
        )
        assert first.credited and not retry.credited
        assert retry.new_balance == first.new_balance

    def test_claim_pool_limit(self, db_engine, member, now):
        rules = EconomyRules(daily_claim_limit=2, referrals_per_bonus_block=10)
        for _ in range(2):
            claim_service.claim_daily_reward(db_engine, member, rules, now=now)
        with pytest.raises(QuotaExceeded):
            claim_service.claim_daily_reward(db_engine, member, rules, now=now)

    def test_referrals_raise_claim_limit_intraday(self, db_engine, make_accounts, now):
        rules = EconomyRules(
            daily_claim_limit=1, referrals_per_bonus_block=1, bonus_claims_per_block=1,
        )
        make_accounts(db_engine, 1, 2)
        claim_service.claim_daily_reward(db_engine, 1, rules, now=now)
        with pytest.raises(QuotaExceeded):
            claim_service.claim_daily_reward(db_engine, 1, rules, now=now)

        referral_service.apply_referral(db_engine, 2, 1, rules, now=now)
        assert claim_service.claim_daily_reward(db_engine, 1, rules, now=now).credited

    def test_claims_do_not_use_task_quota(self, db_engine, member, now):
        rules = EconomyRules(daily_task_limit=0, daily_claim_limit=1)
        assert claim_service.claim_daily_reward(db_engine, member, rules, now=now).credited

    def test_new_account_draws_are_bounded_by_rules(self, db_engine, member, now):
        rules = EconomyRules(min_claim_points=100, max_claim_points=100)
        result = claim_service.claim_daily_reward(
            db_engine, member, rules, now=now + timedelta(minutes=1),
        )
        assert result.points == 100

    def test_banned_account(self, db_engine, member, rules, now):
        account_service.set_banned(db_engine, member, True)
        with pytest.raises(AccountBanned):
            claim_service.claim_daily_reward(db_engine, member, rules, now=now)


class TestTaskEntryPoints:
    def test_group_join_uses_catalog_points(self, db_engine, member, rules, make_task, now):
        task_id = make_task(db_engine, "group_join", "@grp", 15)
        result = task_service.complete_group_join(db_engine, member, task_id, rules, now=now)
        assert result.points == 15
        assert result.new_balance == 15

    def test_join_credits_once_per_catalog_entry(self, db_engine, member, rules, make_task, now):
        task_id = make_task(db_engine, "channel_join", "@vip", 99)
        assert task_service.complete_channel_join(db_engine, member, task_id, rules, now=now).credited
        again = task_service.complete_channel_join(db_engine, member, task_id, rules, now=now)
        assert not again.credited
        assert again.new_balance == 99

    def test_unknown_task_rejected(self, db_engine, member, rules, now):
        with pytest.raises(CatalogTaskNotFound):
            task_service.complete_channel_join(db_engine, member, 404, rules, now=now)

    def test_inactive_task_rejected(self, db_engine, member, rules, make_task, now):
        task_id = make_task(db_engine, "channel_join", "@old", active=False)
        with pytest.raises(CatalogTaskNotFound):
            task_service.complete_channel_join(db_engine, member, task_id, rules, now=now)
        assert account_service.get_account(db_engine, member).balance == 0

    def test_kind_must_match(self, db_engine, member, rules, make_task, now):
        group_id = make_task(db_engine, "group_join", "@grp")
        with pytest.raises(CatalogTaskNotFound):
            task_service.complete_channel_join(db_engine, member, group_id, rules, now=now)

    def test_daily_login_once_per_day(self, db_engine, member, rules, now):
        assert task_service.complete_daily_login(db_engine, member, rules, now=now).credited
        later = now + timedelta(hours=3)
        assert not task_service.complete_daily_login(db_engine, member, rules, now=later).credited
        tomorrow = now + timedelta(days=1)
        assert task_service.complete_daily_login(db_engine, member, rules, now=tomorrow).credited

    def test_tasks_share_one_pool(self, db_engine, member, make_task, now):
        rules = EconomyRules(daily_task_limit=2)
        channel = make_task(db_engine, "channel_join", "@c")
        group = make_task(db_engine, "group_join", "@g")
        task_service.complete_channel_join(db_engine, member, channel, rules, now=now)
        task_service.complete_group_join(db_engine, member, group, rules, now=now)
        with pytest.raises(QuotaExceeded):
            task_service.complete_daily_login(db_engine, member, rules, now=now)


class TestTaskStatistics:
    def test_counts_and_points_per_kind(self, db_engine, member, rules, make_task, now):
        channel = make_task(db_engine, "channel_join", "@c", 10)
        group = make_task(db_engine, "group_join", "@g", 15)
        task_service.complete_channel_join(db_engine, member, channel, rules, now=now)
        task_service.complete_group_join(db_engine, member, group, rules, now=now)
        task_service.complete_daily_login(db_engine, member, rules, now=now + timedelta(minutes=5))

        stats = task_service.task_statistics(db_engine, member)
        assert stats.total_completed == 3
        assert stats.total_points == 10 + 15 + rules.daily_login_points
        assert stats.by_kind == {"channel_join": 1, "group_join": 1, "daily_login": 1}
        assert stats.points_by_kind["group_join"] == 15
        assert stats.last_completed_at == now + timedelta(minutes=5)

    def test_filter_by_kind(self, db_engine, member, rules, make_task, now):
        channel = make_task(db_engine, "channel_join", "@c", 10)
        task_service.complete_channel_join(db_engine, member, channel, rules, now=now)
        task_service.complete_daily_login(db_engine, member, rules, now=now)

        stats = task_service.task_statistics(db_engine, member, kind="daily_login")
        assert stats.by_kind == {"daily_login": 1}

    def test_empty_account(self, db_engine, member):
        stats = task_service.task_statistics(db_engine, member)
        assert stats.total_completed == 0
        assert stats.last_completed_at is None

    def test_unknown_account(self, db_engine):
        with pytest.raises(AccountNotFound):
            task_service.task_statistics(db_engine, 424242)


class TestAccounts:
    def test_open_is_idempotent_and_refreshes_names(self, db_engine, now):
        first = account_service.open_account(db_engine, 5, username="old", now=now)
        again = account_service.open_account(db_engine, 5, username="new", now=now)
        assert first.id == again.id == 5
        assert again.username == "new"
        assert account_service.get_account(db_engine, 5).username == "new"

    def test_leaderboard_and_rank(self, db_engine, make_accounts, rules, make_task, now):
        make_accounts(db_engine, 1, 2, 3)
        big = make_task(db_engine, "channel_join", "@big", 50)
        small = make_task(db_engine, "channel_join", "@small", 20)
        task_service.complete_channel_join(db_engine, 2, big, rules, now=now)
        task_service.complete_channel_join(db_engine, 3, small, rules, now=now)

        board = account_service.leaderboard(db_engine, limit=2)
        assert [a.id for a in board] == [2, 3]
        assert account_service.rank_of(db_engine, 2) == 1
        assert account_service.rank_of(db_engine, 1) == 3

    def test_banned_accounts_hidden_from_leaderboard(self, db_engine, make_accounts, rules, make_task, now):
        make_accounts(db_engine, 1, 2)
        task_id = make_task(db_engine, "channel_join", "@a")
        task_service.complete_channel_join(db_engine, 1, task_id, rules, now=now)
        account_service.set_banned(db_engine, 1, True)
        assert [a.id for a in account_service.leaderboard(db_engine)] == [2]

    def test_banned_accounts_do_not_outrank(self, db_engine, make_accounts, rules, make_task, now):
        make_accounts(db_engine, 1, 2)
        big = make_task(db_engine, "channel_join", "@big", 50)
        small = make_task(db_engine, "channel_join", "@small", 20)
        task_service.complete_channel_join(db_engine, 1, big, rules, now=now)
        task_service.complete_channel_join(db_engine, 2, small, rules, now=now)
        assert account_service.rank_of(db_engine, 2) == 2

        account_service.set_banned(db_engine, 1, True)
        assert account_service.rank_of(db_engine, 2) == 1
