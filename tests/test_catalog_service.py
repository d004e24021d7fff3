"""
tests/test_catalog_service.py — Task Catalog Tests
===================================================
Admin publishing and toggling, the member's available-task view, and
social claims priced from the catalog.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from taskledger.constants import ClaimStatus, TaskKind
from taskledger.database.models import AdminLog
from taskledger.engine.errors import AccountBanned, CatalogTaskExists, CatalogTaskNotFound
from taskledger.engine.rules import EconomyRules
from taskledger.services import account_service, catalog_service, delayed_claims, task_service


class TestAddTask:
    def test_adds_active_entry(self, db_engine, now):
        entry = catalog_service.add_task(
            db_engine, kind="group_join", name="Chat", target="@grp", points=15, now=now,
        )
        assert entry.is_active
        assert entry.points == 15
        assert entry.created_at == now
        assert [e.id for e in catalog_service.list_tasks(db_engine)] == [entry.id]

    def test_same_kind_and_target_rejected(self, db_engine, make_task):
        make_task(db_engine, "channel_join", "@news")
        with pytest.raises(CatalogTaskExists):
            make_task(db_engine, "channel_join", "@news")

    def test_same_target_different_kind_allowed(self, db_engine, make_task):
        make_task(db_engine, "channel_join", "@news")
        make_task(db_engine, "group_join", "@news")
        assert len(catalog_service.list_tasks(db_engine)) == 2

    @pytest.mark.parametrize("kwargs", [
        {"kind": "daily_login", "points": 5},
        {"kind": "channel_join", "points": -1},
        {"kind": "social", "points": 5},
    ])
    def test_invalid_entries(self, db_engine, kwargs):
        with pytest.raises(ValueError):
            catalog_service.add_task(db_engine, name="x", target="x", **kwargs)

    def test_admin_creation_is_audited(self, db_engine, now):
        entry = catalog_service.add_task(
            db_engine, kind="social", name="Follow", target="https://x.example/us",
            points=20, platform="twitter", admin_id=7, now=now,
        )
        with Session(db_engine) as session:
            log = session.scalars(select(AdminLog)).one()
        assert (log.action_type, log.target_table) == ("CREATE", "task_catalog")
        assert log.target_id == str(entry.id)
        assert log.after_snapshot["platform"] == "twitter"


class TestToggleAndRetire:
    def test_toggle_flips_active(self, db_engine, make_task):
        task_id = make_task(db_engine)
        assert not catalog_service.toggle_task(db_engine, task_id).is_active
        assert catalog_service.toggle_task(db_engine, task_id).is_active

    def test_retire_is_soft(self, db_engine, make_task):
        task_id = make_task(db_engine)
        catalog_service.retire_task(db_engine, task_id, admin_id=7)
        catalog_service.retire_task(db_engine, task_id, admin_id=7)
        [entry] = catalog_service.list_tasks(db_engine)
        assert not entry.is_active
        assert catalog_service.list_tasks(db_engine, include_inactive=False) == []

    def test_unknown_task(self, db_engine):
        with pytest.raises(CatalogTaskNotFound):
            catalog_service.toggle_task(db_engine, 404)

    def test_list_by_kind(self, db_engine, make_task):
        make_task(db_engine, "channel_join", "@c")
        group = make_task(db_engine, "group_join", "@g")
        assert [e.id for e in catalog_service.list_tasks(db_engine, kind="group_join")] == [group]


class TestDefaultPoints:
    def test_per_kind(self):
        rules = EconomyRules(channel_join_points=1, group_join_points=2, social_task_points=3)
        assert catalog_service.default_points(rules, TaskKind.CHANNEL_JOIN) == 1
        assert catalog_service.default_points(rules, TaskKind.GROUP_JOIN) == 2
        assert catalog_service.default_points(rules, TaskKind.SOCIAL) == 3


class TestAvailableTasks:
    def test_hides_completed_joins_and_inactive_tasks(self, db_engine, member, rules, make_task, now):
        done = make_task(db_engine, "channel_join", "@done")
        open_channel = make_task(db_engine, "channel_join", "@open")
        make_task(db_engine, "group_join", "@off", active=False)
        group = make_task(db_engine, "group_join", "@grp")
        task_service.complete_channel_join(db_engine, member, done, rules, now=now)

        available = catalog_service.available_tasks(db_engine, member, rules, now=now)
        assert [e.id for e in available.channels] == [open_channel]
        assert [e.id for e in available.groups] == [group]
        assert available.social == []

    def test_social_offers_carry_claim_state(self, db_engine, member, rules, make_task, now):
        fresh = make_task(db_engine, "social", "https://a.example", 20)
        claimed = make_task(db_engine, "social", "https://b.example", 20)
        catalog_service.claim_social_task(db_engine, member, claimed, rules, now=now)

        offers = {
            o.task.id: o
            for o in catalog_service.available_tasks(db_engine, member, rules, now=now).social
        }
        assert offers[fresh].claim_status is None
        assert offers[claimed].claim_status == ClaimStatus.PENDING
        assert offers[claimed].available_at == now + timedelta(minutes=15)

    def test_matured_claim_is_credited_and_dropped(self, db_engine, member, rules, make_task, now):
        task_id = make_task(db_engine, "social", "https://a.example", 20)
        catalog_service.claim_social_task(db_engine, member, task_id, rules, now=now)

        available = catalog_service.available_tasks(
            db_engine, member, rules, now=now + timedelta(hours=1),
        )
        assert available.social == []
        assert account_service.get_account(db_engine, member).balance == 20


class TestClaimSocialTask:
    def test_points_come_from_catalog(self, db_engine, member, rules, make_task, now):
        task_id = make_task(db_engine, "social", "https://a.example", 35, platform="website")
        state = catalog_service.claim_social_task(db_engine, member, task_id, rules, now=now)
        assert state.source_id == str(task_id)
        assert state.points == 35
        assert state.platform == "website"
        assert state.available_at == now + timedelta(minutes=20)

    def test_join_task_cannot_be_claimed_as_social(self, db_engine, member, rules, make_task, now):
        task_id = make_task(db_engine, "channel_join", "@news")
        with pytest.raises(CatalogTaskNotFound):
            catalog_service.claim_social_task(db_engine, member, task_id, rules, now=now)

    def test_inactive_task(self, db_engine, member, rules, make_task, now):
        task_id = make_task(db_engine, "social", "https://a.example", active=False)
        with pytest.raises(CatalogTaskNotFound):
            catalog_service.claim_social_task(db_engine, member, task_id, rules, now=now)
        assert delayed_claims.list_claims(db_engine, member, rules, now=now) == []

    def test_banned_account(self, db_engine, member, rules, make_task, now):
        task_id = make_task(db_engine, "social", "https://a.example")
        account_service.set_banned(db_engine, member, True)
        with pytest.raises(AccountBanned):
            catalog_service.claim_social_task(db_engine, member, task_id, rules, now=now)
