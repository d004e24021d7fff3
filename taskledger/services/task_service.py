"""
taskledger.services.task_service — Task Completion Entry Points
================================================================

Thin wrappers that turn a verified member action into a ledger credit
with the right kind, reference and points.  Channel and group joins are
resolved against the task catalog; membership of the chat is checked by
the caller before these run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from taskledger.constants import TaskKind, as_utc, utcnow
from taskledger.services import catalog_service, completion_registry
from taskledger.services.ledger_service import CreditResult, credit, credit_in_session, require_account

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from taskledger.engine.rules import EconomyRules

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TaskStatistics:
    """Completion counts and points per kind for one account."""

    total_completed: int = 0
    total_points: int = 0
    by_kind: dict[str, int] = field(default_factory=dict)
    points_by_kind: dict[str, int] = field(default_factory=dict)
    last_completed_at: datetime | None = None


def _complete_join(
    engine: Engine,
    account_id: int,
    task_id: int,
    kind: str,
    rules: EconomyRules,
    now: datetime | None,
) -> CreditResult:
    with Session(engine) as session:
        task = catalog_service.require_active(session, task_id, kind)
        result = credit_in_session(
            session, account_id, kind, str(task.id), task.points_reward,
            requires_quota=True, rules=rules, now=now,
        )
        session.commit()

    if result.credited:
        logger.info(
            "Account %s completed %s task #%d (%d points, balance %d)",
            account_id, kind, task_id, result.points, result.new_balance,
        )
    return result


def complete_channel_join(
    engine: Engine,
    account_id: int,
    task_id: int,
    rules: EconomyRules,
    *,
    now: datetime | None = None,
) -> CreditResult:
    """One-shot reward for joining catalog channel *task_id*; consumes task quota.

    Raises
    ------
    CatalogTaskNotFound
        The id is unknown, inactive, or not a channel.
    QuotaExceeded
    AccountNotFound
    """
    return _complete_join(engine, account_id, task_id, TaskKind.CHANNEL_JOIN, rules, now)


def complete_group_join(
    engine: Engine,
    account_id: int,
    task_id: int,
    rules: EconomyRules,
    *,
    now: datetime | None = None,
) -> CreditResult:
    return _complete_join(engine, account_id, task_id, TaskKind.GROUP_JOIN, rules, now)


def complete_daily_login(
    engine: Engine,
    account_id: int,
    rules: EconomyRules,
    now: datetime | None = None,
) -> CreditResult:
    """Daily check-in.  The reference is the UTC calendar day."""
    now = as_utc(now or utcnow())
    return credit(
        engine, account_id, TaskKind.DAILY_LOGIN, now.date().isoformat(),
        rules.daily_login_points, requires_quota=True, rules=rules, now=now,
    )


def task_statistics(engine: Engine, account_id: int, kind: str | None = None) -> TaskStatistics:
    """Summarize the account's completion records.

    Raises
    ------
    AccountNotFound
    """
    with Session(engine) as session:
        require_account(session, account_id)
        records = completion_registry.records_for(session, account_id, kind)

    by_kind: dict[str, int] = {}
    points_by_kind: dict[str, int] = {}
    for r in records:
        by_kind[r.kind] = by_kind.get(r.kind, 0) + 1
        points_by_kind[r.kind] = points_by_kind.get(r.kind, 0) + r.points

    return TaskStatistics(
        total_completed=len(records),
        total_points=sum(points_by_kind.values()),
        by_kind=by_kind,
        points_by_kind=points_by_kind,
        last_completed_at=as_utc(records[0].created_at) if records and records[0].created_at else None,
    )
