"""
taskledger.services.catalog_service — Task Catalog
===================================================

The channels, groups and social actions members can be rewarded for.
Admins publish, toggle and retire entries; members only ever refer to an
entry by id, and the reward always comes from the catalog row.

Completion references are the catalog id, so a join credits at most once
per entry and a social claim is keyed by ``str(task_id)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from taskledger.constants import CATALOG_KINDS, ClaimStatus, TaskKind, as_utc, utcnow
from taskledger.database.models import CatalogTask, CompletionRecord, DelayedClaim
from taskledger.engine.errors import CatalogTaskExists, CatalogTaskNotFound
from taskledger.services.admin_service import log_admin_action
from taskledger.services.delayed_claims import (
    ClaimState,
    finalize_due_in_session,
    request_claim_in_session,
)
from taskledger.services.ledger_service import require_account

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from taskledger.engine.rules import EconomyRules

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CatalogEntry:
    id: int
    kind: str
    name: str
    target: str
    points: int
    platform: str | None
    description: str | None
    is_active: bool
    created_at: datetime | None

    @classmethod
    def from_row(cls, row: CatalogTask) -> CatalogEntry:
        return cls(
            id=row.id,
            kind=row.kind,
            name=row.name,
            target=row.target,
            points=row.points_reward,
            platform=row.platform,
            description=row.description,
            is_active=row.is_active,
            created_at=as_utc(row.created_at) if row.created_at else None,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "name": self.name,
            "target": self.target,
            "points": self.points,
            "platform": self.platform,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True, slots=True)
class SocialOffer:
    """An active social task with the member's claim on it, if any."""

    task: CatalogEntry
    claim_status: str | None = None
    available_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class AvailableTasks:
    channels: list[CatalogEntry]
    groups: list[CatalogEntry]
    social: list[SocialOffer]


def default_points(rules: EconomyRules, kind: str) -> int:
    """Reward used when an admin publishes a task without one."""
    if kind == TaskKind.CHANNEL_JOIN:
        return rules.channel_join_points
    if kind == TaskKind.GROUP_JOIN:
        return rules.group_join_points
    return rules.social_task_points


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------
def require_active(session: Session, task_id: int, kind: str) -> CatalogTask:
    """The active catalog row *task_id* of *kind*.

    Raises
    ------
    CatalogTaskNotFound
        Unknown id, another kind, or a deactivated entry.
    """
    row = session.get(CatalogTask, task_id)
    if row is None or row.kind != kind or not row.is_active:
        raise CatalogTaskNotFound(task_id)
    return row


def get_active_task(engine: Engine, task_id: int, kind: str) -> CatalogEntry:
    with Session(engine) as session:
        return CatalogEntry.from_row(require_active(session, task_id, kind))


def list_tasks(
    engine: Engine,
    kind: str | None = None,
    *,
    include_inactive: bool = True,
) -> list[CatalogEntry]:
    """Catalog entries, newest first (the admin view)."""
    with Session(engine) as session:
        stmt = select(CatalogTask)
        if kind is not None:
            stmt = stmt.where(CatalogTask.kind == kind)
        if not include_inactive:
            stmt = stmt.where(CatalogTask.is_active.is_(True))
        rows = session.scalars(
            stmt.order_by(CatalogTask.created_at.desc(), CatalogTask.id.desc())
        ).all()
        return [CatalogEntry.from_row(r) for r in rows]


def available_tasks(
    engine: Engine,
    account_id: int,
    rules: EconomyRules | None = None,
    now: datetime | None = None,
) -> AvailableTasks:
    """Active tasks the account has not completed yet.

    Matured social claims are finalized first, so a claim that just
    completed drops out of the list in the same read.
    """
    now = as_utc(now or utcnow())
    with Session(engine) as session:
        require_account(session, account_id)
        finalize_due_in_session(session, account_id, rules, now)
        session.expire_all()

        rows = session.scalars(
            select(CatalogTask)
            .where(CatalogTask.is_active.is_(True))
            .order_by(CatalogTask.created_at, CatalogTask.id)
        ).all()
        done = {
            (kind, reference)
            for kind, reference in session.execute(
                select(CompletionRecord.kind, CompletionRecord.reference).where(
                    CompletionRecord.account_id == account_id,
                    CompletionRecord.kind.in_([TaskKind.CHANNEL_JOIN, TaskKind.GROUP_JOIN]),
                )
            )
        }
        claims = {
            c.source_id: c
            for c in session.scalars(
                select(DelayedClaim).where(DelayedClaim.account_id == account_id)
            ).all()
        }

        channels: list[CatalogEntry] = []
        groups: list[CatalogEntry] = []
        social: list[SocialOffer] = []
        for row in rows:
            entry = CatalogEntry.from_row(row)
            if row.kind == TaskKind.SOCIAL:
                claim = claims.get(str(row.id))
                if claim is None:
                    social.append(SocialOffer(entry))
                elif claim.status != ClaimStatus.COMPLETED:
                    social.append(SocialOffer(entry, claim.status, as_utc(claim.available_at)))
            elif (row.kind, str(row.id)) in done:
                continue
            elif row.kind == TaskKind.CHANNEL_JOIN:
                channels.append(entry)
            else:
                groups.append(entry)
        session.commit()

    return AvailableTasks(channels=channels, groups=groups, social=social)


# ---------------------------------------------------------------------------
# Member actions
# ---------------------------------------------------------------------------
def claim_social_task(
    engine: Engine,
    account_id: int,
    task_id: int,
    rules: EconomyRules,
    now: datetime | None = None,
) -> ClaimState:
    """Open the delayed claim for social task *task_id* at its catalog reward.

    Raises
    ------
    CatalogTaskNotFound
    AccountNotFound
    AccountBanned
    """
    with Session(engine) as session:
        task = require_active(session, task_id, TaskKind.SOCIAL)
        state = request_claim_in_session(
            session, account_id, str(task.id), task.points_reward, rules,
            platform=task.platform, now=now,
        )
        session.commit()
    return state


# ---------------------------------------------------------------------------
# Admin writes
# ---------------------------------------------------------------------------
def add_task(
    engine: Engine,
    *,
    kind: str,
    name: str,
    target: str,
    points: int,
    platform: str | None = None,
    description: str | None = None,
    admin_id: int | None = None,
    now: datetime | None = None,
) -> CatalogEntry:
    """Publish a new active task.

    Raises
    ------
    ValueError
        Unknown kind, negative points, or a social task without a platform.
    CatalogTaskExists
        The same kind and target is already listed.
    """
    if kind not in CATALOG_KINDS:
        raise ValueError(f"Unknown catalog kind: {kind!r}")
    if points < 0:
        raise ValueError("task points must be non-negative")
    if kind == TaskKind.SOCIAL and not platform:
        raise ValueError("social tasks need a platform")
    now = as_utc(now or utcnow())

    with Session(engine) as session:
        row = CatalogTask(
            kind=kind,
            name=name,
            target=target,
            platform=platform,
            points_reward=points,
            description=description,
            is_active=True,
            created_at=now,
        )
        try:
            with session.begin_nested():
                session.add(row)
                session.flush()
        except IntegrityError as exc:
            raise CatalogTaskExists(f"{kind} {target} is already listed.") from exc

        entry = CatalogEntry.from_row(row)
        if admin_id is not None:
            log_admin_action(
                session,
                actor_id=admin_id,
                action_type="CREATE",
                target_table="task_catalog",
                target_id=str(entry.id),
                before=None,
                after=entry.to_dict(),
            )
        session.commit()

    logger.info("Catalog task #%d added: %s %s (%d points)", entry.id, kind, target, points)
    return entry


def _set_active(
    engine: Engine,
    task_id: int,
    active: bool | None,
    action_type: str,
    admin_id: int | None,
) -> CatalogEntry:
    with Session(engine) as session:
        row = session.get(CatalogTask, task_id)
        if row is None:
            raise CatalogTaskNotFound(task_id)
        before = CatalogEntry.from_row(row)
        row.is_active = (not row.is_active) if active is None else active
        session.flush()
        after = CatalogEntry.from_row(row)
        if admin_id is not None:
            log_admin_action(
                session,
                actor_id=admin_id,
                action_type=action_type,
                target_table="task_catalog",
                target_id=str(task_id),
                before=before.to_dict(),
                after=after.to_dict(),
            )
        session.commit()

    logger.info("Catalog task #%d is now %s", task_id, "active" if after.is_active else "inactive")
    return after


def toggle_task(engine: Engine, task_id: int, *, admin_id: int | None = None) -> CatalogEntry:
    """Flip the active flag of *task_id*."""
    return _set_active(engine, task_id, None, "TOGGLE", admin_id)


def retire_task(engine: Engine, task_id: int, *, admin_id: int | None = None) -> CatalogEntry:
    """Soft delete: deactivate *task_id* for good."""
    return _set_active(engine, task_id, False, "DELETE", admin_id)
