"""
taskledger.services.admin_service — Audited Admin Mutations
============================================================

Every admin write follows the same pattern:
  1. Begin transaction
  2. Read "before" snapshot
  3. Apply change (balance changes go through the Ledger Engine)
  4. Write admin_log with before/after JSON
  5. Commit
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from taskledger.constants import LedgerKind, TaskKind, as_utc, utcnow
from taskledger.database.models import Account, AdminLog
from taskledger.services.ledger_service import (
    credit_in_session,
    debit_in_session,
    require_account,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Generic audit helpers
# ---------------------------------------------------------------------------
def _row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def log_admin_action(
    session: Session,
    *,
    actor_id: int,
    action_type: str,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=action_type,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))


def _account_snapshot(session: Session, account_id: int) -> dict | None:
    session.expire_all()
    return _row_to_dict(session.get(Account, account_id))


# ---------------------------------------------------------------------------
# Balance adjustments
# ---------------------------------------------------------------------------
def adjust_balance(
    engine: Engine,
    *,
    account_id: int,
    delta: int,
    admin_id: int,
    reason: str | None = None,
    now: datetime | None = None,
) -> int:
    """Credit (``delta > 0``) or debit (``delta < 0``) an account.

    Credits count as lifetime earnings and use a fresh completion
    reference, so two identical adjustments both apply.  Debits clamp at
    zero.  Returns the new balance.
    """
    if delta == 0:
        raise ValueError("delta must be non-zero")
    now = as_utc(now or utcnow())
    with Session(engine) as session:
        require_account(session, account_id)
        before = _account_snapshot(session, account_id)

        if delta > 0:
            reference = f"admin-{admin_id}-{uuid.uuid4().hex}"
            result = credit_in_session(
                session, account_id, TaskKind.ADMIN_CREDIT, reference, delta,
                requires_quota=False, now=now,
            )
            new_balance = result.new_balance
        else:
            new_balance = debit_in_session(
                session, account_id, -delta,
                kind=LedgerKind.ADMIN_DEBIT, reference=f"admin-{admin_id}", now=now,
            )

        log_admin_action(
            session,
            actor_id=admin_id,
            action_type="ADJUST_BALANCE",
            target_table="accounts",
            target_id=str(account_id),
            before=before,
            after=_account_snapshot(session, account_id),
            reason=reason,
        )
        session.commit()

    logger.info(
        "Admin %s adjusted account %s by %+d (balance %d)",
        admin_id, account_id, delta, new_balance,
    )
    return new_balance


def set_ban(
    engine: Engine,
    *,
    account_id: int,
    banned: bool,
    admin_id: int,
    reason: str | None = None,
) -> None:
    """Ban or unban an account, with an audit entry."""
    with Session(engine) as session:
        account = require_account(session, account_id)
        before = _row_to_dict(account)
        account.is_banned = banned
        session.flush()
        log_admin_action(
            session,
            actor_id=admin_id,
            action_type="BAN" if banned else "UNBAN",
            target_table="accounts",
            target_id=str(account_id),
            before=before,
            after=_row_to_dict(account),
            reason=reason,
        )
        session.commit()

    logger.info("Admin %s set banned=%s on account %s", admin_id, banned, account_id)


# ---------------------------------------------------------------------------
# Audit log reads
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AuditEntry:
    id: int
    actor_id: int
    action_type: str
    target_table: str
    target_id: str | None
    before: dict | None
    after: dict | None
    reason: str | None
    timestamp: datetime | None


def audit_log(engine: Engine, limit: int = 50) -> list[AuditEntry]:
    """Most recent admin actions, newest first."""
    with Session(engine) as session:
        rows = session.scalars(
            select(AdminLog).order_by(AdminLog.timestamp.desc(), AdminLog.id.desc()).limit(limit)
        ).all()
        return [
            AuditEntry(
                id=r.id,
                actor_id=r.actor_id,
                action_type=r.action_type,
                target_table=r.target_table,
                target_id=r.target_id,
                before=r.before_snapshot,
                after=r.after_snapshot,
                reason=r.reason,
                timestamp=as_utc(r.timestamp) if r.timestamp else None,
            )
            for r in rows
        ]
