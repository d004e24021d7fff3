"""
taskledger.services.completion_registry — At-Most-Once Completions
===================================================================

Records which (account, kind, reference) tuples have been rewarded.

The unique constraint on ``completion_records`` is the serialization point:
:func:`register` inserts inside a SAVEPOINT and turns the unique violation
into :class:`DuplicateCompletion`.  The ledger catches that error and
reports "already credited"; the outer transaction stays usable.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from taskledger.database.models import CompletionRecord
from taskledger.engine.errors import DuplicateCompletion

logger = logging.getLogger(__name__)


def exists(session: Session, account_id: int, kind: str, reference: str) -> bool:
    """Return True if the completion has already been registered."""
    found = session.scalar(
        select(CompletionRecord.id)
        .where(
            CompletionRecord.account_id == account_id,
            CompletionRecord.kind == kind,
            CompletionRecord.reference == reference,
        )
        .limit(1)
    )
    return found is not None


def register(
    session: Session,
    account_id: int,
    kind: str,
    reference: str,
    points: int,
    now: datetime,
) -> CompletionRecord:
    """Insert a completion record.

    Raises
    ------
    DuplicateCompletion
        If a record for the tuple already exists, including one committed
        by a concurrent transaction after :func:`exists` was checked.
    """
    record = CompletionRecord(
        account_id=account_id,
        kind=kind,
        reference=reference,
        points=points,
        created_at=now,
    )
    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(record)
            session.flush()
    except IntegrityError as exc:
        # The SAVEPOINT was rolled back; the outer txn is still alive.
        raise DuplicateCompletion(
            f"{kind}:{reference} already credited to account {account_id}."
        ) from exc
    return record


def records_for(
    session: Session,
    account_id: int,
    kind: str | None = None,
) -> list[CompletionRecord]:
    """All completion records for an account, newest first."""
    stmt = select(CompletionRecord).where(CompletionRecord.account_id == account_id)
    if kind is not None:
        stmt = stmt.where(CompletionRecord.kind == kind)
    return list(
        session.scalars(
            stmt.order_by(CompletionRecord.created_at.desc(), CompletionRecord.id.desc())
        ).all()
    )
