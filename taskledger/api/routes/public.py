"""
taskledger.api.routes.public — Member-facing endpoints
=======================================================

Called by the chat bot front-end on behalf of a member.  Handlers that
need a collaborator (membership check, admin alert) are ``async`` and
reach the database through :func:`run_db`; the collaborator is always
called outside the service's transaction.
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from taskledger.api.deps import (
    get_config,
    get_engine,
    get_membership,
    get_notifier,
    get_rules,
)
from taskledger.config import LedgerConfig
from taskledger.constants import QuotaPool, TaskKind
from taskledger.database.engine import run_db
from taskledger.engine.errors import MembershipRequired
from taskledger.engine.rules import EconomyRules
from taskledger.services import (
    account_service,
    catalog_service,
    claim_service,
    delayed_claims,
    ledger_service,
    quota_tracker,
    referral_service,
    task_service,
    withdrawal_service,
)
from taskledger.services.ledger_service import CreditResult
from taskledger.services.notifications import (
    MembershipChecker,
    Notifier,
    is_member_of_all,
)

router = APIRouter(tags=["public"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class OpenAccount(BaseModel):
    account_id: int
    username: str | None = None
    display_name: str | None = None
    referrer_id: int | None = None


class AccountRef(BaseModel):
    account_id: int


class CatalogTaskRef(BaseModel):
    """A member acting on a catalog entry; the reward comes from the catalog."""

    account_id: int
    task_id: int


class DailyClaim(BaseModel):
    account_id: int
    request_id: str | None = Field(default=None, max_length=100)


class PayoutDetailsBody(BaseModel):
    account_name: str = Field(min_length=1, max_length=200)
    account_number: str = Field(min_length=1, max_length=50)
    bank_code: str = Field(min_length=1, max_length=50)


class WithdrawalBody(BaseModel):
    account_id: int
    amount: int = Field(gt=0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _account_dict(snap: account_service.AccountSnapshot) -> dict:
    return {
        "id": snap.id,
        "username": snap.username,
        "display_name": snap.display_name,
        "balance": snap.balance,
        "lifetime_earned": snap.lifetime_earned,
        "referral_count": snap.referral_count,
        "tasks_completed": snap.tasks_completed,
        "is_banned": snap.is_banned,
        "referrer_id": snap.referrer_id,
        "created_at": snap.created_at.isoformat() if snap.created_at else None,
    }


def _credit_dict(result: CreditResult) -> dict:
    return {
        "credited": result.credited,
        "points": result.points,
        "balance": result.new_balance,
    }


async def _require_membership(
    membership: MembershipChecker, cfg: LedgerConfig, account_id: int,
) -> None:
    if not await is_member_of_all(membership, cfg.required_chats, account_id):
        raise MembershipRequired()


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------
@router.post("/accounts")
def open_account(
    body: OpenAccount,
    engine: Engine = Depends(get_engine),
    rules: EconomyRules = Depends(get_rules),
):
    snap = account_service.open_account(
        engine,
        body.account_id,
        username=body.username,
        display_name=body.display_name,
        referrer_id=body.referrer_id,
        rules=rules,
    )
    return _account_dict(snap)


@router.get("/accounts/{account_id}")
def get_account(
    account_id: int,
    engine: Engine = Depends(get_engine),
    rules: EconomyRules = Depends(get_rules),
):
    delayed_claims.finalize_due(engine, account_id, rules)
    snap = account_service.get_account(engine, account_id)
    return {**_account_dict(snap), "rank": account_service.rank_of(engine, account_id)}


@router.get("/accounts/{account_id}/history")
def get_history(
    account_id: int,
    limit: int = Query(20, ge=1, le=100),
    engine: Engine = Depends(get_engine),
    rules: EconomyRules = Depends(get_rules),
):
    delayed_claims.finalize_due(engine, account_id, rules)
    entries = ledger_service.history(engine, account_id, limit=limit)
    return {
        "entries": [
            {
                **asdict(e),
                "created_at": e.created_at.isoformat() if e.created_at else None,
            }
            for e in entries
        ],
    }


@router.get("/accounts/{account_id}/earn-status")
def earn_status(
    account_id: int,
    engine: Engine = Depends(get_engine),
    rules: EconomyRules = Depends(get_rules),
):
    """Today's consumption of both quota pools."""
    delayed_claims.finalize_due(engine, account_id, rules)
    pools = {}
    for pool in QuotaPool:
        status = quota_tracker.quota_status(engine, account_id, pool, rules)
        pools[pool.value] = {
            "consumed": status.consumed,
            "limit": status.limit,
            "remaining": status.remaining,
        }
    return {"account_id": account_id, "day": status.day.isoformat(), "pools": pools}


@router.put("/accounts/{account_id}/payout-details")
def put_payout_details(
    account_id: int,
    body: PayoutDetailsBody,
    engine: Engine = Depends(get_engine),
    rules: EconomyRules = Depends(get_rules),
):
    snap = withdrawal_service.save_payout_details(
        engine, account_id, body.account_name, body.account_number, body.bank_code, rules,
    )
    return asdict(snap)


@router.get("/accounts/{account_id}/payout-details")
def get_payout_details(account_id: int, engine: Engine = Depends(get_engine)):
    snap = withdrawal_service.get_payout_details(engine, account_id)
    return {"account_id": account_id, "details": asdict(snap) if snap else None}


@router.get("/accounts/{account_id}/referrals")
def get_referrals(
    account_id: int,
    engine: Engine = Depends(get_engine),
    rules: EconomyRules = Depends(get_rules),
):
    """Accounts this member invited and what the invitations earned."""
    referred = referral_service.referrals_of(engine, account_id)
    return {
        "account_id": account_id,
        "referred": referred,
        "total": len(referred),
        "points_per_referral": rules.referral_points,
        "earnings": len(referred) * rules.referral_points,
    }


@router.get("/accounts/{account_id}/withdrawals")
def get_account_withdrawals(account_id: int, engine: Engine = Depends(get_engine)):
    rows = withdrawal_service.withdrawals_for(engine, account_id)
    return {"withdrawals": [r.to_dict() for r in rows]}


@router.get("/accounts/{account_id}/task-stats")
def get_task_stats(
    account_id: int,
    engine: Engine = Depends(get_engine),
    rules: EconomyRules = Depends(get_rules),
):
    delayed_claims.finalize_due(engine, account_id, rules)
    stats = task_service.task_statistics(engine, account_id)
    return {
        "account_id": account_id,
        "total_completed": stats.total_completed,
        "total_points": stats.total_points,
        "by_kind": stats.by_kind,
        "points_by_kind": stats.points_by_kind,
        "last_completed_at": (
            stats.last_completed_at.isoformat() if stats.last_completed_at else None
        ),
    }


@router.get("/accounts/{account_id}/claims")
def get_claims(
    account_id: int,
    engine: Engine = Depends(get_engine),
    rules: EconomyRules = Depends(get_rules),
):
    states = delayed_claims.list_claims(engine, account_id, rules)
    return {"claims": [_claim_dict(s) for s in states]}


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------
def _entry_dict(entry: catalog_service.CatalogEntry) -> dict:
    return {
        "id": entry.id,
        "kind": entry.kind,
        "name": entry.name,
        "target": entry.target,
        "points": entry.points,
        "platform": entry.platform,
        "description": entry.description,
    }


@router.get("/tasks/{account_id}")
def list_available_tasks(
    account_id: int,
    engine: Engine = Depends(get_engine),
    rules: EconomyRules = Depends(get_rules),
):
    """Open catalog tasks for the member, with today's task quota."""
    available = catalog_service.available_tasks(engine, account_id, rules)
    quota = quota_tracker.quota_status(engine, account_id, QuotaPool.TASK, rules)
    return {
        "account_id": account_id,
        "channels": [_entry_dict(e) for e in available.channels],
        "groups": [_entry_dict(e) for e in available.groups],
        "social": [
            {
                **_entry_dict(offer.task),
                "claim_status": offer.claim_status,
                "available_at": offer.available_at.isoformat() if offer.available_at else None,
            }
            for offer in available.social
        ],
        "quota": {"consumed": quota.consumed, "limit": quota.limit, "remaining": quota.remaining},
    }


async def _complete_join(
    body: CatalogTaskRef,
    kind: TaskKind,
    complete,
    engine: Engine,
    rules: EconomyRules,
    membership: MembershipChecker,
) -> dict:
    entry = await run_db(catalog_service.get_active_task, engine, body.task_id, kind)
    if not await membership.is_member(entry.target, body.account_id):
        raise MembershipRequired(f"Join {entry.target} first.")
    result = await run_db(complete, engine, body.account_id, entry.id, rules)
    return _credit_dict(result)


@router.post("/tasks/channel-join")
async def channel_join(
    body: CatalogTaskRef,
    engine: Engine = Depends(get_engine),
    rules: EconomyRules = Depends(get_rules),
    membership: MembershipChecker = Depends(get_membership),
):
    return await _complete_join(
        body, TaskKind.CHANNEL_JOIN, task_service.complete_channel_join,
        engine, rules, membership,
    )


@router.post("/tasks/group-join")
async def group_join(
    body: CatalogTaskRef,
    engine: Engine = Depends(get_engine),
    rules: EconomyRules = Depends(get_rules),
    membership: MembershipChecker = Depends(get_membership),
):
    return await _complete_join(
        body, TaskKind.GROUP_JOIN, task_service.complete_group_join,
        engine, rules, membership,
    )


@router.post("/tasks/daily-login")
def daily_login(
    body: AccountRef,
    engine: Engine = Depends(get_engine),
    rules: EconomyRules = Depends(get_rules),
):
    return _credit_dict(task_service.complete_daily_login(engine, body.account_id, rules))


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------
@router.post("/claims/daily")
async def daily_claim(
    body: DailyClaim,
    engine: Engine = Depends(get_engine),
    rules: EconomyRules = Depends(get_rules),
    cfg: LedgerConfig = Depends(get_config),
    membership: MembershipChecker = Depends(get_membership),
):
    await _require_membership(membership, cfg, body.account_id)
    result = await run_db(
        claim_service.claim_daily_reward, engine, body.account_id, rules,
        request_id=body.request_id,
    )
    return _credit_dict(result)


def _claim_dict(state: delayed_claims.ClaimState) -> dict:
    return {
        "source_id": state.source_id,
        "status": state.status,
        "points": state.points,
        "available_at": state.available_at.isoformat(),
        "seconds_remaining": state.seconds_remaining(),
    }


@router.post("/social/claim-request")
def social_claim_request(
    body: CatalogTaskRef,
    engine: Engine = Depends(get_engine),
    rules: EconomyRules = Depends(get_rules),
):
    """Start the maturation timer for a catalog social task."""
    state = catalog_service.claim_social_task(engine, body.account_id, body.task_id, rules)
    return _claim_dict(state)


@router.post("/social/claim-complete")
def social_claim_complete(
    body: CatalogTaskRef,
    engine: Engine = Depends(get_engine),
    rules: EconomyRules = Depends(get_rules),
):
    state = delayed_claims.poll_claim(engine, body.account_id, str(body.task_id), rules)
    return _claim_dict(state)


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------
@router.post("/withdrawals")
async def create_withdrawal(
    body: WithdrawalBody,
    engine: Engine = Depends(get_engine),
    rules: EconomyRules = Depends(get_rules),
    cfg: LedgerConfig = Depends(get_config),
    membership: MembershipChecker = Depends(get_membership),
    notifier: Notifier = Depends(get_notifier),
):
    await _require_membership(membership, cfg, body.account_id)
    snap = await run_db(
        withdrawal_service.request_withdrawal, engine, body.account_id, body.amount, rules,
    )
    if cfg.admin_chat_id is not None:
        await notifier.send(
            cfg.admin_chat_id,
            f"New withdrawal #{snap.id}: account {snap.account_id} requested "
            f"{snap.amount} points ({snap.receivable_points} after fee).",
        )
    return snap.to_dict()


# ---------------------------------------------------------------------------
# Rankings
# ---------------------------------------------------------------------------
@router.get("/leaderboard")
def get_leaderboard(
    limit: int = Query(10, ge=1, le=100),
    engine: Engine = Depends(get_engine),
):
    rows = account_service.leaderboard(engine, limit=limit)
    return {
        "entries": [
            {
                "rank": i,
                "id": r.id,
                "display_name": r.display_name or r.username,
                "lifetime_earned": r.lifetime_earned,
                "referral_count": r.referral_count,
            }
            for i, r in enumerate(rows, start=1)
        ],
    }
