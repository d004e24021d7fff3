"""
taskledger.api.routes.admin — Admin endpoints (JWT-protected)
==============================================================
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, model_validator
from sqlalchemy import Engine

from taskledger.api.deps import (
    admin_id,
    get_cache,
    get_current_admin,
    get_engine,
    get_notifier,
    get_rules,
)
from taskledger.constants import CATALOG_KINDS, TaskKind
from taskledger.database.engine import run_db
from taskledger.engine.cache import ConfigCache
from taskledger.engine.rules import EconomyRules
from taskledger.services import (
    admin_service,
    catalog_service,
    settings_service,
    withdrawal_service,
)
from taskledger.services.notifications import Notifier

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class Decision(BaseModel):
    note: str | None = Field(default=None, max_length=500)


class BalanceAdjust(BaseModel):
    delta: int
    reason: str = ""


class BanBody(BaseModel):
    banned: bool = True
    reason: str | None = None


class SettingUpdate(BaseModel):
    key: str
    value: Any
    category: str | None = None
    description: str | None = None


class CatalogTaskCreate(BaseModel):
    kind: TaskKind
    name: str = Field(min_length=1, max_length=200)
    target: str = Field(min_length=1, max_length=300)
    points: int | None = Field(default=None, ge=0)
    platform: str | None = Field(default=None, max_length=30)
    description: str | None = None

    @model_validator(mode="after")
    def check_kind_and_platform(self):
        if self.kind == TaskKind.SOCIAL and not self.platform:
            raise ValueError("social tasks need a platform")
        if self.kind not in CATALOG_KINDS:
            raise ValueError(f"{self.kind} tasks are not published in the catalog")
        return self


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------
@router.get("/withdrawals")
def get_withdrawals(
    status: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    rows = withdrawal_service.list_withdrawals(engine, status=status, limit=limit)
    return {"withdrawals": [r.to_dict() for r in rows]}


async def _decide(
    request_id: int,
    approve: bool,
    body: Decision,
    admin: dict,
    engine: Engine,
    notifier: Notifier,
) -> dict:
    snap = await run_db(
        withdrawal_service.decide_withdrawal, engine, request_id, approve,
        admin_id=admin_id(admin), note=body.note,
    )
    if approve:
        text = (
            f"Your withdrawal #{snap.id} of {snap.amount} points was approved. "
            f"{snap.receivable_points} points will be paid out."
        )
    else:
        text = (
            f"Your withdrawal #{snap.id} was rejected and {snap.amount} points "
            "were returned to your balance."
        )
    await notifier.send(snap.account_id, text)
    return snap.to_dict()


@router.post("/withdrawals/{request_id}/approve")
async def approve_withdrawal(
    request_id: int,
    body: Decision | None = None,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
):
    return await _decide(request_id, True, body or Decision(), admin, engine, notifier)


@router.post("/withdrawals/{request_id}/reject")
async def reject_withdrawal(
    request_id: int,
    body: Decision | None = None,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
):
    return await _decide(request_id, False, body or Decision(), admin, engine, notifier)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------
@router.post("/accounts/{account_id}/adjust")
def adjust_balance(
    account_id: int,
    body: BalanceAdjust,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    balance = admin_service.adjust_balance(
        engine,
        account_id=account_id,
        delta=body.delta,
        admin_id=admin_id(admin),
        reason=body.reason or None,
    )
    return {"account_id": account_id, "balance": balance}


@router.post("/accounts/{account_id}/ban")
def ban_account(
    account_id: int,
    body: BanBody,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    admin_service.set_ban(
        engine,
        account_id=account_id,
        banned=body.banned,
        admin_id=admin_id(admin),
        reason=body.reason,
    )
    return {"account_id": account_id, "banned": body.banned}


# ---------------------------------------------------------------------------
# Task catalog
# ---------------------------------------------------------------------------
@router.get("/tasks")
def get_catalog(
    kind: TaskKind | None = Query(None),
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    rows = catalog_service.list_tasks(engine, kind=kind)
    return {"tasks": [r.to_dict() for r in rows]}


@router.post("/tasks")
def create_catalog_task(
    body: CatalogTaskCreate,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    rules: EconomyRules = Depends(get_rules),
):
    points = body.points
    if points is None:
        points = catalog_service.default_points(rules, body.kind)
    entry = catalog_service.add_task(
        engine,
        kind=body.kind,
        name=body.name,
        target=body.target,
        points=points,
        platform=body.platform,
        description=body.description,
        admin_id=admin_id(admin),
    )
    return entry.to_dict()


@router.post("/tasks/{task_id}/toggle")
def toggle_catalog_task(
    task_id: int,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    return catalog_service.toggle_task(engine, task_id, admin_id=admin_id(admin)).to_dict()


@router.delete("/tasks/{task_id}")
def retire_catalog_task(
    task_id: int,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    """Deactivate the task; completion history keeps referring to it."""
    return catalog_service.retire_task(engine, task_id, admin_id=admin_id(admin)).to_dict()


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
@router.get("/settings")
def get_all_settings(
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    return {"settings": settings_service.get_all_settings(engine)}


@router.put("/settings")
def update_settings(
    body: list[SettingUpdate],
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    cache: ConfigCache = Depends(get_cache),
):
    items = [
        {k: v for k, v in item.model_dump().items() if v is not None or k == "value"}
        for item in body
    ]
    count = settings_service.bulk_upsert(
        engine, items, actor_id=admin_id(admin), cache=cache,
    )
    return {"updated": count}


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------
@router.get("/audit")
def get_audit_log(
    limit: int = Query(50, ge=1, le=200),
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    entries = admin_service.audit_log(engine, limit=limit)
    return {
        "entries": [
            {
                **asdict(e),
                "timestamp": e.timestamp.isoformat() if e.timestamp else None,
            }
            for e in entries
        ],
    }
