"""
taskledger.database.models — SQLAlchemy 2.0 Data Models
========================================================

Tables:
- accounts              — One row per member (external user id PK)
- completion_records    — Credited completions, unique per (account, kind, reference)
- daily_quota_counters  — Per-account, per-day, per-pool consumption
- delayed_claims        — Time-gated social claims (pending → completed)
- withdrawal_requests   — Escrowed withdrawals awaiting an admin decision
- payout_details        — Where an account's withdrawals are paid
- ledger_history        — Append-only journal of every balance change
- settings              — Economy tuning key/value store
- admin_log             — Append-only audit trail of admin actions
- task_catalog          — Channels, groups and social actions members can be rewarded for

The unique constraints on ``completion_records``, ``daily_quota_counters``
and ``delayed_claims`` are the concurrency gates of the ledger: services
rely on the database rejecting the second writer rather than on
read-then-write checks in Python.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from taskledger.constants import ClaimStatus, WithdrawalStatus


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all taskledger ORM models."""


# ---------------------------------------------------------------------------
# Accounts — one row per member
# ---------------------------------------------------------------------------
class Account(Base):
    """A member's balance and counters.

    Only :mod:`taskledger.services.ledger_service` changes ``balance`` and
    ``lifetime_earned``.
    """
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    username: Mapped[str | None] = mapped_column(String(100), default=None)
    display_name: Mapped[str | None] = mapped_column(String(200), default=None)
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lifetime_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    referral_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_banned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    referrer_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="SET NULL"), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    payout_details: Mapped[PayoutDetails | None] = relationship(
        back_populates="account", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
        Index("ix_accounts_lifetime_earned", "lifetime_earned"),
        Index("ix_accounts_balance", "balance"),
        Index("ix_accounts_referrer", "referrer_id"),
    )

    def __repr__(self) -> str:
        return f"<Account id={self.id} balance={self.balance}>"


# ---------------------------------------------------------------------------
# CatalogTask — what members can be rewarded for
# ---------------------------------------------------------------------------
class CatalogTask(Base):
    """A channel, group or social action published by an admin.

    ``target`` is the chat identifier for joins and the link for social
    tasks.  Rows are never deleted, only deactivated, so completion
    references (the row id) stay resolvable.
    """
    __tablename__ = "task_catalog"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    target: Mapped[str] = mapped_column(String(300), nullable=False)
    platform: Mapped[str | None] = mapped_column(String(30), default=None)
    points_reward: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("points_reward >= 0", name="ck_task_catalog_points_non_negative"),
        UniqueConstraint("kind", "target", name="uq_task_catalog_kind_target"),
        Index("ix_task_catalog_kind_active", "kind", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<CatalogTask id={self.id} kind={self.kind!r} target={self.target!r}>"


# ---------------------------------------------------------------------------
# CompletionRecord — at-most-once registry
# ---------------------------------------------------------------------------
class CompletionRecord(Base):
    __tablename__ = "completion_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    reference: Mapped[str] = mapped_column(String(100), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "account_id", "kind", "reference",
            name="uq_completion_records_account_kind_ref",
        ),
        Index("ix_completion_records_kind_time", "kind", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<CompletionRecord account={self.account_id} "
            f"kind={self.kind!r} ref={self.reference!r}>"
        )


# ---------------------------------------------------------------------------
# DailyQuotaCounter — one row per (account, day, pool)
# ---------------------------------------------------------------------------
class DailyQuotaCounter(Base):
    """Reset implicitly by keying on the calendar day; never deleted."""
    __tablename__ = "daily_quota_counters"

    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True
    )
    day: Mapped[date] = mapped_column(Date, primary_key=True)
    pool: Mapped[str] = mapped_column(String(10), primary_key=True)
    consumed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return (
            f"<DailyQuotaCounter account={self.account_id} day={self.day} "
            f"pool={self.pool!r} consumed={self.consumed}>"
        )


# ---------------------------------------------------------------------------
# DelayedClaim — pending → completed, exactly once
# ---------------------------------------------------------------------------
class DelayedClaim(Base):
    __tablename__ = "delayed_claims"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    source_id: Mapped[str] = mapped_column(String(100), nullable=False)
    platform: Mapped[str | None] = mapped_column(String(30), default=None)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ClaimStatus.PENDING.value
    )
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    available_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    __table_args__ = (
        UniqueConstraint("account_id", "source_id", name="uq_delayed_claims_account_source"),
        Index("ix_delayed_claims_due", "account_id", "status", "available_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<DelayedClaim account={self.account_id} source={self.source_id!r} "
            f"status={self.status}>"
        )


# ---------------------------------------------------------------------------
# WithdrawalRequest — pessimistic hold
# ---------------------------------------------------------------------------
class WithdrawalRequest(Base):
    """Balance is debited when the row is created.

    Rejection refunds ``amount``; approval changes nothing but the status.
    """
    __tablename__ = "withdrawal_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    fee_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    receivable_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WithdrawalStatus.PENDING.value
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    processed_by: Mapped[int | None] = mapped_column(BigInteger, default=None)
    note: Mapped[str | None] = mapped_column(Text, default=None)

    __table_args__ = (
        Index("ix_withdrawal_requests_account_time", "account_id", "created_at"),
        Index("ix_withdrawal_requests_status", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<WithdrawalRequest id={self.id} account={self.account_id} "
            f"amount={self.amount} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# PayoutDetails — one destination per account
# ---------------------------------------------------------------------------
class PayoutDetails(Base):
    __tablename__ = "payout_details"

    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True
    )
    account_name: Mapped[str] = mapped_column(String(200), nullable=False)
    account_number: Mapped[str] = mapped_column(String(50), nullable=False)
    bank_code: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    account: Mapped[Account] = relationship(back_populates="payout_details")

    def __repr__(self) -> str:
        return f"<PayoutDetails account={self.account_id} bank={self.bank_code!r}>"


# ---------------------------------------------------------------------------
# LedgerEntry — append-only balance journal
# ---------------------------------------------------------------------------
class LedgerEntry(Base):
    """One row per balance change.  Used for audits and rankings."""
    __tablename__ = "ledger_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), default=None)
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_ledger_history_account_time", "account_id", "created_at"),
        Index("ix_ledger_history_kind_time", "kind", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry account={self.account_id} kind={self.kind!r} "
            f"delta={self.delta}>"
        )


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"


# ---------------------------------------------------------------------------
# Setting — economy tuning key/value store
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value configuration store.

    Every economy tuning knob (points per task, quotas, delays, withdrawal
    bounds) lives here so admins can adjust values without redeploying.
    Values are stored as JSON strings; typed access goes through
    :class:`~taskledger.engine.cache.ConfigCache`.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_settings_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r} category={self.category!r}>"
