"""
taskledger — Points Ledger for Task-Based Reward Communities
=============================================================
Turns task completions (channel/group joins, daily check-ins, social
actions, referrals, daily claims) into balance changes, and escrows
withdrawals until an admin decides them.  Every balance mutation goes
through one ledger primitive so retries and concurrent requests can never
credit the same completion twice or overrun a daily quota.

Package layout::

    taskledger/
    ├── config.py              # YAML → typed infrastructure config
    ├── constants.py           # task kinds, quota pools
    ├── database/
    │   ├── engine.py          # SQLAlchemy engine + async helper
    │   ├── models.py          # ORM models
    │   └── seed.py            # default economy settings
    ├── engine/
    │   ├── errors.py          # domain error taxonomy
    │   ├── rules.py           # EconomyRules + pure reward maths
    │   └── cache.py           # settings cache → EconomyRules
    ├── services/
    │   ├── ledger_service.py       # credit / debit / refund primitive
    │   ├── completion_registry.py  # at-most-once completions
    │   ├── quota_tracker.py        # atomic daily quotas
    │   ├── delayed_claims.py       # time-gated social claims
    │   ├── referral_service.py     # referral cascade
    │   ├── withdrawal_service.py   # withdrawal escrow + payout details
    │   ├── claim_service.py        # random daily claim
    │   ├── catalog_service.py      # channels, groups, social tasks
    │   ├── task_service.py         # join / login task entry points
    │   ├── account_service.py      # account store + leaderboard
    │   ├── admin_service.py        # audited admin mutations
    │   ├── settings_service.py     # settings CRUD
    │   └── notifications.py        # notifier + membership collaborators
    └── api/
        ├── main.py            # FastAPI app factory
        ├── deps.py            # dependency injection, admin JWT guard
        └── routes/            # public + admin REST endpoints
"""

__version__ = "0.1.0"
