"""
taskledger.engine.errors — Domain Error Taxonomy
=================================================

Every business failure the ledger can report.  All derive from
:class:`LedgerError` and carry a stable ``code`` so the API layer can map
them to HTTP statuses without string matching.

Nothing here is fatal to the process: each error belongs to one request,
and because every operation is a single transaction, a failed request
leaves no partial state behind.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all ledger business errors."""

    code: str = "ledger_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else self.code


# ---------------------------------------------------------------------------
# Completion / quota
# ---------------------------------------------------------------------------
class DuplicateCompletion(LedgerError):
    """This completion has already been credited."""
    code = "duplicate_completion"


class QuotaExceeded(LedgerError):
    """Daily limit reached. Try again tomorrow."""
    code = "quota_exceeded"

    def __init__(self, pool: str, limit: int) -> None:
        self.pool = pool
        self.limit = limit
        super().__init__(f"Daily {pool} limit of {limit} reached. Try again tomorrow.")


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------
class AccountNotFound(LedgerError):
    """Account not found."""
    code = "account_not_found"

    def __init__(self, account_id: int) -> None:
        self.account_id = account_id
        super().__init__(f"Account {account_id} not found.")


class AccountBanned(LedgerError):
    """Account banned."""
    code = "account_banned"


class MembershipRequired(LedgerError):
    """Join the community first."""
    code = "membership_required"


# ---------------------------------------------------------------------------
# Task catalog
# ---------------------------------------------------------------------------
class CatalogTaskNotFound(LedgerError):
    """Task not found."""
    code = "task_not_found"

    def __init__(self, task_id: int) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found or no longer active.")


class CatalogTaskExists(LedgerError):
    """This task is already listed."""
    code = "task_exists"


# ---------------------------------------------------------------------------
# Delayed claims
# ---------------------------------------------------------------------------
class ClaimNotFound(LedgerError):
    """No pending claim."""
    code = "claim_not_found"


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------
class InsufficientBalance(LedgerError):
    """Insufficient points."""
    code = "insufficient_balance"


class BelowMinimum(LedgerError):
    code = "below_minimum"

    def __init__(self, minimum: int) -> None:
        self.minimum = minimum
        super().__init__(f"Minimum withdrawal is {minimum} points.")


class AboveMaximum(LedgerError):
    code = "above_maximum"

    def __init__(self, maximum: int) -> None:
        self.maximum = maximum
        super().__init__(f"Maximum withdrawal is {maximum} points.")


class DailyLimitReached(LedgerError):
    """You can only submit one withdrawal per day."""
    code = "daily_limit_reached"


class MissingPayoutDetails(LedgerError):
    """Please add payout details first."""
    code = "missing_payout_details"


class WithdrawalsDisabled(LedgerError):
    """Withdrawals are closed for now. Please try again later."""
    code = "withdrawals_disabled"


class InsufficientReferrals(LedgerError):
    code = "insufficient_referrals"

    def __init__(self, required: int) -> None:
        self.required = required
        super().__init__(
            f"You need at least {required} successful referrals to withdraw."
        )


class WithdrawalNotFound(LedgerError):
    """Withdrawal request not found."""
    code = "withdrawal_not_found"


class WithdrawalAlreadyProcessed(LedgerError):
    """Withdrawal request has already been processed."""
    code = "withdrawal_already_processed"
