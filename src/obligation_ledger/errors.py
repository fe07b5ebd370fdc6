"""Typed errors raised by the ledger engine.

Every error carries the context a caller needs to decide between a retry
and a manual correction (ids, period, balances).
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any


class LedgerError(Exception):
    """Base class for all ledger engine errors."""


class ValidationError(LedgerError):
    """Input has the wrong shape or is out of range."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidAmountError(ValidationError):
    """Raised when a money amount is not strictly positive."""

    def __init__(self, amount: Any, field: str = "amount"):
        self.amount = amount
        super().__init__(f"{field} must be positive, got {amount}", field=field)


class NotFoundError(LedgerError):
    """A referenced obligation, account, category or record does not exist."""

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class ConflictError(LedgerError):
    """The operation conflicts with current ledger state."""


class DuplicateChargeError(ConflictError):
    """A late-fee charge already exists for the obligation and period."""

    def __init__(self, obligation_id: Any, period_due_date: date):
        self.obligation_id = obligation_id
        self.period_due_date = period_due_date
        super().__init__(
            f"Late fee already charged for obligation {obligation_id} "
            f"period {period_due_date.isoformat()}"
        )


class CategoryCycleError(ConflictError):
    """Setting the parent would make a category its own ancestor."""

    def __init__(self, category_id: Any, parent_id: Any):
        self.category_id = category_id
        self.parent_id = parent_id
        super().__init__(
            f"Cannot set category {parent_id} as parent of {category_id}: "
            "circular reference"
        )


class InsufficientFundsError(ConflictError):
    """A withdrawal would drive a trust account balance negative."""

    def __init__(self, account_id: Any, balance: Decimal, requested: Decimal):
        self.account_id = account_id
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Insufficient funds in trust account {account_id}: "
            f"balance {balance}, requested {requested}"
        )


class InvalidTransitionError(ConflictError):
    """Raised when an invalid status transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class IntegrityError(LedgerError):
    """A recomputed balance disagrees with the stored balance.

    Reported only; the engine never corrects the data itself.
    """

    def __init__(
        self,
        account_id: Any,
        cached_balance: Decimal,
        computed_balance: Decimal,
        problems: list[str] | None = None,
    ):
        self.account_id = account_id
        self.cached_balance = cached_balance
        self.computed_balance = computed_balance
        self.problems = problems or []
        msg = (
            f"Trust account {account_id} balance mismatch: "
            f"cached {cached_balance}, computed {computed_balance}"
        )
        if self.problems:
            msg += "; " + "; ".join(self.problems)
        super().__init__(msg)
