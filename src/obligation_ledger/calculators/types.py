"""Type definitions shared by the calculators and services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from obligation_ledger.errors import InvalidAmountError, ValidationError

CENT = Decimal("0.01")
RATE_SCALE = Decimal("0.0001")
ZERO = Decimal("0")


class Frequency(str, Enum):
    """Obligation recurrence."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class ObligationKind(str, Enum):
    RENT = "rent"
    EXPENSE = "expense"


class FeeType(str, Enum):
    """Late fee calculation types."""

    FIXED = "fixed"
    PERCENTAGE = "percentage"


class ChargeStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    WAIVED = "waived"
    CANCELLED = "cancelled"


class ExpenseStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


class TrustAccountType(str, Enum):
    SECURITY_DEPOSIT = "security_deposit"
    ESCROW = "escrow"
    RESERVE = "reserve"


def parse_enum(enum_cls: type[Enum], value: Any, field: str) -> Any:
    """Coerce a raw value into an enum member, raising ValidationError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"Invalid {field} {value!r}; must be one of: {allowed}", field=field
        ) from None


def _to_decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number, got {value!r}", field=field)
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number, got {value!r}", field=field) from None
    if not amount.is_finite():
        raise ValidationError(f"{field} must be finite, got {value!r}", field=field)
    return amount


def to_money(value: Any, field: str = "amount") -> Decimal:
    """Convert a value to a Decimal of whole cents.

    Floats go through str() so 0.1 becomes Decimal('0.10'), not its
    binary expansion. Fractions of a cent are rejected, never rounded.
    """
    amount = _to_decimal(value, field)
    try:
        cents = amount.quantize(CENT)
    except InvalidOperation:
        raise ValidationError(f"{field} is out of range, got {value!r}", field=field) from None
    if cents != amount:
        raise ValidationError(
            f"{field} must be a whole number of cents, got {value!r}", field=field
        )
    return cents


def positive_money(value: Any, field: str = "amount") -> Decimal:
    """Convert to money and require it to be strictly positive."""
    amount = to_money(value, field)
    if amount <= ZERO:
        raise InvalidAmountError(value, field)
    return amount


def positive_rate(value: Any, field: str = "rate") -> Decimal:
    """Convert a percentage rate, keeping up to four decimal places."""
    rate = _to_decimal(value, field)
    if rate <= ZERO:
        raise InvalidAmountError(value, field)
    try:
        scaled = rate.quantize(RATE_SCALE)
    except InvalidOperation:
        raise ValidationError(f"{field} is out of range, got {value!r}", field=field) from None
    if scaled != rate:
        raise ValidationError(
            f"{field} allows at most four decimal places, got {value!r}", field=field
        )
    return rate


@dataclass(frozen=True)
class Period:
    """Half-open window [due_date, next_due_date) of one obligation period."""

    due_date: date
    next_due_date: date

    def contains(self, day: date) -> bool:
        return self.due_date <= day < self.next_due_date
