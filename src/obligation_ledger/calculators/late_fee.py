"""Late fee amount calculation."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from obligation_ledger.calculators.types import CENT, ZERO, FeeType, parse_enum

HUNDRED = Decimal("100")


class FeePolicy(Protocol):
    """Anything shaped like a LateFeeConfiguration row."""

    fee_type: str
    fee_value: Decimal
    minimum_fee: Decimal | None
    maximum_fee: Decimal | None


def clamp_fee(
    fee: Decimal,
    minimum_fee: Decimal | None,
    maximum_fee: Decimal | None,
) -> Decimal:
    """Apply the minimum first, then the maximum.

    A tiny fee is floored before it is capped, so with both bounds set the
    result always lies in [minimum_fee, maximum_fee].
    """
    if minimum_fee is not None and fee < minimum_fee:
        fee = minimum_fee
    if maximum_fee is not None and fee > maximum_fee:
        fee = maximum_fee
    return fee


def compute_fee(policy: FeePolicy, obligation_amount: Decimal, paid: Decimal) -> Decimal:
    """Compute the late fee for an under-paid period.

    Args:
        policy: Fee type, value and optional bounds
        obligation_amount: Amount due for the period
        paid: Amount already paid toward the period

    Returns:
        Fee amount quantized to cents. Zero if nothing is outstanding.
    """
    outstanding = obligation_amount - paid
    if outstanding <= ZERO:
        return ZERO

    fee_type = parse_enum(FeeType, policy.fee_type, "fee_type")
    if fee_type == FeeType.FIXED:
        return Decimal(policy.fee_value).quantize(CENT, rounding=ROUND_HALF_UP)

    raw = outstanding * Decimal(policy.fee_value) / HUNDRED
    fee = raw.quantize(CENT, rounding=ROUND_HALF_UP)
    return clamp_fee(fee, policy.minimum_fee, policy.maximum_fee)
