"""Waterfall allocation of a payment across outstanding charges."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID

from obligation_ledger.calculators.types import ZERO


class OutstandingCharge(Protocol):
    charge_id: UUID
    amount: Decimal


@dataclass(frozen=True)
class Allocation:
    """Part of a payment applied to one charge."""

    charge_id: UUID
    amount: Decimal
    is_full: bool
    charge_remaining: Decimal  # Outstanding on the charge after this allocation

    def to_dict(self) -> dict[str, Any]:
        return {
            "charge_id": str(self.charge_id),
            "amount": str(self.amount),
            "is_full": self.is_full,
            "charge_remaining": str(self.charge_remaining),
        }


@dataclass(frozen=True)
class WaterfallPlan:
    """Result of walking a payment through the charges.

    Invariant: sum(a.amount for a in allocations) + remainder == payment amount.
    """

    payment_amount: Decimal
    allocations: list[Allocation] = field(default_factory=list)
    remainder: Decimal = ZERO

    @property
    def allocated(self) -> Decimal:
        return sum((a.amount for a in self.allocations), ZERO)


def allocate_waterfall(charges: Sequence[OutstandingCharge], amount: Decimal) -> WaterfallPlan:
    """Apply amount to charges in the given order until it runs out.

    The caller supplies charges already in FIFO order (oldest period
    first). A charge is fully paid when the remaining funds cover it;
    otherwise it receives whatever is left and the walk stops.
    """
    remaining = amount
    allocations: list[Allocation] = []

    for charge in charges:
        if remaining <= ZERO:
            break
        if charge.amount <= ZERO:
            continue
        if remaining >= charge.amount:
            allocations.append(
                Allocation(
                    charge_id=charge.charge_id,
                    amount=charge.amount,
                    is_full=True,
                    charge_remaining=ZERO,
                )
            )
            remaining -= charge.amount
        else:
            allocations.append(
                Allocation(
                    charge_id=charge.charge_id,
                    amount=remaining,
                    is_full=False,
                    charge_remaining=charge.amount - remaining,
                )
            )
            remaining = ZERO
            break

    return WaterfallPlan(payment_amount=amount, allocations=allocations, remainder=remaining)
