"""Payment ledger with FIFO waterfall allocation.

A payment is applied to the obligation's pending late fee charges, oldest
period first; whatever is left counts toward the base obligation. The
payment, its allocations and the charge updates commit together or not at
all.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from obligation_ledger.calculators.schedule import period_bounds
from obligation_ledger.calculators.types import ZERO, ChargeStatus, Period, positive_money, to_money
from obligation_ledger.calculators.waterfall import Allocation, allocate_waterfall
from obligation_ledger.database import LedgerStore, get_for_update
from obligation_ledger.errors import NotFoundError, ValidationError
from obligation_ledger.events import EventEmitter, EventMetadata, PaymentRecorded
from obligation_ledger.models import (
    LateFeeCharge,
    Payment,
    PaymentAllocation,
    RecurringObligation,
)
from obligation_ledger.services.state_machine import ChargeStateMachine

logger = logging.getLogger(__name__)

SOURCE = "payment_service"


def paid_in_period(session: Session, obligation_id: UUID, period: Period, as_of: date) -> Decimal:
    """Sum payments dated inside the period window and not after as_of."""
    total = session.execute(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(
            Payment.obligation_id == obligation_id,
            Payment.payment_date >= period.due_date,
            Payment.payment_date < period.next_due_date,
            Payment.payment_date <= as_of,
        )
    ).scalar_one()
    return to_money(total)


def pending_charges_fifo(session: Session, obligation_id: UUID) -> list[LateFeeCharge]:
    """Pending charges for an obligation in allocation order, row-locked."""
    return list(
        session.execute(
            select(LateFeeCharge)
            .where(
                LateFeeCharge.obligation_id == obligation_id,
                LateFeeCharge.status == ChargeStatus.PENDING.value,
            )
            .order_by(
                LateFeeCharge.period_due_date,
                LateFeeCharge.created_at,
                LateFeeCharge.charge_id,
            )
            .with_for_update()
        ).scalars()
    )


@dataclass(frozen=True)
class PaymentResult:
    """A recorded payment and how it was allocated."""

    payment: Payment
    allocations: list[Allocation]
    remainder: Decimal

    @property
    def allocated_to_fees(self) -> Decimal:
        return sum((a.amount for a in self.allocations), ZERO)

    def to_dict(self) -> dict[str, Any]:
        return {
            "payment_id": str(self.payment.payment_id),
            "obligation_id": str(self.payment.obligation_id),
            "amount": str(self.payment.amount),
            "payment_date": self.payment.payment_date.isoformat(),
            "method": self.payment.method,
            "allocations": [a.to_dict() for a in self.allocations],
            "allocated_to_fees": str(self.allocated_to_fees),
            "remainder": str(self.remainder),
        }


@dataclass(frozen=True)
class PaymentBreakdown:
    payment: Payment
    allocations: list[PaymentAllocation]

    @property
    def applied_to_fees(self) -> Decimal:
        return sum((a.amount for a in self.allocations), ZERO)

    @property
    def applied_to_base(self) -> Decimal:
        return self.payment.applied_to_base


@dataclass(frozen=True)
class OutstandingBalance:
    """What is still owed on an obligation as of a date."""

    obligation_id: UUID
    period_due_date: date | None
    base_due: Decimal
    paid_in_period: Decimal
    base_outstanding: Decimal
    fees_outstanding: Decimal

    @property
    def total(self) -> Decimal:
        return self.base_outstanding + self.fees_outstanding


class PaymentService:
    """Records immutable payments and allocates them to late fees."""

    def __init__(self, store: LedgerStore, emitter: EventEmitter | None = None):
        self.store = store
        self.emitter = emitter or EventEmitter()

    def record_payment(
        self,
        obligation_id: UUID,
        amount: Decimal | str | int,
        payment_date: date,
        method: str,
        reference: str | None = None,
    ) -> PaymentResult:
        """Record a payment and run the waterfall over pending charges.

        Raises:
            InvalidAmountError: amount is not positive
            ValidationError: method missing
            NotFoundError: Obligation does not exist
        """
        amount = positive_money(amount)
        if not method or not method.strip():
            raise ValidationError("Payment method is required", field="method")

        with self.emitter.batch() as batch:
            with self.store.transaction() as session:
                get_for_update(session, RecurringObligation, obligation_id, "RecurringObligation")

                payment = Payment(
                    obligation_id=obligation_id,
                    amount=amount,
                    payment_date=payment_date,
                    method=method.strip(),
                    reference=reference,
                    applied_to_base=ZERO,
                )
                session.add(payment)
                session.flush()

                charges = pending_charges_fifo(session, obligation_id)
                by_id = {c.charge_id: c for c in charges}
                plan = allocate_waterfall(charges, amount)

                for sequence, allocation in enumerate(plan.allocations, start=1):
                    charge = by_id[allocation.charge_id]
                    if allocation.is_full:
                        ChargeStateMachine.validate_transition(
                            charge.status, ChargeStatus.PAID.value
                        )
                        charge.status = ChargeStatus.PAID.value
                    charge.amount = allocation.charge_remaining
                    session.add(
                        PaymentAllocation(
                            payment_id=payment.payment_id,
                            charge_id=charge.charge_id,
                            sequence=sequence,
                            amount=allocation.amount,
                            is_full=allocation.is_full,
                        )
                    )

                payment.applied_to_base = plan.remainder
                session.flush()

                batch.add(
                    PaymentRecorded(
                        metadata=EventMetadata.create(SOURCE),
                        payment_id=payment.payment_id,
                        obligation_id=obligation_id,
                        amount=amount,
                        payment_date=payment_date,
                        allocated_to_fees=plan.allocated,
                        remainder=plan.remainder,
                        charges_paid=tuple(a.charge_id for a in plan.allocations if a.is_full),
                    )
                )

        logger.info(
            "Recorded payment %s of %s on obligation %s: %s to %d fee(s), %s to base",
            payment.payment_id,
            amount,
            obligation_id,
            plan.allocated,
            len(plan.allocations),
            plan.remainder,
        )
        return PaymentResult(
            payment=payment, allocations=plan.allocations, remainder=plan.remainder
        )

    def get_payment_breakdown(self, payment_id: UUID) -> PaymentBreakdown:
        """What a recorded payment covered."""
        with self.store.transaction() as session:
            payment = session.get(Payment, payment_id)
            if payment is None:
                raise NotFoundError("Payment", payment_id)
            allocations = session.execute(
                select(PaymentAllocation)
                .where(PaymentAllocation.payment_id == payment_id)
                .order_by(PaymentAllocation.sequence)
            ).scalars().all()
            return PaymentBreakdown(payment=payment, allocations=list(allocations))

    def list_payments(
        self,
        obligation_id: UUID,
        start: date | None = None,
        end: date | None = None,
    ) -> list[Payment]:
        conditions: list[Any] = [Payment.obligation_id == obligation_id]
        if start is not None:
            conditions.append(Payment.payment_date >= start)
        if end is not None:
            conditions.append(Payment.payment_date <= end)

        with self.store.transaction() as session:
            return list(
                session.execute(
                    select(Payment)
                    .where(*conditions)
                    .order_by(Payment.payment_date, Payment.created_at)
                ).scalars()
            )

    def outstanding_balance(self, obligation_id: UUID, as_of: date) -> OutstandingBalance:
        """Unpaid base amount of the current period plus pending fees."""
        with self.store.transaction() as session:
            obligation = session.get(RecurringObligation, obligation_id)
            if obligation is None:
                raise NotFoundError("RecurringObligation", obligation_id)

            fees = session.execute(
                select(func.coalesce(func.sum(LateFeeCharge.amount), 0)).where(
                    LateFeeCharge.obligation_id == obligation_id,
                    LateFeeCharge.status == ChargeStatus.PENDING.value,
                )
            ).scalar_one()
            fees_outstanding = to_money(fees)

            if not obligation.is_effective_on(as_of):
                return OutstandingBalance(
                    obligation_id=obligation_id,
                    period_due_date=None,
                    base_due=ZERO,
                    paid_in_period=ZERO,
                    base_outstanding=ZERO,
                    fees_outstanding=fees_outstanding,
                )

            period = period_bounds(
                obligation.frequency, obligation.anchor_day, as_of, obligation.start_date
            )
            if period.due_date < obligation.start_date:
                base_due = ZERO
                paid = ZERO
            else:
                base_due = obligation.amount
                paid = paid_in_period(session, obligation_id, period, as_of)

            return OutstandingBalance(
                obligation_id=obligation_id,
                period_due_date=period.due_date,
                base_due=base_due,
                paid_in_period=paid,
                base_outstanding=max(base_due - paid, ZERO),
                fees_outstanding=fees_outstanding,
            )
