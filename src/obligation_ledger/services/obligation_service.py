"""Recurring obligation registry."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select

from obligation_ledger.calculators.types import (
    Frequency,
    ObligationKind,
    parse_enum,
    positive_money,
    to_money,
)
from obligation_ledger.database import LedgerStore, get_for_update
from obligation_ledger.errors import NotFoundError, ValidationError
from obligation_ledger.models import (
    ExpenseCategory,
    Lease,
    Property,
    RecurringObligation,
    Unit,
)
from obligation_ledger.models.base import utcnow

logger = logging.getLogger(__name__)


class ObligationService:
    """Creates and soft-deactivates recurring obligations.

    Obligations are never hard-deleted; superseding one means
    deactivating it and creating a replacement.
    """

    def __init__(self, store: LedgerStore):
        self.store = store

    def create_obligation(
        self,
        *,
        property_id: UUID,
        amount: Decimal | str | int,
        frequency: Frequency | str,
        anchor_day: int,
        start_date: date,
        end_date: date | None = None,
        kind: ObligationKind | str = ObligationKind.RENT,
        unit_id: UUID | None = None,
        lease_id: UUID | None = None,
        expense_category_id: UUID | None = None,
        vendor_name: str | None = None,
        description: str | None = None,
        tax_amount: Decimal | str | int = Decimal("0"),
    ) -> RecurringObligation:
        """Create an active recurring obligation.

        Raises:
            ValidationError: Bad amount, frequency, anchor or window
            NotFoundError: Property, unit, lease or category missing
        """
        amount = positive_money(amount)
        tax = to_money(tax_amount, "tax_amount")
        if tax < 0:
            raise ValidationError("tax_amount must not be negative", field="tax_amount")
        freq = parse_enum(Frequency, frequency, "frequency")
        obligation_kind = parse_enum(ObligationKind, kind, "kind")
        if isinstance(anchor_day, bool) or not isinstance(anchor_day, int):
            raise ValidationError("anchor_day must be an integer", field="anchor_day")
        if not 1 <= anchor_day <= 31:
            raise ValidationError(
                f"anchor_day must be between 1 and 31, got {anchor_day}", field="anchor_day"
            )
        if end_date is not None and end_date < start_date:
            raise ValidationError("end_date must not be before start_date", field="end_date")
        if obligation_kind == ObligationKind.EXPENSE and expense_category_id is None:
            raise ValidationError(
                "Expense obligations need an expense_category_id",
                field="expense_category_id",
            )

        with self.store.transaction() as session:
            if session.get(Property, property_id) is None:
                raise NotFoundError("Property", property_id)
            if lease_id is not None:
                lease = session.get(Lease, lease_id)
                if lease is None:
                    raise NotFoundError("Lease", lease_id)
                if unit_id is None:
                    unit_id = lease.unit_id
                elif lease.unit_id != unit_id:
                    raise ValidationError(
                        f"Lease {lease_id} does not occupy unit {unit_id}", field="lease_id"
                    )
            if unit_id is not None:
                unit = session.get(Unit, unit_id)
                if unit is None:
                    raise NotFoundError("Unit", unit_id)
                if unit.property_id != property_id:
                    raise ValidationError(
                        f"Unit {unit_id} does not belong to property {property_id}",
                        field="unit_id",
                    )
            if expense_category_id is not None:
                category = session.get(ExpenseCategory, expense_category_id)
                if category is None or not category.is_active:
                    raise NotFoundError("ExpenseCategory", expense_category_id)

            obligation = RecurringObligation(
                property_id=property_id,
                unit_id=unit_id,
                lease_id=lease_id,
                kind=obligation_kind.value,
                amount=amount,
                frequency=freq.value,
                anchor_day=anchor_day,
                start_date=start_date,
                end_date=end_date,
                is_active=True,
                expense_category_id=expense_category_id,
                vendor_name=vendor_name,
                description=description,
                tax_amount=tax,
            )
            session.add(obligation)
            session.flush()

        logger.info(
            "Created %s obligation %s: %s %s due day %d",
            obligation.kind,
            obligation.obligation_id,
            obligation.amount,
            obligation.frequency,
            obligation.anchor_day,
        )
        return obligation

    def deactivate_obligation(self, obligation_id: UUID) -> bool:
        """Soft-deactivate an obligation.

        Returns True if it was active, False if already inactive.
        """
        with self.store.transaction() as session:
            obligation = get_for_update(
                session, RecurringObligation, obligation_id, "RecurringObligation"
            )
            if not obligation.is_active:
                return False
            obligation.is_active = False
            obligation.deactivated_at = utcnow()

        logger.info("Deactivated obligation %s", obligation_id)
        return True

    def get_obligation(self, obligation_id: UUID) -> RecurringObligation:
        with self.store.transaction() as session:
            obligation = session.get(RecurringObligation, obligation_id)
            if obligation is None:
                raise NotFoundError("RecurringObligation", obligation_id)
            return obligation

    def list_obligations(
        self,
        *,
        property_id: UUID | None = None,
        kind: ObligationKind | str | None = None,
        active_only: bool = True,
    ) -> list[RecurringObligation]:
        """List obligations, optionally by property and kind."""
        conditions: list[Any] = []
        if property_id is not None:
            conditions.append(RecurringObligation.property_id == property_id)
        if kind is not None:
            conditions.append(
                RecurringObligation.kind == parse_enum(ObligationKind, kind, "kind").value
            )
        if active_only:
            conditions.append(RecurringObligation.is_active.is_(True))

        with self.store.transaction() as session:
            result = session.execute(
                select(RecurringObligation)
                .where(*conditions)
                .order_by(RecurringObligation.start_date, RecurringObligation.obligation_id)
            )
            return list(result.scalars().all())
