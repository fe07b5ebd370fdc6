"""Recurring obligation, late-fee and payment models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from obligation_ledger.models.base import Base, TimestampMixin


class RecurringObligation(Base, TimestampMixin):
    """A recurring amount owed on a schedule (rent or a scheduled expense).

    Deactivated when superseded, never hard-deleted.
    """

    __tablename__ = "recurring_obligation"

    obligation_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    property_id: Mapped[UUID] = mapped_column(
        ForeignKey("property.property_id"), nullable=False, index=True
    )
    unit_id: Mapped[UUID | None] = mapped_column(ForeignKey("unit.unit_id"), nullable=True)
    lease_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("lease.lease_id"), nullable=True, index=True
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="rent")
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    frequency: Mapped[str] = mapped_column(String(20), nullable=False)
    anchor_day: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Expense obligations only
    expense_category_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("expense_category.category_id"), nullable=True
    )
    vendor_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    __table_args__ = (
        CheckConstraint("kind IN ('rent', 'expense')", name="obligation_kind_check"),
        CheckConstraint(
            "frequency IN ('monthly', 'quarterly', 'annual')",
            name="obligation_frequency_check",
        ),
        CheckConstraint("anchor_day BETWEEN 1 AND 31", name="obligation_anchor_day_check"),
        CheckConstraint("amount > 0", name="obligation_amount_check"),
        CheckConstraint("tax_amount >= 0", name="obligation_tax_amount_check"),
        CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="obligation_dates_check",
        ),
        Index("obligation_active_kind", "is_active", "kind"),
    )

    def is_effective_on(self, as_of_date: date) -> bool:
        """Check if the obligation is active and in its validity window."""
        if not self.is_active:
            return False
        if self.start_date > as_of_date:
            return False
        if self.end_date is not None and self.end_date < as_of_date:
            return False
        return True


class LateFeeConfiguration(Base, TimestampMixin):
    """Late fee policy for a property. One active configuration per property."""

    __tablename__ = "late_fee_configuration"

    configuration_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    property_id: Mapped[UUID] = mapped_column(
        ForeignKey("property.property_id"), nullable=False, index=True
    )
    fee_type: Mapped[str] = mapped_column(String(20), nullable=False)
    # Dollars for fixed fees, percent for percentage fees
    fee_value: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    grace_period_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    minimum_fee: Mapped[Decimal | None] = mapped_column(nullable=True)
    maximum_fee: Mapped[Decimal | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "fee_type IN ('fixed', 'percentage')",
            name="late_fee_configuration_type_check",
        ),
        CheckConstraint("fee_value > 0", name="late_fee_configuration_value_check"),
        CheckConstraint(
            "grace_period_days >= 0",
            name="late_fee_configuration_grace_check",
        ),
        CheckConstraint(
            "minimum_fee IS NULL OR maximum_fee IS NULL OR minimum_fee <= maximum_fee",
            name="late_fee_configuration_bounds_check",
        ),
    )


class LateFeeCharge(Base, TimestampMixin):
    """A late fee generated for one obligation and one period.

    At most one charge exists per (obligation, period). `amount` is the
    outstanding amount and shrinks under partial allocations;
    `original_amount` keeps the assessed fee.
    """

    __tablename__ = "late_fee_charge"

    charge_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    obligation_id: Mapped[UUID] = mapped_column(
        ForeignKey("recurring_obligation.obligation_id"), nullable=False
    )
    configuration_id: Mapped[UUID] = mapped_column(
        ForeignKey("late_fee_configuration.configuration_id"), nullable=False
    )
    period_due_date: Mapped[date] = mapped_column(Date, nullable=False)
    days_late: Mapped[int] = mapped_column(Integer, nullable=False)
    original_amount: Mapped[Decimal] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    waived_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    waived_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    waived_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "obligation_id", "period_due_date", name="late_fee_charge_one_per_period"
        ),
        CheckConstraint(
            "status IN ('pending', 'paid', 'waived', 'cancelled')",
            name="late_fee_charge_status_check",
        ),
        CheckConstraint("original_amount > 0", name="late_fee_charge_original_amount_check"),
        CheckConstraint("amount >= 0", name="late_fee_charge_amount_check"),
        CheckConstraint("days_late > 0", name="late_fee_charge_days_late_check"),
        CheckConstraint(
            "(status = 'waived' AND waived_reason IS NOT NULL AND waived_by IS NOT NULL "
            "AND waived_at IS NOT NULL) OR status != 'waived'",
            name="late_fee_charge_waived_check",
        ),
        Index("late_fee_charge_by_status", "obligation_id", "status", "period_due_date"),
    )


class Payment(Base, TimestampMixin):
    """A payment toward an obligation. Immutable once recorded."""

    __tablename__ = "payment"

    payment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    obligation_id: Mapped[UUID] = mapped_column(
        ForeignKey("recurring_obligation.obligation_id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    method: Mapped[str] = mapped_column(String(30), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    applied_to_base: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    __table_args__ = (
        CheckConstraint("amount > 0", name="payment_amount_check"),
        CheckConstraint(
            "applied_to_base >= 0 AND applied_to_base <= amount",
            name="payment_applied_to_base_check",
        ),
        Index("payment_by_obligation_date", "obligation_id", "payment_date"),
    )


class PaymentAllocation(Base, TimestampMixin):
    """How part of a payment was applied to one late-fee charge."""

    __tablename__ = "payment_allocation"

    allocation_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payment_id: Mapped[UUID] = mapped_column(
        ForeignKey("payment.payment_id"), nullable=False, index=True
    )
    charge_id: Mapped[UUID] = mapped_column(
        ForeignKey("late_fee_charge.charge_id"), nullable=False, index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    is_full: Mapped[bool] = mapped_column(Boolean, nullable=False)

    __table_args__ = (
        CheckConstraint("amount > 0", name="payment_allocation_amount_check"),
        UniqueConstraint("payment_id", "charge_id", name="payment_allocation_once_per_charge"),
    )
