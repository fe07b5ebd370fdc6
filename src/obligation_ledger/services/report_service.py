"""Read-only report projections over ledger state."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select

from obligation_ledger.calculators.schedule import period_bounds, shift_months
from obligation_ledger.calculators.types import ZERO, ChargeStatus, ExpenseStatus, Frequency
from obligation_ledger.config import EngineConfig
from obligation_ledger.database import LedgerStore
from obligation_ledger.errors import NotFoundError, ValidationError
from obligation_ledger.models import (
    Expense,
    ExpenseCategory,
    LateFeeCharge,
    Lease,
    Payment,
    Property,
    RecurringObligation,
    TrustAccount,
    TrustTransaction,
    Unit,
)
from obligation_ledger.services.expense_service import ExpenseFilter
from obligation_ledger.services.payment_service import paid_in_period

RATE_PLACES = Decimal("0.0001")
DAILY_RATE_PLACES = Decimal("0.000001")
GROUP_BY_DIMENSIONS = ("category", "vendor", "property", "unit", "month")


def _str(value: Any) -> str | None:
    return None if value is None else str(value)


# =============================================================================
# Rent roll
# =============================================================================


@dataclass(frozen=True)
class RentRollEntry:
    unit_id: UUID
    unit_number: str
    market_rent: Decimal
    lease_id: UUID | None
    tenant_name: str | None
    monthly_rent: Decimal
    payments_this_month: Decimal
    pending_late_fees: Decimal

    @property
    def is_occupied(self) -> bool:
        return self.lease_id is not None

    @property
    def balance(self) -> Decimal:
        return self.monthly_rent - self.payments_this_month

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit_id": str(self.unit_id),
            "unit_number": self.unit_number,
            "market_rent": str(self.market_rent),
            "lease_id": _str(self.lease_id),
            "tenant_name": self.tenant_name,
            "is_occupied": self.is_occupied,
            "monthly_rent": str(self.monthly_rent),
            "payments_this_month": str(self.payments_this_month),
            "balance": str(self.balance),
            "pending_late_fees": str(self.pending_late_fees),
        }


@dataclass(frozen=True)
class RentRoll:
    """Per-unit rent position for one property and month."""

    property_id: UUID
    as_of: date
    entries: list[RentRollEntry]
    currency: str = "USD"

    @property
    def total_units(self) -> int:
        return len(self.entries)

    @property
    def occupied_units(self) -> int:
        return sum(1 for e in self.entries if e.is_occupied)

    @property
    def occupancy_rate(self) -> Decimal:
        if not self.entries:
            return ZERO
        rate = Decimal(self.occupied_units) / Decimal(self.total_units)
        return rate.quantize(RATE_PLACES, rounding=ROUND_HALF_UP)

    @property
    def actual_rent(self) -> Decimal:
        return sum((e.monthly_rent for e in self.entries if e.is_occupied), ZERO)

    @property
    def potential_rent(self) -> Decimal:
        return sum(
            (e.monthly_rent if e.is_occupied else e.market_rent for e in self.entries), ZERO
        )

    @property
    def total_collected(self) -> Decimal:
        return sum((e.payments_this_month for e in self.entries), ZERO)

    @property
    def total_balance(self) -> Decimal:
        return sum((e.balance for e in self.entries), ZERO)

    def to_dict(self) -> dict[str, Any]:
        return {
            "property_id": str(self.property_id),
            "as_of": self.as_of.isoformat(),
            "currency": self.currency,
            "total_units": self.total_units,
            "occupied_units": self.occupied_units,
            "occupancy_rate": str(self.occupancy_rate),
            "potential_rent": str(self.potential_rent),
            "actual_rent": str(self.actual_rent),
            "total_collected": str(self.total_collected),
            "total_balance": str(self.total_balance),
            "units": [e.to_dict() for e in self.entries],
        }


# =============================================================================
# Aging
# =============================================================================


def bucket_label(days_past_due: int, bounds: Sequence[int]) -> str:
    """Name the aging bucket for a number of days past due.

    With bounds (30, 60, 90): current, 1-30, 31-60, 61-90, 90+.
    """
    if days_past_due <= 0:
        return "current"
    lower = 1
    for bound in bounds:
        if days_past_due <= bound:
            return f"{lower}-{bound}"
        lower = bound + 1
    return f"{bounds[-1]}+"


def bucket_labels(bounds: Sequence[int]) -> list[str]:
    labels = ["current"]
    lower = 1
    for bound in bounds:
        labels.append(f"{lower}-{bound}")
        lower = bound + 1
    labels.append(f"{bounds[-1]}+")
    return labels


@dataclass(frozen=True)
class AgingItem:
    source: str  # "late_fee" or "obligation"
    reference_id: UUID
    obligation_id: UUID
    due_date: date
    days_past_due: int
    amount: Decimal
    bucket: str


@dataclass(frozen=True)
class AgingReport:
    property_id: UUID
    as_of: date
    items: list[AgingItem]
    buckets: dict[str, Decimal]

    @property
    def total(self) -> Decimal:
        return sum(self.buckets.values(), ZERO)

    def to_dict(self) -> dict[str, Any]:
        return {
            "property_id": str(self.property_id),
            "as_of": self.as_of.isoformat(),
            "buckets": {k: str(v) for k, v in self.buckets.items()},
            "total": str(self.total),
            "items": [
                {
                    "source": i.source,
                    "reference_id": str(i.reference_id),
                    "obligation_id": str(i.obligation_id),
                    "due_date": i.due_date.isoformat(),
                    "days_past_due": i.days_past_due,
                    "amount": str(i.amount),
                    "bucket": i.bucket,
                }
                for i in self.items
            ],
        }


# =============================================================================
# Expense, late fee and trust reports
# =============================================================================


@dataclass
class ExpenseGroup:
    key: str
    label: str
    count: int = 0
    total: Decimal = ZERO
    tax: Decimal = ZERO
    tax_deductible: Decimal = ZERO

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "count": self.count,
            "total": str(self.total),
            "tax": str(self.tax),
            "tax_deductible": str(self.tax_deductible),
        }


@dataclass
class StatusTotals:
    count: int = 0
    assessed: Decimal = ZERO
    outstanding: Decimal = ZERO


@dataclass(frozen=True)
class LateFeeReport:
    property_id: UUID
    start: date | None
    end: date | None
    by_status: dict[str, StatusTotals]

    @property
    def total_count(self) -> int:
        return sum(t.count for t in self.by_status.values())

    @property
    def total_assessed(self) -> Decimal:
        return sum((t.assessed for t in self.by_status.values()), ZERO)

    def to_dict(self) -> dict[str, Any]:
        return {
            "property_id": str(self.property_id),
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "total_count": self.total_count,
            "total_assessed": str(self.total_assessed),
            "by_status": {
                status: {
                    "count": t.count,
                    "assessed": str(t.assessed),
                    "outstanding": str(t.outstanding),
                }
                for status, t in self.by_status.items()
            },
        }


@dataclass(frozen=True)
class TrustStatement:
    account_id: UUID
    account_name: str
    start: date
    end: date
    opening_balance: Decimal
    lines: list[TrustTransaction]
    totals_by_type: dict[str, Decimal] = field(default_factory=dict)
    # Percent per day; None for non-interest-bearing accounts
    daily_rate: Decimal | None = None

    @property
    def closing_balance(self) -> Decimal:
        return self.opening_balance + sum((t.signed_amount for t in self.lines), ZERO)


class ReportService:
    """Read-only projections: rent roll, aging, expenses, late fees, trust."""

    def __init__(self, store: LedgerStore, config: EngineConfig | None = None):
        self.store = store
        self.config = config or EngineConfig()

    def rent_roll(self, property_id: UUID, as_of: date) -> RentRoll:
        """Rent position of every unit for the calendar month of as_of."""
        month_start = as_of.replace(day=1)
        next_year, next_month = shift_months(as_of.year, as_of.month, 1)
        month_end = date(next_year, next_month, 1)

        with self.store.transaction() as session:
            if session.get(Property, property_id) is None:
                raise NotFoundError("Property", property_id)

            units = session.execute(
                select(Unit).where(Unit.property_id == property_id).order_by(Unit.unit_number)
            ).scalars().all()

            entries: list[RentRollEntry] = []
            for unit in units:
                leases = session.execute(
                    select(Lease)
                    .where(Lease.unit_id == unit.unit_id)
                    .order_by(Lease.start_date.desc())
                ).scalars().all()
                lease = next((lease for lease in leases if lease.is_active_on(as_of)), None)
                if lease is None:
                    entries.append(
                        RentRollEntry(
                            unit_id=unit.unit_id,
                            unit_number=unit.unit_number,
                            market_rent=unit.market_rent,
                            lease_id=None,
                            tenant_name=None,
                            monthly_rent=ZERO,
                            payments_this_month=ZERO,
                            pending_late_fees=ZERO,
                        )
                    )
                    continue

                obligations = session.execute(
                    select(RecurringObligation).where(
                        RecurringObligation.lease_id == lease.lease_id,
                        RecurringObligation.kind == "rent",
                    )
                ).scalars().all()
                obligation_ids = [o.obligation_id for o in obligations]
                monthly_rent = sum(
                    (
                        o.amount
                        for o in obligations
                        if o.frequency == Frequency.MONTHLY.value and o.is_effective_on(as_of)
                    ),
                    ZERO,
                )
                payments = session.execute(
                    select(Payment.amount).where(
                        Payment.obligation_id.in_(obligation_ids),
                        Payment.payment_date >= month_start,
                        Payment.payment_date < month_end,
                    )
                ).scalars().all()
                fees = session.execute(
                    select(LateFeeCharge.amount).where(
                        LateFeeCharge.obligation_id.in_(obligation_ids),
                        LateFeeCharge.status == ChargeStatus.PENDING.value,
                    )
                ).scalars().all()

                entries.append(
                    RentRollEntry(
                        unit_id=unit.unit_id,
                        unit_number=unit.unit_number,
                        market_rent=unit.market_rent,
                        lease_id=lease.lease_id,
                        tenant_name=lease.tenant_name,
                        monthly_rent=monthly_rent,
                        payments_this_month=sum(payments, ZERO),
                        pending_late_fees=sum(fees, ZERO),
                    )
                )

        return RentRoll(
            property_id=property_id, as_of=as_of, entries=entries, currency=self.config.currency
        )

    def aging(self, property_id: UUID, as_of: date) -> AgingReport:
        """Bucket pending late fees and unpaid current rent by days past due."""
        bounds = self.config.aging_buckets
        items: list[AgingItem] = []

        with self.store.transaction() as session:
            if session.get(Property, property_id) is None:
                raise NotFoundError("Property", property_id)

            charges = session.execute(
                select(LateFeeCharge)
                .join(
                    RecurringObligation,
                    RecurringObligation.obligation_id == LateFeeCharge.obligation_id,
                )
                .where(
                    RecurringObligation.property_id == property_id,
                    LateFeeCharge.status == ChargeStatus.PENDING.value,
                    LateFeeCharge.period_due_date <= as_of,
                )
                .order_by(LateFeeCharge.period_due_date)
            ).scalars().all()
            for charge in charges:
                days = (as_of - charge.period_due_date).days
                items.append(
                    AgingItem(
                        source="late_fee",
                        reference_id=charge.charge_id,
                        obligation_id=charge.obligation_id,
                        due_date=charge.period_due_date,
                        days_past_due=days,
                        amount=charge.amount,
                        bucket=bucket_label(days, bounds),
                    )
                )

            obligations = session.execute(
                select(RecurringObligation).where(
                    RecurringObligation.property_id == property_id,
                    RecurringObligation.kind == "rent",
                    RecurringObligation.is_active.is_(True),
                )
            ).scalars().all()
            for obligation in obligations:
                if not obligation.is_effective_on(as_of):
                    continue
                period = period_bounds(
                    obligation.frequency, obligation.anchor_day, as_of, obligation.start_date
                )
                if period.due_date < obligation.start_date:
                    continue
                paid = paid_in_period(session, obligation.obligation_id, period, as_of)
                unpaid = obligation.amount - paid
                if unpaid <= ZERO:
                    continue
                days = (as_of - period.due_date).days
                items.append(
                    AgingItem(
                        source="obligation",
                        reference_id=obligation.obligation_id,
                        obligation_id=obligation.obligation_id,
                        due_date=period.due_date,
                        days_past_due=days,
                        amount=unpaid,
                        bucket=bucket_label(days, bounds),
                    )
                )

        buckets = {label: ZERO for label in bucket_labels(bounds)}
        for item in items:
            buckets[item.bucket] += item.amount
        return AgingReport(property_id=property_id, as_of=as_of, items=items, buckets=buckets)

    def expense_report(
        self,
        expense_filter: ExpenseFilter | None = None,
        group_by: str = "category",
    ) -> list[ExpenseGroup]:
        """Group non-cancelled expenses, largest total first.

        Raises:
            ValidationError: Unknown group_by dimension
        """
        if group_by not in GROUP_BY_DIMENSIONS:
            raise ValidationError(
                f"Invalid group_by {group_by!r}; must be one of: "
                + ", ".join(GROUP_BY_DIMENSIONS),
                field="group_by",
            )
        expense_filter = expense_filter or ExpenseFilter()

        stmt = (
            select(Expense, ExpenseCategory, Property.name, Unit.unit_number)
            .join(Property, Property.property_id == Expense.property_id)
            .outerjoin(ExpenseCategory, ExpenseCategory.category_id == Expense.category_id)
            .outerjoin(Unit, Unit.unit_id == Expense.unit_id)
            .where(Expense.status != ExpenseStatus.CANCELLED.value)
            .where(*expense_filter.conditions())
        )

        groups: dict[str, ExpenseGroup] = {}
        with self.store.transaction() as session:
            for expense, category, property_name, unit_number in session.execute(stmt):
                key, label = self._group_key(
                    group_by, expense, category, property_name, unit_number
                )
                group = groups.get(key)
                if group is None:
                    group = groups[key] = ExpenseGroup(key=key, label=label)
                group.count += 1
                group.total += expense.amount
                group.tax += expense.tax_amount
                if category is not None and category.is_tax_deductible:
                    group.tax_deductible += expense.amount

        return sorted(groups.values(), key=lambda g: (-g.total, g.label))

    @staticmethod
    def _group_key(
        group_by: str,
        expense: Expense,
        category: ExpenseCategory | None,
        property_name: str,
        unit_number: str | None,
    ) -> tuple[str, str]:
        if group_by == "category":
            if category is None:
                return "uncategorized", "Uncategorized"
            return str(category.category_id), category.name
        if group_by == "vendor":
            vendor = expense.vendor_name or "Unknown vendor"
            return vendor.lower(), vendor
        if group_by == "property":
            return str(expense.property_id), property_name
        if group_by == "unit":
            if expense.unit_id is None:
                return "property-level", "Property-level"
            return str(expense.unit_id), unit_number or str(expense.unit_id)
        month = expense.transaction_date.strftime("%Y-%m")
        return month, month

    def late_fee_report(
        self,
        property_id: UUID,
        start: date | None = None,
        end: date | None = None,
    ) -> LateFeeReport:
        """Late fee counts and amounts by status for a property."""
        conditions: list[Any] = [RecurringObligation.property_id == property_id]
        if start is not None:
            conditions.append(LateFeeCharge.period_due_date >= start)
        if end is not None:
            conditions.append(LateFeeCharge.period_due_date <= end)

        with self.store.transaction() as session:
            if session.get(Property, property_id) is None:
                raise NotFoundError("Property", property_id)
            charges = session.execute(
                select(LateFeeCharge)
                .join(
                    RecurringObligation,
                    RecurringObligation.obligation_id == LateFeeCharge.obligation_id,
                )
                .where(*conditions)
            ).scalars().all()

        by_status = {status.value: StatusTotals() for status in ChargeStatus}
        for charge in charges:
            totals = by_status[charge.status]
            totals.count += 1
            totals.assessed += charge.original_amount
            if charge.status == ChargeStatus.PENDING.value:
                totals.outstanding += charge.amount
        return LateFeeReport(property_id=property_id, start=start, end=end, by_status=by_status)

    def trust_statement(self, account_id: UUID, start: date, end: date) -> TrustStatement:
        """Opening balance, lines and closing balance for a date range."""
        if end < start:
            raise ValidationError("end must not be before start", field="end")

        with self.store.transaction() as session:
            account = session.get(TrustAccount, account_id)
            if account is None:
                raise NotFoundError("TrustAccount", account_id)
            earlier = session.execute(
                select(TrustTransaction).where(
                    TrustTransaction.trust_account_id == account_id,
                    TrustTransaction.transaction_date < start,
                )
            ).scalars().all()
            lines = session.execute(
                select(TrustTransaction)
                .where(
                    TrustTransaction.trust_account_id == account_id,
                    TrustTransaction.transaction_date >= start,
                    TrustTransaction.transaction_date <= end,
                )
                .order_by(TrustTransaction.transaction_date, TrustTransaction.sequence)
            ).scalars().all()

        totals: dict[str, Decimal] = {}
        for line in lines:
            totals[line.transaction_type] = totals.get(line.transaction_type, ZERO) + line.amount

        daily_rate = None
        if account.is_interest_bearing and account.interest_rate:
            daily_rate = (
                account.interest_rate / self.config.interest_days_in_year
            ).quantize(DAILY_RATE_PLACES, rounding=ROUND_HALF_UP)

        return TrustStatement(
            account_id=account_id,
            account_name=account.name,
            start=start,
            end=end,
            opening_balance=sum((t.signed_amount for t in earlier), ZERO),
            lines=list(lines),
            totals_by_type=totals,
            daily_rate=daily_rate,
        )
