"""Property-based tests for ledger invariants.

These tests use hypothesis to generate random inputs and operation
sequences and verify that the invariants hold regardless of order or
combination.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from obligation_ledger.calculators.late_fee import clamp_fee
from obligation_ledger.calculators.schedule import next_due_date, resolve_due_date
from obligation_ledger.calculators.waterfall import allocate_waterfall
from obligation_ledger.database import LedgerStore
from obligation_ledger.errors import InsufficientFundsError
from obligation_ledger.models import Property
from obligation_ledger.services import (
    ChargeFilter,
    LateFeeService,
    ObligationService,
    PaymentService,
    TrustService,
)

money = st.decimals(
    min_value=Decimal("0.01"), max_value=Decimal("5000"), places=2, allow_nan=False
)
days = st.dates(min_value=date(2000, 1, 1), max_value=date(2099, 12, 31))


@dataclass
class Charge:
    charge_id: UUID
    amount: Decimal


# =============================================================================
# Waterfall
# =============================================================================


class TestWaterfallInvariants:
    @given(amounts=st.lists(money, max_size=8), payment=money)
    @settings(max_examples=200)
    def test_allocations_plus_remainder_equal_payment(self, amounts, payment):
        charges = [Charge(uuid4(), a) for a in amounts]
        plan = allocate_waterfall(charges, payment)

        assert plan.allocated + plan.remainder == payment
        assert plan.remainder >= 0

    @given(amounts=st.lists(money, max_size=8), payment=money)
    @settings(max_examples=200)
    def test_fifo_prefix(self, amounts, payment):
        """Only the last allocation may be partial, and it follows full ones in order."""
        charges = [Charge(uuid4(), a) for a in amounts]
        plan = allocate_waterfall(charges, payment)

        allocated_ids = [a.charge_id for a in plan.allocations]
        assert allocated_ids == [c.charge_id for c in charges[: len(allocated_ids)]]
        for allocation in plan.allocations[:-1]:
            assert allocation.is_full
        for allocation, charge in zip(plan.allocations, charges):
            assert 0 < allocation.amount <= charge.amount
            assert allocation.charge_remaining == charge.amount - allocation.amount
        if plan.remainder > 0:
            assert len(plan.allocations) == len(charges)


# =============================================================================
# Due dates
# =============================================================================


class TestDueDateInvariants:
    @given(anchor=st.integers(min_value=1, max_value=31), as_of=days)
    @settings(max_examples=300)
    def test_monthly_due_date_is_latest_not_after(self, anchor, as_of):
        due = resolve_due_date("monthly", anchor, as_of)

        assert due <= as_of
        assert next_due_date("monthly", anchor, due) > as_of
        last_day = calendar.monthrange(due.year, due.month)[1]
        assert due.day == min(anchor, last_day)

    @given(
        frequency=st.sampled_from(["monthly", "quarterly", "annual"]),
        anchor=st.integers(min_value=1, max_value=31),
        start=days,
        offset=st.integers(min_value=0, max_value=2000),
    )
    @settings(max_examples=300)
    def test_periods_tile_the_calendar(self, frequency, anchor, start, offset):
        as_of = start + timedelta(days=offset)
        due = resolve_due_date(frequency, anchor, as_of, start)
        following = next_due_date(frequency, anchor, due)

        assert due <= as_of < following
        # The day after the window opens resolves to the same period
        assert resolve_due_date(frequency, anchor, following - timedelta(days=1), start) == due


# =============================================================================
# Fee bounds
# =============================================================================


class TestFeeBounds:
    @given(fee=money, low=money, high=money)
    def test_clamped_fee_within_bounds(self, fee, low, high):
        low, high = min(low, high), max(low, high)
        clamped = clamp_fee(fee, low, high)
        assert low <= clamped <= high


# =============================================================================
# Trust ledger
# =============================================================================


operations = st.lists(
    st.tuples(st.sampled_from(["deposit", "withdraw", "fee"]), money),
    min_size=1,
    max_size=15,
)


class TestTrustLedgerInvariants:
    @given(ops=operations)
    @settings(max_examples=25, deadline=None)
    def test_balance_never_negative_and_chain_verifies(self, ops):
        store = LedgerStore.from_url("sqlite://")
        store.create_all()
        try:
            with store.transaction() as session:
                prop = Property(name="Invariant Towers")
                session.add(prop)
                session.flush()
                property_id = prop.property_id

            trust = TrustService(store)
            account_id = trust.open_account(
                property_id=property_id, name="Escrow", account_type="escrow"
            ).trust_account_id

            expected = Decimal("0")
            for kind, amount in ops:
                if kind == "deposit":
                    trust.deposit(account_id, amount, transaction_date=date(2026, 3, 1))
                    expected += amount
                    continue
                post = trust.withdraw if kind == "withdraw" else trust.record_fee
                try:
                    post(account_id, amount, transaction_date=date(2026, 3, 1))
                    expected -= amount
                except InsufficientFundsError:
                    assert amount > expected

            check = trust.check_balance(account_id)
            assert check.is_consistent
            assert check.computed_balance == expected
            assert expected >= 0
            lines = trust.get_transactions(account_id)
            assert [t.sequence for t in lines] == list(range(1, len(lines) + 1))
        finally:
            store.dispose()


# =============================================================================
# Late fee sweep
# =============================================================================


payment_sets = st.lists(
    st.tuples(st.integers(min_value=-45, max_value=10), money),
    max_size=4,
)


class TestSweepInvariants:
    @given(
        anchor=st.integers(min_value=1, max_value=31),
        as_of=st.dates(min_value=date(2025, 2, 1), max_value=date(2027, 12, 31)),
        grace=st.integers(min_value=0, max_value=10),
        fee_type=st.sampled_from(["fixed", "percentage"]),
        paid=payment_sets,
    )
    @settings(max_examples=25, deadline=None)
    def test_sweep_is_idempotent(self, anchor, as_of, grace, fee_type, paid):
        store = LedgerStore.from_url("sqlite://")
        store.create_all()
        try:
            with store.transaction() as session:
                prop = Property(name="Sweep Gardens")
                session.add(prop)
                session.flush()
                property_id = prop.property_id

            obligation_id = ObligationService(store).create_obligation(
                property_id=property_id,
                amount="1000.00",
                frequency="monthly",
                anchor_day=anchor,
                start_date=date(2025, 1, 1),
            ).obligation_id
            payments = PaymentService(store)
            for offset, amount in paid:
                payments.record_payment(
                    obligation_id, amount, as_of + timedelta(days=offset), "ach"
                )
            late_fees = LateFeeService(store)
            late_fees.configure(
                property_id=property_id,
                fee_type=fee_type,
                fee_value=5,
                grace_period_days=grace,
            )

            first = late_fees.run_sweep(as_of)
            second = late_fees.run_sweep(as_of)

            assert first.errors == [] and second.errors == []
            assert len(first.charged) <= 1
            assert second.charged == []
            charges = late_fees.list_charges(ChargeFilter(obligation_id=obligation_id))
            assert len(charges) == len(first.charged)
            periods = [c.period_due_date for c in charges]
            assert len(periods) == len(set(periods))
        finally:
            store.dispose()
