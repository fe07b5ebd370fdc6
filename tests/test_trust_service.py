"""Tests for the trust account ledger."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update

from obligation_ledger.errors import (
    ConflictError,
    InsufficientFundsError,
    IntegrityError,
    InvalidAmountError,
    NotFoundError,
    ValidationError,
)
from obligation_ledger.events import TrustTransactionPosted, TrustTransferCompleted
from obligation_ledger.models import TrustAccount, TrustTransaction
from obligation_ledger.services.trust_service import average_daily_balance

DAY = date(2026, 3, 2)


@pytest.fixture
def escrow(trust, seed):
    return trust.open_account(
        property_id=seed.property_id, name="Escrow", account_type="escrow"
    ).trust_account_id


@pytest.fixture
def reserve(trust, seed):
    return trust.open_account(
        property_id=seed.property_id, name="Reserve", account_type="reserve"
    ).trust_account_id


@pytest.fixture
def deposits(trust, seed):
    """Interest-bearing security deposit account at 2.4% a year."""
    return trust.open_account(
        property_id=seed.property_id,
        name="Security deposits",
        account_type="security_deposit",
        is_interest_bearing=True,
        interest_rate="2.4",
    ).trust_account_id


def _line_count(store):
    with store.transaction() as session:
        return session.execute(select(func.count()).select_from(TrustTransaction)).scalar_one()


class TestAccounts:
    def test_one_active_account_per_type(self, trust, seed, escrow):
        with pytest.raises(ConflictError):
            trust.open_account(property_id=seed.property_id, name="Escrow 2", account_type="escrow")

    def test_interest_bearing_needs_rate(self, trust, seed):
        with pytest.raises(ValidationError):
            trust.open_account(
                property_id=seed.property_id,
                name="Deposits",
                account_type="security_deposit",
                is_interest_bearing=True,
            )

    def test_unknown_type(self, trust, seed):
        with pytest.raises(ValidationError):
            trust.open_account(property_id=seed.property_id, name="X", account_type="checking")

    def test_unknown_property(self, trust):
        with pytest.raises(NotFoundError):
            trust.open_account(property_id=uuid4(), name="Escrow", account_type="escrow")

    def test_deactivate_requires_zero_balance(self, trust, escrow):
        trust.deposit(escrow, "10", transaction_date=DAY)
        with pytest.raises(ConflictError):
            trust.deactivate_account(escrow)

        trust.withdraw(escrow, "10", transaction_date=DAY)
        assert trust.deactivate_account(escrow).is_active is False

    def test_inactive_account_rejects_postings(self, trust, escrow):
        trust.deactivate_account(escrow)
        with pytest.raises(ConflictError):
            trust.deposit(escrow, "10", transaction_date=DAY)


class TestPostings:
    def test_deposit_and_withdraw_chain(self, trust, escrow, events):
        first = trust.deposit(escrow, "500", transaction_date=DAY, reference="DEP-1")
        second = trust.withdraw(escrow, "120.50", transaction_date=DAY)
        third = trust.record_fee(escrow, "4.50", transaction_date=DAY, description="Bank fee")

        assert [first.sequence, second.sequence, third.sequence] == [1, 2, 3]
        assert first.balance_after == Decimal("500")
        assert second.balance_after == Decimal("379.50")
        assert third.balance_after == Decimal("375.00")
        assert trust.get_account(escrow).balance == Decimal("375.00")
        assert len([e for e in events if isinstance(e, TrustTransactionPosted)]) == 3

    def test_overdraft_rejected(self, trust, escrow, store):
        trust.deposit(escrow, "100", transaction_date=DAY)

        with pytest.raises(InsufficientFundsError) as exc_info:
            trust.withdraw(escrow, "100.01", transaction_date=DAY)

        assert exc_info.value.balance == Decimal("100")
        assert trust.get_account(escrow).balance == Decimal("100")
        assert _line_count(store) == 1

    def test_fee_cannot_overdraw(self, trust, escrow):
        with pytest.raises(InsufficientFundsError):
            trust.record_fee(escrow, "1", transaction_date=DAY)

    @pytest.mark.parametrize("amount", ["0", "-1"])
    def test_non_positive_amount(self, trust, escrow, amount):
        with pytest.raises(InvalidAmountError):
            trust.deposit(escrow, amount, transaction_date=DAY)

    @pytest.mark.parametrize("post", ["deposit", "withdraw", "record_fee"])
    def test_fraction_of_a_cent_rejected(self, trust, escrow, store, post):
        trust.deposit(escrow, "100", transaction_date=DAY)

        with pytest.raises(ValidationError):
            getattr(trust, post)(escrow, "10.005", transaction_date=DAY)

        assert trust.get_account(escrow).balance == Decimal("100")
        assert _line_count(store) == 1

    def test_transfer_of_a_fraction_of_a_cent_rejected(self, trust, escrow, reserve):
        trust.deposit(escrow, "100", transaction_date=DAY)
        with pytest.raises(ValidationError):
            trust.transfer(escrow, reserve, "0.001", transaction_date=DAY)
        assert trust.get_account(reserve).balance == Decimal("0")

    def test_interest_only_on_interest_bearing(self, trust, escrow, deposits):
        with pytest.raises(ConflictError):
            trust.record_interest(escrow, "1", transaction_date=DAY)
        line = trust.record_interest(deposits, "1.25", transaction_date=DAY)
        assert line.balance_after == Decimal("1.25")


class TestTransfer:
    def test_transfer_moves_both_balances(self, trust, escrow, reserve, events):
        trust.deposit(escrow, "500", transaction_date=DAY)
        trust.deposit(reserve, "100", transaction_date=DAY)

        result = trust.transfer(escrow, reserve, "200", transaction_date=date(2026, 3, 5))

        assert trust.get_account(escrow).balance == Decimal("300")
        assert trust.get_account(reserve).balance == Decimal("300")
        assert result.withdrawal.balance_after == Decimal("300")
        assert result.deposit.balance_after == Decimal("300")
        assert result.withdrawal.transfer_id == result.deposit.transfer_id == result.transfer_id
        assert result.withdrawal.related_account_id == reserve
        assert result.deposit.related_account_id == escrow

        completed = [e for e in events if isinstance(e, TrustTransferCompleted)]
        assert len(completed) == 1
        assert completed[0].amount == Decimal("200")

    def test_failed_transfer_writes_nothing(self, trust, escrow, reserve, store, events):
        trust.deposit(escrow, "50", transaction_date=DAY)
        events.clear()

        with pytest.raises(InsufficientFundsError):
            trust.transfer(escrow, reserve, "200", transaction_date=DAY)

        assert trust.get_account(escrow).balance == Decimal("50")
        assert trust.get_account(reserve).balance == Decimal("0")
        assert _line_count(store) == 1
        assert events == []

    def test_same_account_rejected(self, trust, escrow):
        with pytest.raises(ValidationError):
            trust.transfer(escrow, escrow, "10", transaction_date=DAY)


class TestReconciliation:
    def test_consistent_account(self, trust, escrow):
        trust.deposit(escrow, "500", transaction_date=DAY)
        trust.withdraw(escrow, "200", transaction_date=DAY)

        check = trust.reconcile(escrow)

        assert check.is_consistent
        assert check.computed_balance == Decimal("300")
        assert check.transaction_count == 2

    def test_tampered_cached_balance(self, trust, escrow, store):
        trust.deposit(escrow, "500", transaction_date=DAY)
        with store.transaction() as session:
            session.execute(
                update(TrustAccount)
                .where(TrustAccount.trust_account_id == escrow)
                .values(balance=Decimal("999"))
            )

        assert not trust.check_balance(escrow).is_consistent
        with pytest.raises(IntegrityError) as exc_info:
            trust.reconcile(escrow)
        assert exc_info.value.cached_balance == Decimal("999")
        assert exc_info.value.computed_balance == Decimal("500")
        # Reported, not corrected
        assert trust.get_account(escrow).balance == Decimal("999")

    def test_tampered_snapshot(self, trust, escrow, store):
        first = trust.deposit(escrow, "500", transaction_date=DAY)
        trust.deposit(escrow, "100", transaction_date=DAY)
        with store.transaction() as session:
            session.execute(
                update(TrustTransaction)
                .where(TrustTransaction.trust_transaction_id == first.trust_transaction_id)
                .values(balance_after=Decimal("400"))
            )

        check = trust.check_balance(escrow)

        assert check.cached_balance == check.computed_balance
        assert len(check.problems) == 1

    def test_mark_reconciled(self, trust, escrow):
        first = trust.deposit(escrow, "500", transaction_date=DAY)
        trust.deposit(escrow, "100", transaction_date=DAY)

        ids = [first.trust_transaction_id]
        assert trust.mark_reconciled(escrow, ids, date(2026, 3, 31)) == 1
        assert trust.mark_reconciled(escrow, ids, date(2026, 3, 31)) == 0

        lines = trust.get_transactions(escrow)
        assert [t.is_reconciled for t in lines] == [True, False]
        assert lines[0].reconciled_date == date(2026, 3, 31)

    def test_get_transactions_window(self, trust, escrow):
        trust.deposit(escrow, "500", transaction_date=date(2026, 2, 10))
        trust.deposit(escrow, "100", transaction_date=date(2026, 3, 10))

        march = trust.get_transactions(escrow, start=date(2026, 3, 1), end=date(2026, 3, 31))
        assert [t.amount for t in march] == [Decimal("100")]


class TestInterest:
    def test_average_daily_balance(self):
        movements = [(date(2026, 4, 16), Decimal("300"))]
        adb = average_daily_balance(Decimal("0"), movements, date(2026, 4, 1), date(2026, 4, 30))
        # 300 held for 15 of 30 days
        assert adb == Decimal("150")

    def test_monthly_interest_posted_once(self, trust, deposits, escrow):
        trust.deposit(deposits, "1200", transaction_date=date(2026, 2, 15))

        first = trust.apply_monthly_interest(date(2026, 3, 31))
        second = trust.apply_monthly_interest(date(2026, 3, 31))

        assert first.posted == {deposits: Decimal("2.40")}
        assert escrow not in first.posted
        assert second.posted == {}
        assert second.skipped == {deposits: "already_posted"}
        assert trust.get_account(deposits).balance == Decimal("1202.40")
        assert trust.reconcile(deposits).is_consistent

    def test_empty_account_earns_nothing(self, trust, deposits):
        result = trust.apply_monthly_interest(date(2026, 3, 31))
        assert result.skipped == {deposits: "no_interest"}
