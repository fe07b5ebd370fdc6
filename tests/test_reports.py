"""Tests for read-only report projections."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from obligation_ledger.config import EngineConfig
from obligation_ledger.errors import NotFoundError, ValidationError
from obligation_ledger.schemas import ExpenseInput
from obligation_ledger.services import ExpenseFilter, ReportService
from obligation_ledger.services.report_service import bucket_label, bucket_labels


class TestBuckets:
    @pytest.mark.parametrize(
        "days,label",
        [(-3, "current"), (0, "current"), (1, "1-30"), (30, "1-30"), (31, "31-60"),
         (68, "61-90"), (90, "61-90"), (91, "90+"), (400, "90+")],
    )
    def test_default_bounds(self, days, label):
        assert bucket_label(days, (30, 60, 90)) == label

    def test_custom_bounds(self):
        assert bucket_labels((15, 45)) == ["current", "1-15", "16-45", "45+"]
        assert bucket_label(20, (15, 45)) == "16-45"


class TestRentRoll:
    def test_occupancy_and_rent(self, reports, payments, rent, seed):
        payments.record_payment(rent, "600", date(2026, 3, 2), "ach")
        payments.record_payment(rent, "100", date(2026, 2, 27), "ach")

        roll = reports.rent_roll(seed.property_id, date(2026, 3, 15))

        assert roll.total_units == 2
        assert roll.occupied_units == 1
        assert roll.occupancy_rate == Decimal("0.5000")
        assert roll.actual_rent == Decimal("1000")
        assert roll.potential_rent == Decimal("2100")

        occupied, vacant = roll.entries
        assert occupied.unit_number == "101"
        assert occupied.tenant_name == "Jordan Reyes"
        assert occupied.payments_this_month == Decimal("600")
        assert occupied.balance == Decimal("400")
        assert vacant.is_occupied is False
        assert vacant.monthly_rent == Decimal("0")

        data = roll.to_dict()
        assert data["occupancy_rate"] == "0.5000"
        assert len(data["units"]) == 2

    def test_includes_pending_fees(self, reports, late_fees, rent, seed):
        late_fees.configure(property_id=seed.property_id, fee_type="fixed", fee_value=50)
        late_fees.evaluate_period(rent, date(2026, 3, 10))

        roll = reports.rent_roll(seed.property_id, date(2026, 3, 15))

        assert roll.entries[0].pending_late_fees == Decimal("50")

    def test_unknown_property(self, reports):
        with pytest.raises(NotFoundError):
            reports.rent_roll(uuid4(), date(2026, 3, 15))


class TestAging:
    def test_buckets_fees_and_unpaid_rent(self, reports, late_fees, rent, seed):
        late_fees.configure(property_id=seed.property_id, fee_type="fixed", fee_value=50)
        january = late_fees.evaluate_period(rent, date(2026, 1, 10))

        report = reports.aging(seed.property_id, date(2026, 3, 10))

        fee_item = next(i for i in report.items if i.source == "late_fee")
        assert fee_item.reference_id == january.charge_id
        assert fee_item.days_past_due == 68
        assert fee_item.bucket == "61-90"

        rent_item = next(i for i in report.items if i.source == "obligation")
        assert rent_item.days_past_due == 9
        assert rent_item.bucket == "1-30"
        assert rent_item.amount == Decimal("1000")

        assert report.buckets["61-90"] == Decimal("50")
        assert report.buckets["1-30"] == Decimal("1000")
        assert report.buckets["current"] == Decimal("0")
        assert report.total == Decimal("1050")

    def test_paid_rent_not_aged(self, reports, payments, rent, seed):
        payments.record_payment(rent, "1000", date(2026, 3, 1), "ach")
        report = reports.aging(seed.property_id, date(2026, 3, 10))
        assert report.items == []

    def test_configured_bounds(self, store, rent, seed):
        reports = ReportService(store, EngineConfig(aging_buckets=(5, 10)))
        report = reports.aging(seed.property_id, date(2026, 3, 10))
        assert list(report.buckets) == ["current", "1-5", "6-10", "10+"]
        assert report.buckets["6-10"] == Decimal("1000")


class TestExpenseReport:
    @pytest.fixture
    def populated(self, expenses, seed):
        repairs = expenses.create_category("Repairs")
        insurance = expenses.create_category("Insurance", is_tax_deductible=False)

        def record(**values):
            data = {
                "property_id": seed.property_id,
                "transaction_date": date(2026, 3, 4),
            }
            data.update(values)
            return expenses.record_expense(ExpenseInput(**data))

        record(amount=Decimal("200"), category_id=repairs.category_id, vendor_name="Ace",
               unit_id=seed.unit_id, tax_amount=Decimal("10"))
        record(amount=Decimal("100"), category_id=repairs.category_id, vendor_name="ace",
               transaction_date=date(2026, 2, 10))
        record(amount=Decimal("250"), category_id=insurance.category_id, vendor_name="Shield")
        record(amount=Decimal("40"))
        cancelled = record(amount=Decimal("999"), category_id=repairs.category_id)
        expenses.set_status(cancelled.expense_id, "cancelled")
        return repairs, insurance

    def test_by_category(self, reports, populated):
        repairs, insurance = populated
        groups = reports.expense_report(group_by="category")

        assert [g.label for g in groups] == ["Repairs", "Insurance", "Uncategorized"]
        assert groups[0].total == Decimal("300")
        assert groups[0].count == 2
        assert groups[0].tax == Decimal("10")
        assert groups[0].tax_deductible == Decimal("300")
        assert groups[1].tax_deductible == Decimal("0")

    def test_by_vendor_case_insensitive(self, reports, populated):
        groups = {g.key: g for g in reports.expense_report(group_by="vendor")}
        assert groups["ace"].total == Decimal("300")
        assert groups["unknown vendor"].label == "Unknown vendor"

    def test_by_unit_and_month(self, reports, populated):
        units = {g.label: g.total for g in reports.expense_report(group_by="unit")}
        assert units == {"101": Decimal("200"), "Property-level": Decimal("390")}

        months = {g.key: g.total for g in reports.expense_report(group_by="month")}
        assert months == {"2026-03": Decimal("490"), "2026-02": Decimal("100")}

    def test_filter_applies(self, reports, populated):
        groups = reports.expense_report(ExpenseFilter(start_date=date(2026, 3, 1)), "property")
        assert len(groups) == 1
        assert groups[0].label == "Maple Court"
        assert groups[0].total == Decimal("490")

    def test_unknown_dimension(self, reports):
        with pytest.raises(ValidationError):
            reports.expense_report(group_by="tenant")


class TestLateFeeReport:
    def test_counts_by_status(self, reports, late_fees, payments, rent, seed):
        late_fees.configure(property_id=seed.property_id, fee_type="fixed", fee_value=50)
        january = late_fees.evaluate_period(rent, date(2026, 1, 10))
        february = late_fees.evaluate_period(rent, date(2026, 2, 10))
        late_fees.evaluate_period(rent, date(2026, 3, 10))
        late_fees.waive_charge(february.charge_id, "Goodwill", "manager@example.com")
        payments.record_payment(rent, "20", date(2026, 3, 12), "ach")

        report = reports.late_fee_report(seed.property_id)

        assert report.total_count == 3
        assert report.total_assessed == Decimal("150")
        assert report.by_status["waived"].count == 1
        assert report.by_status["pending"].count == 2
        # 20 of January's fee paid, March's untouched
        assert report.by_status["pending"].outstanding == Decimal("80")
        assert report.by_status["cancelled"].count == 0
        assert late_fees.get_charge(january.charge_id).amount == Decimal("30")

    def test_date_window(self, reports, late_fees, rent, seed):
        late_fees.configure(property_id=seed.property_id, fee_type="fixed", fee_value=50)
        late_fees.evaluate_period(rent, date(2026, 1, 10))
        late_fees.evaluate_period(rent, date(2026, 3, 10))

        report = reports.late_fee_report(
            seed.property_id, start=date(2026, 2, 1), end=date(2026, 3, 31)
        )
        assert report.total_count == 1


class TestTrustStatement:
    def test_opening_lines_and_closing(self, reports, trust, seed):
        account = trust.open_account(
            property_id=seed.property_id, name="Escrow", account_type="escrow"
        ).trust_account_id
        trust.deposit(account, "1000", transaction_date=date(2026, 2, 10))
        trust.deposit(account, "250", transaction_date=date(2026, 3, 3))
        trust.withdraw(account, "400", transaction_date=date(2026, 3, 20))
        trust.deposit(account, "75", transaction_date=date(2026, 4, 2))

        statement = reports.trust_statement(account, date(2026, 3, 1), date(2026, 3, 31))

        assert statement.account_name == "Escrow"
        assert statement.opening_balance == Decimal("1000")
        assert len(statement.lines) == 2
        assert statement.closing_balance == Decimal("850")
        assert statement.totals_by_type == {
            "deposit": Decimal("250"),
            "withdrawal": Decimal("400"),
        }
        assert statement.daily_rate is None

    def test_daily_rate_uses_day_count(self, store, trust, seed):
        account = trust.open_account(
            property_id=seed.property_id,
            name="Deposits",
            account_type="security_deposit",
            is_interest_bearing=True,
            interest_rate="3.65",
        ).trust_account_id

        actual = ReportService(store).trust_statement(account, date(2026, 3, 1), date(2026, 3, 31))
        banker = ReportService(store, EngineConfig(interest_days_in_year=360)).trust_statement(
            account, date(2026, 3, 1), date(2026, 3, 31)
        )

        assert actual.daily_rate == Decimal("0.010000")
        assert banker.daily_rate == Decimal("0.010139")

    def test_inverted_range(self, reports):
        with pytest.raises(ValidationError):
            reports.trust_statement(uuid4(), date(2026, 3, 31), date(2026, 3, 1))
