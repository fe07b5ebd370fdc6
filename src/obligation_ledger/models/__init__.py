"""SQLAlchemy ORM models for the obligation ledger."""

from obligation_ledger.models.base import Base, TimestampMixin
from obligation_ledger.models.expenses import Expense, ExpenseCategory, ReceiptImage
from obligation_ledger.models.obligations import (
    LateFeeCharge,
    LateFeeConfiguration,
    Payment,
    PaymentAllocation,
    RecurringObligation,
)
from obligation_ledger.models.property import Lease, Property, Unit
from obligation_ledger.models.trust import TrustAccount, TrustTransaction

__all__ = [
    "Base",
    "TimestampMixin",
    # Owner context
    "Property",
    "Unit",
    "Lease",
    # Obligations
    "RecurringObligation",
    "LateFeeConfiguration",
    "LateFeeCharge",
    "Payment",
    "PaymentAllocation",
    # Trust
    "TrustAccount",
    "TrustTransaction",
    # Expenses
    "ExpenseCategory",
    "Expense",
    "ReceiptImage",
]
