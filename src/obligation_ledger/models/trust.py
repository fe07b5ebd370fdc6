"""Trust account models (security deposits, escrow, reserves)."""

from __future__ import annotations

from datetime import date
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

# Transaction types that add to / subtract from the balance
CREDIT_TYPES = frozenset({"deposit", "interest"})
DEBIT_TYPES = frozenset({"withdrawal", "fee"})


class TrustAccount(Base, TimestampMixin):
    """A segregated funds account with a cached running balance."""

    __tablename__ = "trust_account"

    trust_account_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    property_id: Mapped[UUID] = mapped_column(
        ForeignKey("property.property_id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    account_type: Mapped[str] = mapped_column(String(20), nullable=False)
    is_interest_bearing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    interest_rate: Mapped[Decimal | None] = mapped_column(Numeric(7, 4), nullable=True)
    balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "account_type IN ('security_deposit', 'escrow', 'reserve')",
            name="trust_account_type_check",
        ),
        CheckConstraint("balance >= 0", name="trust_account_balance_check"),
        CheckConstraint(
            "is_interest_bearing = false OR interest_rate > 0",
            name="trust_account_interest_rate_check",
        ),
    )


class TrustTransaction(Base, TimestampMixin):
    """One append-only trust ledger line with a balance snapshot."""

    __tablename__ = "trust_transaction"

    trust_transaction_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    trust_account_id: Mapped[UUID] = mapped_column(
        ForeignKey("trust_account.trust_account_id"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    related_account_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("trust_account.trust_account_id"), nullable=True
    )
    transfer_id: Mapped[UUID | None] = mapped_column(nullable=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference: Mapped[str | None] = mapped_column(String(50), nullable=True)
    balance_after: Mapped[Decimal] = mapped_column(nullable=False)
    is_reconciled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reconciled_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        UniqueConstraint("trust_account_id", "sequence", name="trust_transaction_sequence_uq"),
        CheckConstraint(
            "transaction_type IN ('deposit', 'withdrawal', 'interest', 'fee')",
            name="trust_transaction_type_check",
        ),
        CheckConstraint("amount > 0", name="trust_transaction_amount_check"),
        CheckConstraint("balance_after >= 0", name="trust_transaction_balance_after_check"),
        CheckConstraint(
            "(is_reconciled = false AND reconciled_date IS NULL) OR "
            "(is_reconciled = true AND reconciled_date IS NOT NULL)",
            name="trust_transaction_reconciled_check",
        ),
        Index("trust_transaction_by_date", "trust_account_id", "transaction_date"),
    )

    @property
    def signed_amount(self) -> Decimal:
        """Amount with the sign it contributes to the balance."""
        if self.transaction_type in CREDIT_TYPES:
            return self.amount
        return -self.amount
