"""Expense category, expense and receipt image models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from obligation_ledger.models.base import Base, TimestampMixin


class ExpenseCategory(Base, TimestampMixin):
    """Hierarchical expense category. The parent graph is acyclic."""

    __tablename__ = "expense_category"

    category_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    parent_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("expense_category.category_id"), nullable=True, index=True
    )
    is_tax_deductible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "parent_id IS NULL OR parent_id != category_id",
            name="expense_category_not_own_parent",
        ),
    )


class Expense(Base, TimestampMixin):
    """A categorized expense against a property (and optionally a unit)."""

    __tablename__ = "expense"

    expense_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    property_id: Mapped[UUID] = mapped_column(
        ForeignKey("property.property_id"), nullable=False, index=True
    )
    unit_id: Mapped[UUID | None] = mapped_column(ForeignKey("unit.unit_id"), nullable=True)
    category_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("expense_category.category_id"), nullable=True, index=True
    )
    vendor_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(50), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    obligation_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("recurring_obligation.obligation_id"), nullable=True
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="expense_amount_check"),
        CheckConstraint("tax_amount >= 0", name="expense_tax_amount_check"),
        CheckConstraint(
            "status IN ('pending', 'paid', 'cancelled', 'disputed')",
            name="expense_status_check",
        ),
        CheckConstraint(
            "status != 'paid' OR (payment_date IS NOT NULL AND payment_method IS NOT NULL)",
            name="expense_paid_requires_payment_check",
        ),
        UniqueConstraint(
            "obligation_id", "transaction_date", name="expense_one_per_recurring_period"
        ),
        Index("expense_by_date", "property_id", "transaction_date"),
    )


class ReceiptImage(Base, TimestampMixin):
    """An uploaded receipt and the structured output of text extraction.

    `receipt_key` is the caller's receipt id and keys idempotent processing.
    """

    __tablename__ = "receipt_image"

    receipt_image_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    receipt_key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    expense_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("expense.expense_id"), nullable=True, index=True
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    ocr_processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ocr_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    ocr_confidence: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    ocr_fields: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ocr_processed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "(ocr_processed = false AND ocr_text IS NULL AND ocr_processed_at IS NULL) OR "
            "(ocr_processed = true AND ocr_text IS NOT NULL AND ocr_processed_at IS NOT NULL)",
            name="receipt_image_ocr_check",
        ),
    )
