"""Pydantic schemas for expense input and receipt extraction output."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from obligation_ledger.calculators.types import ExpenseStatus

# ============================================================================
# Expense schemas
# ============================================================================


class ExpenseInput(BaseModel):
    """Schema for recording an expense.

    Shape only; business rules (positive amount, unit belongs to property,
    paid needs payment details) are checked by the expense ledger.
    """

    model_config = ConfigDict(from_attributes=True)

    property_id: UUID | None = None
    unit_id: UUID | None = None
    category_id: UUID | None = None
    vendor_name: str | None = None
    amount: Decimal
    tax_amount: Decimal = Decimal("0")
    transaction_date: date
    due_date: date | None = None
    status: ExpenseStatus = ExpenseStatus.PENDING
    payment_date: date | None = None
    payment_method: str | None = None
    reference: str | None = None
    description: str | None = None
    obligation_id: UUID | None = None


class ExpenseDraft(BaseModel):
    """Expense fields pre-filled from a processed receipt."""

    receipt_key: str
    expense_id: UUID | None = None
    vendor_name: str | None = None
    amount: Decimal | None = None
    tax_amount: Decimal | None = None
    transaction_date: date | None = None
    confidence: Decimal | None = None


# ============================================================================
# Receipt schemas
# ============================================================================


class ReceiptFields(BaseModel):
    """Structured fields read off a receipt.

    Unknown keys from the extractor are ignored. The receipt date is
    accepted under the key "date".
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    vendor: str | None = None
    receipt_date: date | None = Field(default=None, alias="date")
    total: Decimal | None = Field(default=None, ge=0)
    tax: Decimal | None = Field(default=None, ge=0)

    @field_validator("vendor")
    @classmethod
    def _strip_vendor(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None


@dataclass(frozen=True)
class Extraction:
    """Output of a receipt text extractor."""

    text: str
    confidence: Decimal | None = None
    fields: ReceiptFields = field(default_factory=ReceiptFields)
