"""Expense ledger: category tree, expenses, recurring expenses, receipts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from obligation_ledger.calculators.schedule import period_bounds
from obligation_ledger.calculators.types import (
    CENT,
    ZERO,
    ExpenseStatus,
    ObligationKind,
    parse_enum,
    positive_money,
    to_money,
)
from obligation_ledger.database import LedgerStore, get_for_update
from obligation_ledger.errors import (
    CategoryCycleError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from obligation_ledger.events import (
    EventEmitter,
    EventMetadata,
    ExpenseRecorded,
    ReceiptProcessed,
)
from obligation_ledger.models import (
    Expense,
    ExpenseCategory,
    Property,
    ReceiptImage,
    RecurringObligation,
    Unit,
)
from obligation_ledger.models.base import utcnow
from obligation_ledger.schemas import ExpenseDraft, ExpenseInput, Extraction
from obligation_ledger.services.state_machine import ExpenseStateMachine

logger = logging.getLogger(__name__)

SOURCE = "expense_service"

# A receipt total this far from the recorded amount replaces it
RECEIPT_CORRECTION_THRESHOLD = Decimal("0.05")

_UNSET: Any = object()


@dataclass(frozen=True)
class ExpenseFilter:
    """Typed filter for listing and reporting expenses."""

    property_id: UUID | None = None
    unit_id: UUID | None = None
    category_id: UUID | None = None
    vendor_name: str | None = None
    status: ExpenseStatus | str | None = None
    start_date: date | None = None
    end_date: date | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None

    def conditions(self) -> list[Any]:
        conds: list[Any] = []
        if self.property_id is not None:
            conds.append(Expense.property_id == self.property_id)
        if self.unit_id is not None:
            conds.append(Expense.unit_id == self.unit_id)
        if self.category_id is not None:
            conds.append(Expense.category_id == self.category_id)
        if self.vendor_name:
            conds.append(func.lower(Expense.vendor_name).contains(self.vendor_name.lower()))
        if self.status is not None:
            conds.append(Expense.status == parse_enum(ExpenseStatus, self.status, "status").value)
        if self.start_date is not None:
            conds.append(Expense.transaction_date >= self.start_date)
        if self.end_date is not None:
            conds.append(Expense.transaction_date <= self.end_date)
        if self.min_amount is not None:
            conds.append(Expense.amount >= to_money(self.min_amount, "min_amount"))
        if self.max_amount is not None:
            conds.append(Expense.amount <= to_money(self.max_amount, "max_amount"))
        return conds


@dataclass
class RecurringExpenseResult:
    """Summary of one recurring-expense run."""

    as_of: date
    created: list[UUID] = field(default_factory=list)
    skipped: list[UUID] = field(default_factory=list)
    errors: dict[UUID, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "as_of": self.as_of.isoformat(),
            "created": [str(i) for i in self.created],
            "skipped": len(self.skipped),
            "errors": {str(k): v for k, v in self.errors.items()},
        }


class ExpenseService:
    """Expense categories, expenses and receipts."""

    def __init__(self, store: LedgerStore, emitter: EventEmitter | None = None):
        self.store = store
        self.emitter = emitter or EventEmitter()

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    def create_category(
        self,
        name: str,
        parent_id: UUID | None = None,
        is_tax_deductible: bool = True,
        description: str | None = None,
    ) -> ExpenseCategory:
        """Create a category.

        Raises:
            ValidationError: Empty name
            ConflictError: An active category already has this name
            NotFoundError: Parent missing or inactive
        """
        name = self._clean_name(name)
        with self.store.transaction() as session:
            self._check_name_free(session, name)
            if parent_id is not None:
                self._active_category(session, parent_id)
            category = ExpenseCategory(
                name=name,
                parent_id=parent_id,
                is_tax_deductible=is_tax_deductible,
                description=description,
                is_active=True,
            )
            session.add(category)
            session.flush()

        logger.info("Created expense category %s (%s)", category.name, category.category_id)
        return category

    def update_category(
        self,
        category_id: UUID,
        *,
        name: str | None = None,
        parent_id: UUID | None = _UNSET,
        is_tax_deductible: bool | None = None,
        description: str | None = _UNSET,
    ) -> ExpenseCategory:
        """Update a category. Nothing is written if any check fails.

        Raises:
            NotFoundError: Category or new parent missing/inactive
            ConflictError: Name already used by another active category
            CategoryCycleError: New parent is the category or a descendant
        """
        with self.store.transaction() as session:
            category = get_for_update(session, ExpenseCategory, category_id, "ExpenseCategory")

            new_name = category.name
            if name is not None:
                new_name = self._clean_name(name)
                if new_name.lower() != category.name.lower():
                    self._check_name_free(session, new_name, exclude_id=category_id)

            new_parent = category.parent_id if parent_id is _UNSET else parent_id
            if parent_id is not _UNSET and parent_id is not None:
                if parent_id == category_id:
                    raise CategoryCycleError(category_id, parent_id)
                self._active_category(session, parent_id)
                self._check_no_cycle(session, category_id, parent_id)

            category.name = new_name
            category.parent_id = new_parent
            if is_tax_deductible is not None:
                category.is_tax_deductible = is_tax_deductible
            if description is not _UNSET:
                category.description = description

        logger.info("Updated expense category %s", category_id)
        return category

    def deactivate_category(self, category_id: UUID) -> int:
        """Deactivate a leaf category, moving its expenses to its parent.

        Recurring expense obligations are repointed as well so later
        materialization never lands in the inactive category.

        Returns:
            Number of expenses and obligations reassigned.

        Raises:
            ConflictError: The category still has active children
        """
        with self.store.transaction() as session:
            category = get_for_update(session, ExpenseCategory, category_id, "ExpenseCategory")
            if not category.is_active:
                return 0
            child = session.execute(
                select(ExpenseCategory.category_id).where(
                    ExpenseCategory.parent_id == category_id,
                    ExpenseCategory.is_active.is_(True),
                )
            ).first()
            if child is not None:
                raise ConflictError(
                    f"Cannot deactivate category {category_id} with active child categories"
                )

            result = session.execute(
                update(Expense)
                .where(Expense.category_id == category_id)
                .values(category_id=category.parent_id)
                .execution_options(synchronize_session=False)
            )
            reassigned = result.rowcount
            result = session.execute(
                update(RecurringObligation)
                .where(RecurringObligation.expense_category_id == category_id)
                .values(expense_category_id=category.parent_id)
                .execution_options(synchronize_session=False)
            )
            reassigned += result.rowcount
            category.is_active = False

        logger.info(
            "Deactivated expense category %s; %d expense(s) and obligation(s) moved to %s",
            category_id,
            reassigned,
            category.parent_id,
        )
        return reassigned

    def list_categories(self, active_only: bool = True) -> list[ExpenseCategory]:
        stmt = select(ExpenseCategory).order_by(ExpenseCategory.name)
        if active_only:
            stmt = stmt.where(ExpenseCategory.is_active.is_(True))
        with self.store.transaction() as session:
            return list(session.execute(stmt).scalars())

    @staticmethod
    def _clean_name(name: str) -> str:
        if not name or not name.strip():
            raise ValidationError("Category name is required", field="name")
        return name.strip()

    @staticmethod
    def _check_name_free(session: Session, name: str, exclude_id: UUID | None = None) -> None:
        stmt = select(ExpenseCategory.category_id).where(
            func.lower(ExpenseCategory.name) == name.lower(),
            ExpenseCategory.is_active.is_(True),
        )
        if exclude_id is not None:
            stmt = stmt.where(ExpenseCategory.category_id != exclude_id)
        if session.execute(stmt).first() is not None:
            raise ConflictError(f'An expense category named "{name}" already exists')

    @staticmethod
    def _active_category(session: Session, category_id: UUID) -> ExpenseCategory:
        category = session.get(ExpenseCategory, category_id)
        if category is None or not category.is_active:
            raise NotFoundError("ExpenseCategory", category_id)
        return category

    @staticmethod
    def _check_no_cycle(session: Session, category_id: UUID, parent_id: UUID) -> None:
        """Walk up from the proposed parent; meeting category_id is a cycle."""
        seen: set[UUID] = set()
        current: UUID | None = parent_id
        while current is not None and current not in seen:
            if current == category_id:
                raise CategoryCycleError(category_id, parent_id)
            seen.add(current)
            current = session.execute(
                select(ExpenseCategory.parent_id).where(ExpenseCategory.category_id == current)
            ).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    def record_expense(self, data: ExpenseInput) -> Expense:
        """Record an expense.

        Raises:
            ValidationError: Missing property/unit, bad amounts, paid
                without payment details
            NotFoundError: Property, unit or category missing
        """
        if data.property_id is None and data.unit_id is None:
            raise ValidationError("Either property_id or unit_id is required", field="property_id")
        amount = positive_money(data.amount)
        tax = to_money(data.tax_amount, "tax_amount")
        if tax < ZERO:
            raise ValidationError("tax_amount must not be negative", field="tax_amount")
        status = parse_enum(ExpenseStatus, data.status, "status")
        if status == ExpenseStatus.PAID and (data.payment_date is None or not data.payment_method):
            raise ValidationError(
                "Paid expenses need a payment_date and payment_method", field="payment_date"
            )

        with self.emitter.batch() as batch:
            with self.store.transaction() as session:
                property_id = self._resolve_property(session, data.property_id, data.unit_id)
                if data.category_id is not None:
                    self._active_category(session, data.category_id)
                if (
                    data.obligation_id is not None
                    and session.get(RecurringObligation, data.obligation_id) is None
                ):
                    raise NotFoundError("RecurringObligation", data.obligation_id)

                expense = Expense(
                    property_id=property_id,
                    unit_id=data.unit_id,
                    category_id=data.category_id,
                    vendor_name=data.vendor_name,
                    amount=amount,
                    tax_amount=tax,
                    transaction_date=data.transaction_date,
                    due_date=data.due_date,
                    payment_date=data.payment_date,
                    payment_method=data.payment_method,
                    reference=data.reference,
                    description=data.description,
                    status=status.value,
                    obligation_id=data.obligation_id,
                )
                session.add(expense)
                session.flush()
                batch.add(
                    ExpenseRecorded(
                        metadata=EventMetadata.create(SOURCE),
                        expense_id=expense.expense_id,
                        property_id=property_id,
                        category_id=expense.category_id,
                        amount=amount,
                        is_recurring=expense.obligation_id is not None,
                    )
                )

        logger.info(
            "Recorded expense %s of %s for property %s",
            expense.expense_id,
            amount,
            property_id,
        )
        return expense

    @staticmethod
    def _resolve_property(
        session: Session, property_id: UUID | None, unit_id: UUID | None
    ) -> UUID:
        if unit_id is not None:
            unit = session.get(Unit, unit_id)
            if unit is None:
                raise NotFoundError("Unit", unit_id)
            if property_id is not None and unit.property_id != property_id:
                raise ValidationError(
                    f"Unit {unit_id} does not belong to property {property_id}", field="unit_id"
                )
            return unit.property_id
        if session.get(Property, property_id) is None:
            raise NotFoundError("Property", property_id)
        return property_id  # type: ignore[return-value]

    def get_expense(self, expense_id: UUID) -> Expense:
        with self.store.transaction() as session:
            expense = session.get(Expense, expense_id)
            if expense is None:
                raise NotFoundError("Expense", expense_id)
            return expense

    def mark_paid(
        self,
        expense_id: UUID,
        payment_date: date,
        payment_method: str,
        reference: str | None = None,
    ) -> Expense:
        """Mark an expense paid.

        Raises:
            ValidationError: Missing payment method
            InvalidTransitionError: Already paid or cancelled
        """
        if not payment_method or not payment_method.strip():
            raise ValidationError("Payment method is required", field="payment_method")
        with self.store.transaction() as session:
            expense = get_for_update(session, Expense, expense_id, "Expense")
            ExpenseStateMachine.validate_transition(expense.status, ExpenseStatus.PAID.value)
            expense.status = ExpenseStatus.PAID.value
            expense.payment_date = payment_date
            expense.payment_method = payment_method.strip()
            if reference is not None:
                expense.reference = reference

        logger.info("Expense %s paid on %s", expense_id, payment_date)
        return expense

    def set_status(self, expense_id: UUID, status: ExpenseStatus | str) -> Expense:
        """Move an expense to a new status. Use mark_paid for payments."""
        target = parse_enum(ExpenseStatus, status, "status")
        with self.store.transaction() as session:
            expense = get_for_update(session, Expense, expense_id, "Expense")
            ExpenseStateMachine.validate_transition(expense.status, target.value)
            if target == ExpenseStatus.PAID and (
                expense.payment_date is None or not expense.payment_method
            ):
                raise ValidationError(
                    "Paid expenses need a payment_date and payment_method; use mark_paid",
                    field="status",
                )
            previous = expense.status
            expense.status = target.value

        logger.info("Expense %s status %s -> %s", expense_id, previous, target.value)
        return expense

    def list_expenses(self, expense_filter: ExpenseFilter | None = None) -> list[Expense]:
        """List expenses matching the filter, newest first."""
        expense_filter = expense_filter or ExpenseFilter()
        stmt = (
            select(Expense)
            .where(*expense_filter.conditions())
            .order_by(Expense.transaction_date.desc(), Expense.created_at.desc())
        )
        with self.store.transaction() as session:
            return list(session.execute(stmt).scalars())

    # -------------------------------------------------------------------------
    # Recurring expenses
    # -------------------------------------------------------------------------

    def process_recurring_expenses(self, as_of: date) -> RecurringExpenseResult:
        """Create the pending expense for the current period of each
        active expense obligation. Safe to re-run for the same as_of.
        """
        with self.store.transaction() as session:
            obligation_ids = list(
                session.execute(
                    select(RecurringObligation.obligation_id)
                    .where(
                        RecurringObligation.is_active.is_(True),
                        RecurringObligation.kind == ObligationKind.EXPENSE.value,
                        RecurringObligation.start_date <= as_of,
                        (RecurringObligation.end_date.is_(None))
                        | (RecurringObligation.end_date >= as_of),
                    )
                    .order_by(RecurringObligation.obligation_id)
                ).scalars()
            )

        result = RecurringExpenseResult(as_of=as_of)
        for obligation_id in obligation_ids:
            try:
                expense_id = self._materialize(obligation_id, as_of)
            except Exception as e:
                logger.exception("Recurring expense failed for obligation %s", obligation_id)
                result.errors[obligation_id] = f"{type(e).__name__}: {e}"
                continue
            if expense_id is None:
                result.skipped.append(obligation_id)
            else:
                result.created.append(expense_id)

        logger.info(
            "Recurring expenses as of %s: %d created, %d skipped, %d errors",
            as_of,
            len(result.created),
            len(result.skipped),
            len(result.errors),
        )
        return result

    def _materialize(self, obligation_id: UUID, as_of: date) -> UUID | None:
        with self.emitter.batch() as batch:
            with self.store.transaction() as session:
                obligation = get_for_update(
                    session, RecurringObligation, obligation_id, "RecurringObligation"
                )
                due = period_bounds(
                    obligation.frequency, obligation.anchor_day, as_of, obligation.start_date
                ).due_date
                if due < obligation.start_date:
                    return None
                existing = session.execute(
                    select(Expense.expense_id).where(
                        Expense.obligation_id == obligation_id,
                        Expense.transaction_date == due,
                    )
                ).first()
                if existing is not None:
                    return None

                expense = Expense(
                    property_id=obligation.property_id,
                    unit_id=obligation.unit_id,
                    category_id=obligation.expense_category_id,
                    vendor_name=obligation.vendor_name,
                    amount=obligation.amount,
                    tax_amount=obligation.tax_amount,
                    transaction_date=due,
                    due_date=due,
                    description=obligation.description or f"Recurring expense for {due:%B %Y}",
                    status=ExpenseStatus.PENDING.value,
                    obligation_id=obligation_id,
                )
                session.add(expense)
                session.flush()
                batch.add(
                    ExpenseRecorded(
                        metadata=EventMetadata.create(SOURCE),
                        expense_id=expense.expense_id,
                        property_id=expense.property_id,
                        category_id=expense.category_id,
                        amount=expense.amount,
                        is_recurring=True,
                    )
                )
                return expense.expense_id

    # -------------------------------------------------------------------------
    # Receipts
    # -------------------------------------------------------------------------

    def attach_receipt(
        self,
        receipt_key: str,
        file_name: str,
        mime_type: str,
        expense_id: UUID | None = None,
    ) -> ReceiptImage:
        """Register an uploaded receipt, optionally against an expense."""
        if not receipt_key:
            raise ValidationError("receipt_key is required", field="receipt_key")
        with self.store.transaction() as session:
            if expense_id is not None and session.get(Expense, expense_id) is None:
                raise NotFoundError("Expense", expense_id)
            if session.execute(
                select(ReceiptImage.receipt_image_id).where(ReceiptImage.receipt_key == receipt_key)
            ).first() is not None:
                raise ConflictError(f"Receipt {receipt_key} is already attached")
            receipt = ReceiptImage(
                receipt_key=receipt_key,
                expense_id=expense_id,
                file_name=file_name,
                mime_type=mime_type,
                ocr_processed=False,
            )
            session.add(receipt)
            session.flush()

        logger.info("Attached receipt %s to expense %s", receipt_key, expense_id)
        return receipt

    def get_receipt(self, receipt_key: str) -> ReceiptImage:
        with self.store.transaction() as session:
            return self._receipt(session, receipt_key)

    def is_receipt_processed(self, receipt_key: str) -> bool:
        return self.get_receipt(receipt_key).ocr_processed

    @staticmethod
    def _receipt(session: Session, receipt_key: str, lock: bool = False) -> ReceiptImage:
        stmt = select(ReceiptImage).where(ReceiptImage.receipt_key == receipt_key)
        if lock:
            stmt = stmt.with_for_update()
        receipt = session.execute(stmt).scalar_one_or_none()
        if receipt is None:
            raise NotFoundError("ReceiptImage", receipt_key)
        return receipt

    def apply_receipt_extraction(self, receipt_key: str, extraction: Extraction) -> ReceiptImage:
        """Store extraction output for a receipt.

        Already-processed receipts are returned unchanged. When the linked
        expense is still pending and the extracted total differs from its
        amount by more than 5%, the expense takes the receipt's figures.
        """
        confidence = None
        if extraction.confidence is not None:
            confidence = Decimal(str(extraction.confidence)).quantize(
                CENT, rounding=ROUND_HALF_UP
            )
            if not ZERO <= confidence <= Decimal("100"):
                raise ValidationError(
                    f"confidence must be between 0 and 100, got {confidence}", field="confidence"
                )

        with self.emitter.batch() as batch:
            with self.store.transaction() as session:
                receipt = self._receipt(session, receipt_key, lock=True)
                if receipt.ocr_processed:
                    logger.info("Receipt %s already processed; skipping", receipt_key)
                    return receipt

                fields = extraction.fields
                receipt.ocr_processed = True
                receipt.ocr_text = extraction.text
                receipt.ocr_confidence = confidence
                receipt.ocr_fields = fields.model_dump(mode="json", by_alias=True)
                receipt.ocr_processed_at = utcnow()

                if receipt.expense_id is not None and fields.total:
                    self._correct_from_receipt(session, receipt.expense_id, extraction)

                batch.add(
                    ReceiptProcessed(
                        metadata=EventMetadata.create(SOURCE),
                        receipt_key=receipt_key,
                        expense_id=receipt.expense_id,
                        confidence=confidence,
                    )
                )

        logger.info("Stored extraction for receipt %s (confidence %s)", receipt_key, confidence)
        return receipt

    @staticmethod
    def _correct_from_receipt(session: Session, expense_id: UUID, extraction: Extraction) -> None:
        expense = get_for_update(session, Expense, expense_id, "Expense")
        if expense.status != ExpenseStatus.PENDING.value:
            return
        fields = extraction.fields
        extracted = to_money(fields.total, "total")
        if extracted <= ZERO:
            return
        if abs(expense.amount - extracted) / expense.amount <= RECEIPT_CORRECTION_THRESHOLD:
            return

        logger.info(
            "Expense %s amount %s corrected to receipt total %s",
            expense_id,
            expense.amount,
            extracted,
        )
        expense.amount = extracted
        if fields.tax is not None:
            expense.tax_amount = to_money(fields.tax, "tax")
        if fields.receipt_date is not None:
            expense.transaction_date = fields.receipt_date
        if fields.vendor:
            expense.vendor_name = fields.vendor

    def draft_from_receipt(self, receipt_key: str) -> ExpenseDraft:
        """Pre-fill expense fields from a processed receipt.

        Raises:
            ConflictError: The receipt has not been processed yet
        """
        receipt = self.get_receipt(receipt_key)
        if not receipt.ocr_processed:
            raise ConflictError(f"Receipt {receipt_key} has not been processed")
        fields = receipt.ocr_fields or {}
        draft = ExpenseDraft(
            receipt_key=receipt_key,
            expense_id=receipt.expense_id,
            vendor_name=fields.get("vendor"),
            amount=fields.get("total"),
            tax_amount=fields.get("tax"),
            transaction_date=fields.get("date"),
            confidence=receipt.ocr_confidence,
        )
        return draft
