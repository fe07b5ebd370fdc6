"""Domain event types emitted by the ledger engine.

All events are:
- Immutable (frozen dataclasses)
- Typed with explicit payloads
- Serializable for a notification dispatcher

The engine only publishes these events. Delivery (email, SMS, webhooks)
belongs to whoever subscribes.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    LATE_FEE = "late_fee"
    PAYMENT = "payment"
    TRUST = "trust"
    EXPENSE = "expense"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: UUID
    timestamp: datetime
    correlation_id: UUID  # Links related events
    actor: str | None  # User or system that triggered
    source_service: str

    @classmethod
    def create(
        cls,
        source_service: str,
        correlation_id: UUID | None = None,
        actor: str | None = None,
    ) -> EventMetadata:
        """Create metadata with auto-generated fields."""
        return cls(
            event_id=uuid4(),
            timestamp=datetime.now(timezone.utc),
            correlation_id=correlation_id or uuid4(),
            actor=actor,
            source_service=source_service,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    @property
    def category(self) -> EventCategory:
        """Event category for filtering."""
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        data = _serialize_dict(asdict(self))
        data["event_type"] = self.event_type
        data["category"] = self.category.value
        return data

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


def _serialize_dict(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize_dict(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_serialize_dict(v) for v in obj]
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    return obj


# =============================================================================
# Late Fee Events
# =============================================================================


@dataclass(frozen=True)
class LateFeeCharged(DomainEvent):
    """A late fee charge was created for an obligation period."""

    charge_id: UUID
    obligation_id: UUID
    property_id: UUID
    period_due_date: date
    days_late: int
    amount: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.LATE_FEE


@dataclass(frozen=True)
class LateFeeWaived(DomainEvent):
    """A pending late fee was waived."""

    charge_id: UUID
    obligation_id: UUID
    amount: Decimal
    reason: str
    waived_by: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.LATE_FEE


# =============================================================================
# Payment Events
# =============================================================================


@dataclass(frozen=True)
class PaymentRecorded(DomainEvent):
    """A payment was recorded and allocated."""

    payment_id: UUID
    obligation_id: UUID
    amount: Decimal
    payment_date: date
    allocated_to_fees: Decimal
    remainder: Decimal
    charges_paid: tuple[UUID, ...]

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT


# =============================================================================
# Trust Events
# =============================================================================


@dataclass(frozen=True)
class TrustTransactionPosted(DomainEvent):
    """A trust ledger line was appended."""

    transaction_id: UUID
    trust_account_id: UUID
    transaction_type: str
    amount: Decimal
    balance_after: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.TRUST


@dataclass(frozen=True)
class TrustTransferCompleted(DomainEvent):
    """Funds moved between two trust accounts."""

    transfer_id: UUID
    from_account_id: UUID
    to_account_id: UUID
    amount: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.TRUST


# =============================================================================
# Expense Events
# =============================================================================


@dataclass(frozen=True)
class ExpenseRecorded(DomainEvent):
    """An expense was recorded (manually or from a recurring obligation)."""

    expense_id: UUID
    property_id: UUID
    category_id: UUID | None
    amount: Decimal
    is_recurring: bool

    @property
    def category(self) -> EventCategory:
        return EventCategory.EXPENSE


@dataclass(frozen=True)
class ReceiptProcessed(DomainEvent):
    """Text extraction output was stored for a receipt."""

    receipt_key: str
    expense_id: UUID | None
    confidence: Decimal | None

    @property
    def category(self) -> EventCategory:
        return EventCategory.EXPENSE
