"""Domain events published by the ledger engine."""

from obligation_ledger.events.emitter import EventBatch, EventEmitter
from obligation_ledger.events.types import (
    DomainEvent,
    EventCategory,
    EventMetadata,
    ExpenseRecorded,
    LateFeeCharged,
    LateFeeWaived,
    PaymentRecorded,
    ReceiptProcessed,
    TrustTransactionPosted,
    TrustTransferCompleted,
)

__all__ = [
    "EventEmitter",
    "EventBatch",
    "DomainEvent",
    "EventCategory",
    "EventMetadata",
    "LateFeeCharged",
    "LateFeeWaived",
    "PaymentRecorded",
    "TrustTransactionPosted",
    "TrustTransferCompleted",
    "ExpenseRecorded",
    "ReceiptProcessed",
]
