"""Tests for ledger domain events.

Tests verify:
1. Event types are properly structured and serializable
2. Event emitter routes to correct handlers
3. Batches publish only when the block succeeds
4. Handler errors are isolated
"""

import json
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from obligation_ledger.events import (
    EventCategory,
    EventEmitter,
    EventMetadata,
    LateFeeCharged,
    PaymentRecorded,
    TrustTransferCompleted,
)


def late_fee_event(amount="50.00"):
    return LateFeeCharged(
        metadata=EventMetadata.create("late_fee_service"),
        charge_id=uuid4(),
        obligation_id=uuid4(),
        property_id=uuid4(),
        period_due_date=date(2026, 3, 1),
        days_late=9,
        amount=Decimal(amount),
    )


def transfer_event():
    return TrustTransferCompleted(
        metadata=EventMetadata.create("trust_service"),
        transfer_id=uuid4(),
        from_account_id=uuid4(),
        to_account_id=uuid4(),
        amount=Decimal("200"),
    )


class TestEventMetadata:
    def test_create_generates_ids(self):
        meta = EventMetadata.create("payment_service")

        assert meta.event_id is not None
        assert meta.correlation_id is not None
        assert meta.timestamp.tzinfo is not None
        assert meta.actor is None
        assert meta.source_service == "payment_service"

    def test_create_keeps_correlation_and_actor(self):
        correlation_id = uuid4()
        meta = EventMetadata.create("trust_service", correlation_id, actor="ops@example.com")
        assert meta.correlation_id == correlation_id
        assert meta.actor == "ops@example.com"


class TestEventTypes:
    def test_type_and_category(self):
        event = late_fee_event()
        assert event.event_type == "LateFeeCharged"
        assert event.category == EventCategory.LATE_FEE
        assert transfer_event().category == EventCategory.TRUST

    def test_serialization(self):
        event = PaymentRecorded(
            metadata=EventMetadata.create("payment_service"),
            payment_id=uuid4(),
            obligation_id=uuid4(),
            amount=Decimal("35.00"),
            payment_date=date(2026, 2, 15),
            allocated_to_fees=Decimal("35.00"),
            remainder=Decimal("0"),
            charges_paid=(uuid4(),),
        )

        data = event.to_dict()
        assert data["event_type"] == "PaymentRecorded"
        assert data["category"] == "payment"
        assert data["amount"] == "35.00"
        assert data["payment_date"] == "2026-02-15"
        assert len(data["charges_paid"]) == 1
        assert isinstance(data["metadata"]["event_id"], str)

        assert json.loads(event.to_json())["payment_id"] == str(event.payment_id)

    def test_events_are_immutable(self):
        event = late_fee_event()
        with pytest.raises(AttributeError):
            event.amount = Decimal("1")


class TestEventEmitter:
    def test_routes_by_type(self):
        emitter = EventEmitter()
        received = []
        emitter.on(LateFeeCharged, received.append)

        emitter.emit(late_fee_event())
        emitter.emit(transfer_event())

        assert [e.event_type for e in received] == ["LateFeeCharged"]

    def test_routes_by_category(self):
        emitter = EventEmitter()
        received = []
        emitter.on_category(EventCategory.TRUST, received.append)

        emitter.emit(late_fee_event())
        emitter.emit(transfer_event())

        assert [e.event_type for e in received] == ["TrustTransferCompleted"]

    def test_handler_failure_is_isolated(self):
        emitter = EventEmitter()
        received = []

        def broken(event):
            raise RuntimeError("mail server down")

        emitter.on_all(broken)
        emitter.on_all(received.append)

        assert emitter.emit(late_fee_event()) == 1
        assert len(received) == 1

    def test_off_unregisters(self):
        emitter = EventEmitter()
        received = []

        def handler(event):
            received.append(event)

        emitter.on_all(handler)
        emitter.off(handler)

        assert emitter.emit(late_fee_event()) == 0
        assert received == []

    def test_batch_publishes_after_block(self):
        emitter = EventEmitter()
        received = []
        emitter.on_all(received.append)

        with emitter.batch() as batch:
            batch.add(late_fee_event())
            batch.add(transfer_event())
            assert received == []

        assert len(received) == 2

    def test_batch_discarded_on_error(self):
        emitter = EventEmitter()
        received = []
        emitter.on_all(received.append)

        with pytest.raises(ValueError):
            with emitter.batch() as batch:
                batch.add(late_fee_event())
                raise ValueError("rollback")

        assert received == []
