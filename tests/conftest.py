"""Pytest fixtures for obligation ledger tests."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

import pytest

from obligation_ledger.database import LedgerStore
from obligation_ledger.events import DomainEvent, EventEmitter
from obligation_ledger.models import Lease, Property, Unit
from obligation_ledger.services import (
    ExpenseService,
    LateFeeService,
    ObligationService,
    PaymentService,
    ReportService,
    TrustService,
)

# In-memory SQLite shared across sessions through a StaticPool.
# Row locks are no-ops here; Postgres runs the same code with FOR UPDATE.
TEST_DATABASE_URL = "sqlite://"


@dataclass(frozen=True)
class Seed:
    """Ids of the owner context every test starts from."""

    property_id: UUID
    unit_id: UUID
    vacant_unit_id: UUID
    lease_id: UUID


@pytest.fixture
def store() -> Iterator[LedgerStore]:
    """Fresh in-memory ledger database per test."""
    store = LedgerStore.from_url(TEST_DATABASE_URL)
    store.create_all()
    yield store
    store.dispose()


@pytest.fixture
def events() -> list[DomainEvent]:
    return []


@pytest.fixture
def emitter(events: list[DomainEvent]) -> EventEmitter:
    """Emitter that records every published event."""
    emitter = EventEmitter()
    emitter.on_all(events.append)
    return emitter


@pytest.fixture
def seed(store: LedgerStore) -> Seed:
    """One property with an occupied and a vacant unit."""
    with store.transaction() as session:
        prop = Property(name="Maple Court")
        session.add(prop)
        session.flush()
        unit = Unit(property_id=prop.property_id, unit_number="101", market_rent=Decimal("1200"))
        vacant = Unit(
            property_id=prop.property_id, unit_number="102", market_rent=Decimal("1100")
        )
        session.add_all([unit, vacant])
        session.flush()
        lease = Lease(
            unit_id=unit.unit_id,
            tenant_name="Jordan Reyes",
            start_date=date(2025, 1, 1),
            status="active",
        )
        session.add(lease)
        session.flush()
        return Seed(
            property_id=prop.property_id,
            unit_id=unit.unit_id,
            vacant_unit_id=vacant.unit_id,
            lease_id=lease.lease_id,
        )


@pytest.fixture
def obligations(store: LedgerStore) -> ObligationService:
    return ObligationService(store)


@pytest.fixture
def late_fees(store: LedgerStore, emitter: EventEmitter) -> LateFeeService:
    return LateFeeService(store, emitter)


@pytest.fixture
def payments(store: LedgerStore, emitter: EventEmitter) -> PaymentService:
    return PaymentService(store, emitter)


@pytest.fixture
def trust(store: LedgerStore, emitter: EventEmitter) -> TrustService:
    return TrustService(store, emitter)


@pytest.fixture
def expenses(store: LedgerStore, emitter: EventEmitter) -> ExpenseService:
    return ExpenseService(store, emitter)


@pytest.fixture
def reports(store: LedgerStore) -> ReportService:
    return ReportService(store)


@pytest.fixture
def rent(obligations: ObligationService, seed: Seed) -> UUID:
    """Monthly $1000 rent due on the 1st, for the seeded lease."""
    obligation = obligations.create_obligation(
        property_id=seed.property_id,
        lease_id=seed.lease_id,
        amount="1000.00",
        frequency="monthly",
        anchor_day=1,
        start_date=date(2025, 1, 1),
    )
    return obligation.obligation_id
