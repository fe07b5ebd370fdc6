"""Owner context models: property, unit, lease.

These tables belong to the surrounding property-management system. The
engine reads them for owner context and the rent roll, and never writes
lease state itself.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from obligation_ledger.models.base import Base, TimestampMixin


class Property(Base, TimestampMixin):
    """A managed property."""

    __tablename__ = "property"

    property_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)


class Unit(Base, TimestampMixin):
    """A rentable unit within a property."""

    __tablename__ = "unit"

    unit_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    property_id: Mapped[UUID] = mapped_column(
        ForeignKey("property.property_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    unit_number: Mapped[str] = mapped_column(String(50), nullable=False)
    market_rent: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    __table_args__ = (
        UniqueConstraint("property_id", "unit_number", name="unit_number_per_property_uq"),
        CheckConstraint("market_rent >= 0", name="unit_market_rent_check"),
    )


class Lease(Base, TimestampMixin):
    """A lease occupying a unit."""

    __tablename__ = "lease"

    lease_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    unit_id: Mapped[UUID] = mapped_column(
        ForeignKey("unit.unit_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tenant_name: Mapped[str] = mapped_column(String(200), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'ended', 'pending')",
            name="lease_status_check",
        ),
        CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="lease_dates_check",
        ),
    )

    def is_active_on(self, as_of_date: date) -> bool:
        """Check if lease occupies its unit on a given date."""
        if self.status != "active":
            return False
        if self.start_date > as_of_date:
            return False
        if self.end_date is not None and self.end_date < as_of_date:
            return False
        return True
