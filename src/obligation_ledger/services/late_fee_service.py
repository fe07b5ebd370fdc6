"""Late fee service - idempotent late fee assessment.

Evaluates one obligation period at a time:
- Grace period and payments-in-period checks
- At most one charge per (obligation, period), enforced by a unique
  constraint with a savepoint to absorb a lost race
- Batch sweep with per-obligation transactions and collected errors
- Waive / cancel through the charge state machine
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import exc as sa_exc
from sqlalchemy import select
from sqlalchemy.orm import Session

from obligation_ledger.calculators.late_fee import compute_fee
from obligation_ledger.calculators.schedule import period_bounds
from obligation_ledger.calculators.types import (
    ZERO,
    ChargeStatus,
    FeeType,
    parse_enum,
    positive_money,
    positive_rate,
    to_money,
)
from obligation_ledger.config import EngineConfig
from obligation_ledger.database import LedgerStore, get_for_update
from obligation_ledger.errors import DuplicateChargeError, NotFoundError, ValidationError
from obligation_ledger.events import (
    EventBatch,
    EventEmitter,
    EventMetadata,
    LateFeeCharged,
    LateFeeWaived,
)
from obligation_ledger.models import (
    LateFeeCharge,
    LateFeeConfiguration,
    Property,
    RecurringObligation,
)
from obligation_ledger.models.base import utcnow
from obligation_ledger.services.payment_service import paid_in_period
from obligation_ledger.services.state_machine import ChargeStateMachine

logger = logging.getLogger(__name__)

SOURCE = "late_fee_service"


class SkipReason(str, Enum):
    """Why a period produced no charge."""

    INACTIVE = "inactive"
    OUTSIDE_WINDOW = "outside_window"
    BEFORE_START = "before_start"
    NO_CONFIGURATION = "no_configuration"
    WITHIN_GRACE = "within_grace"
    SATISFIED = "satisfied"
    ALREADY_CHARGED = "already_charged"
    NO_FEE = "no_fee"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class FeeDecision:
    """Outcome of evaluating one obligation period.

    Exactly one of `charge_id` (new charge) or `skip_reason` is meaningful;
    ALREADY_CHARGED and DUPLICATE skips also carry the existing charge id
    when it is known.
    """

    obligation_id: UUID
    period_due_date: date | None
    skip_reason: SkipReason | None = None
    charge_id: UUID | None = None
    amount: Decimal = ZERO
    days_late: int = 0

    @property
    def charged(self) -> bool:
        return self.skip_reason is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "obligation_id": str(self.obligation_id),
            "period_due_date": self.period_due_date.isoformat() if self.period_due_date else None,
            "charged": self.charged,
            "skip_reason": self.skip_reason.value if self.skip_reason else None,
            "charge_id": str(self.charge_id) if self.charge_id else None,
            "amount": str(self.amount),
            "days_late": self.days_late,
        }


@dataclass(frozen=True)
class SweepError:
    obligation_id: UUID
    error_type: str
    message: str


@dataclass
class SweepResult:
    """Summary of one late fee sweep."""

    as_of: date
    decisions: list[FeeDecision] = field(default_factory=list)
    errors: list[SweepError] = field(default_factory=list)

    @property
    def charged(self) -> list[FeeDecision]:
        return [d for d in self.decisions if d.charged]

    @property
    def skipped(self) -> list[FeeDecision]:
        return [d for d in self.decisions if not d.charged]

    @property
    def total_charged(self) -> Decimal:
        return sum((d.amount for d in self.charged), ZERO)

    def to_dict(self) -> dict[str, Any]:
        return {
            "as_of": self.as_of.isoformat(),
            "evaluated": len(self.decisions),
            "charged": len(self.charged),
            "skipped": len(self.skipped),
            "total_charged": str(self.total_charged),
            "errors": [
                {
                    "obligation_id": str(e.obligation_id),
                    "error_type": e.error_type,
                    "message": e.message,
                }
                for e in self.errors
            ],
            "charges": [d.to_dict() for d in self.charged],
        }


@dataclass(frozen=True)
class ChargeFilter:
    """Typed filter for listing late fee charges."""

    obligation_id: UUID | None = None
    property_id: UUID | None = None
    status: ChargeStatus | str | None = None
    due_from: date | None = None
    due_to: date | None = None

    def conditions(self) -> list[Any]:
        conds: list[Any] = []
        if self.obligation_id is not None:
            conds.append(LateFeeCharge.obligation_id == self.obligation_id)
        if self.property_id is not None:
            conds.append(RecurringObligation.property_id == self.property_id)
        if self.status is not None:
            conds.append(
                LateFeeCharge.status == parse_enum(ChargeStatus, self.status, "status").value
            )
        if self.due_from is not None:
            conds.append(LateFeeCharge.period_due_date >= self.due_from)
        if self.due_to is not None:
            conds.append(LateFeeCharge.period_due_date <= self.due_to)
        return conds


class LateFeeService:
    """Late fee configuration, assessment and charge lifecycle."""

    def __init__(
        self,
        store: LedgerStore,
        emitter: EventEmitter | None = None,
        config: EngineConfig | None = None,
    ):
        self.store = store
        self.emitter = emitter or EventEmitter()
        self.config = config or EngineConfig()

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def configure(
        self,
        *,
        property_id: UUID,
        fee_type: FeeType | str,
        fee_value: Decimal | str | int,
        grace_period_days: int = 0,
        minimum_fee: Decimal | str | int | None = None,
        maximum_fee: Decimal | str | int | None = None,
    ) -> LateFeeConfiguration:
        """Create the active late fee configuration for a property.

        Any previously active configuration is deactivated in the same
        transaction, so a property never has two.

        Raises:
            ValidationError: Bad fee type, value, grace period or bounds
            NotFoundError: Property does not exist
        """
        kind = parse_enum(FeeType, fee_type, "fee_type")
        if kind == FeeType.FIXED:
            value = positive_money(fee_value, "fee_value")
        else:
            value = positive_rate(fee_value, "fee_value")
        if isinstance(grace_period_days, bool) or not isinstance(grace_period_days, int):
            raise ValidationError("grace_period_days must be an integer", field="grace_period_days")
        if grace_period_days < 0:
            raise ValidationError(
                "grace_period_days must not be negative", field="grace_period_days"
            )
        min_fee = to_money(minimum_fee, "minimum_fee") if minimum_fee is not None else None
        max_fee = to_money(maximum_fee, "maximum_fee") if maximum_fee is not None else None
        for name, bound in (("minimum_fee", min_fee), ("maximum_fee", max_fee)):
            if bound is not None and bound < ZERO:
                raise ValidationError(f"{name} must not be negative", field=name)
        if min_fee is not None and max_fee is not None and min_fee > max_fee:
            raise ValidationError(
                f"minimum_fee {min_fee} exceeds maximum_fee {max_fee}", field="minimum_fee"
            )

        with self.store.transaction() as session:
            if session.get(Property, property_id) is None:
                raise NotFoundError("Property", property_id)
            previous = session.execute(
                select(LateFeeConfiguration)
                .where(
                    LateFeeConfiguration.property_id == property_id,
                    LateFeeConfiguration.is_active.is_(True),
                )
                .with_for_update()
            ).scalars().all()
            for old in previous:
                old.is_active = False

            configuration = LateFeeConfiguration(
                property_id=property_id,
                fee_type=kind.value,
                fee_value=value,
                grace_period_days=grace_period_days,
                minimum_fee=min_fee,
                maximum_fee=max_fee,
                is_active=True,
            )
            session.add(configuration)
            session.flush()

        logger.info(
            "Configured %s late fee %s (grace %d days) for property %s, replaced %d",
            configuration.fee_type,
            configuration.fee_value,
            configuration.grace_period_days,
            property_id,
            len(previous),
        )
        return configuration

    def deactivate_configuration(self, property_id: UUID) -> bool:
        """Deactivate the property's active configuration, if any."""
        with self.store.transaction() as session:
            active = session.execute(
                select(LateFeeConfiguration)
                .where(
                    LateFeeConfiguration.property_id == property_id,
                    LateFeeConfiguration.is_active.is_(True),
                )
                .with_for_update()
            ).scalars().all()
            for configuration in active:
                configuration.is_active = False

        if active:
            logger.info("Deactivated late fee configuration for property %s", property_id)
        return bool(active)

    def get_active_configuration(self, property_id: UUID) -> LateFeeConfiguration | None:
        with self.store.transaction() as session:
            return self._active_configuration(session, property_id)

    def _active_configuration(
        self, session: Session, property_id: UUID
    ) -> LateFeeConfiguration | None:
        return session.execute(
            select(LateFeeConfiguration)
            .where(
                LateFeeConfiguration.property_id == property_id,
                LateFeeConfiguration.is_active.is_(True),
            )
            .order_by(LateFeeConfiguration.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Assessment
    # -------------------------------------------------------------------------

    def evaluate_period(self, obligation_id: UUID, as_of: date) -> FeeDecision:
        """Assess the late fee for the period containing as_of.

        Runs in one transaction. LateFeeCharged is emitted only after the
        charge commits.

        Raises:
            NotFoundError: Obligation does not exist
        """
        with self.emitter.batch() as batch:
            with self.store.transaction() as session:
                decision = self._evaluate(session, obligation_id, as_of, batch)

        if decision.charged:
            logger.info(
                "Late fee %s charged on obligation %s period %s (%d days late)",
                decision.amount,
                obligation_id,
                decision.period_due_date,
                decision.days_late,
            )
        else:
            logger.debug(
                "No late fee for obligation %s as of %s: %s",
                obligation_id,
                as_of,
                decision.skip_reason.value if decision.skip_reason else None,
            )
        return decision

    def assess_period(self, obligation_id: UUID, as_of: date) -> FeeDecision:
        """Operator-triggered assessment of a single period.

        Same rules as evaluate_period, except that a period which already
        carries a charge is an error rather than a quiet skip.

        Raises:
            NotFoundError: Obligation does not exist
            DuplicateChargeError: The period has already been charged
        """
        decision = self.evaluate_period(obligation_id, as_of)
        if decision.skip_reason in (SkipReason.ALREADY_CHARGED, SkipReason.DUPLICATE):
            assert decision.period_due_date is not None
            raise DuplicateChargeError(obligation_id, decision.period_due_date)
        return decision

    def _evaluate(
        self,
        session: Session,
        obligation_id: UUID,
        as_of: date,
        batch: EventBatch,
    ) -> FeeDecision:
        obligation = get_for_update(
            session, RecurringObligation, obligation_id, "RecurringObligation"
        )

        def skip(reason: SkipReason, due: date | None = None, **extra: Any) -> FeeDecision:
            return FeeDecision(
                obligation_id=obligation_id, period_due_date=due, skip_reason=reason, **extra
            )

        if not obligation.is_active:
            return skip(SkipReason.INACTIVE)
        if not obligation.is_effective_on(as_of):
            return skip(SkipReason.OUTSIDE_WINDOW)

        configuration = self._active_configuration(session, obligation.property_id)
        if configuration is None:
            return skip(SkipReason.NO_CONFIGURATION)

        period = period_bounds(
            obligation.frequency, obligation.anchor_day, as_of, obligation.start_date
        )
        due = period.due_date
        if due < obligation.start_date:
            return skip(SkipReason.BEFORE_START, due)

        days_late = (as_of - due).days
        if days_late <= configuration.grace_period_days:
            return skip(SkipReason.WITHIN_GRACE, due, days_late=days_late)

        paid = paid_in_period(session, obligation_id, period, as_of)
        if paid >= obligation.amount:
            return skip(SkipReason.SATISFIED, due, days_late=days_late)

        existing = self._existing_charge_id(session, obligation_id, due)
        if existing is not None:
            return skip(SkipReason.ALREADY_CHARGED, due, charge_id=existing, days_late=days_late)

        fee = compute_fee(configuration, obligation.amount, paid)
        if fee <= ZERO:
            return skip(SkipReason.NO_FEE, due, days_late=days_late)

        charge = LateFeeCharge(
            obligation_id=obligation_id,
            configuration_id=configuration.configuration_id,
            period_due_date=due,
            days_late=days_late,
            original_amount=fee,
            amount=fee,
            status=ChargeStatus.PENDING.value,
        )
        try:
            with session.begin_nested():
                session.add(charge)
                session.flush()
        except sa_exc.IntegrityError:
            logger.warning(
                "Concurrent late fee for obligation %s period %s; skipping duplicate",
                obligation_id,
                due,
            )
            return skip(SkipReason.DUPLICATE, due, days_late=days_late)

        batch.add(
            LateFeeCharged(
                metadata=EventMetadata.create(SOURCE),
                charge_id=charge.charge_id,
                obligation_id=obligation_id,
                property_id=obligation.property_id,
                period_due_date=due,
                days_late=days_late,
                amount=fee,
            )
        )
        return FeeDecision(
            obligation_id=obligation_id,
            period_due_date=due,
            charge_id=charge.charge_id,
            amount=fee,
            days_late=days_late,
        )

    def _existing_charge_id(
        self, session: Session, obligation_id: UUID, period_due_date: date
    ) -> UUID | None:
        return session.execute(
            select(LateFeeCharge.charge_id).where(
                LateFeeCharge.obligation_id == obligation_id,
                LateFeeCharge.period_due_date == period_due_date,
            )
        ).scalar_one_or_none()

    def run_sweep(self, as_of: date) -> SweepResult:
        """Evaluate every active obligation of the configured sweep kinds.

        Each obligation gets its own transaction; one failure neither
        rolls back nor stops the others. Re-running with the same as_of
        creates no new charges.
        """
        with self.store.transaction() as session:
            obligation_ids = list(
                session.execute(
                    select(RecurringObligation.obligation_id)
                    .where(
                        RecurringObligation.is_active.is_(True),
                        RecurringObligation.kind.in_(self.config.sweep_kinds),
                    )
                    .order_by(RecurringObligation.obligation_id)
                ).scalars()
            )

        result = SweepResult(as_of=as_of)
        for obligation_id in obligation_ids:
            try:
                result.decisions.append(self.evaluate_period(obligation_id, as_of))
            except Exception as e:
                logger.exception(
                    "Late fee evaluation failed for obligation %s as of %s",
                    obligation_id,
                    as_of,
                )
                result.errors.append(
                    SweepError(
                        obligation_id=obligation_id,
                        error_type=type(e).__name__,
                        message=str(e),
                    )
                )

        logger.info(
            "Late fee sweep as of %s: %d evaluated, %d charged (%s), %d errors",
            as_of,
            len(result.decisions),
            len(result.charged),
            result.total_charged,
            len(result.errors),
        )
        return result

    # -------------------------------------------------------------------------
    # Charge lifecycle
    # -------------------------------------------------------------------------

    def waive_charge(self, charge_id: UUID, reason: str, waived_by: str) -> LateFeeCharge:
        """Waive a pending charge.

        Raises:
            ValidationError: Missing reason or actor
            NotFoundError: Charge does not exist
            InvalidTransitionError: Charge is not pending
        """
        if not reason or not reason.strip():
            raise ValidationError("A waiver reason is required", field="reason")
        if not waived_by or not waived_by.strip():
            raise ValidationError("waived_by is required", field="waived_by")

        with self.emitter.batch() as batch:
            with self.store.transaction() as session:
                charge = get_for_update(session, LateFeeCharge, charge_id, "LateFeeCharge")
                ChargeStateMachine.validate_transition(charge.status, ChargeStatus.WAIVED.value)
                charge.status = ChargeStatus.WAIVED.value
                charge.waived_reason = reason.strip()
                charge.waived_by = waived_by.strip()
                charge.waived_at = utcnow()
                batch.add(
                    LateFeeWaived(
                        metadata=EventMetadata.create(SOURCE, actor=charge.waived_by),
                        charge_id=charge.charge_id,
                        obligation_id=charge.obligation_id,
                        amount=charge.amount,
                        reason=charge.waived_reason,
                        waived_by=charge.waived_by,
                    )
                )

        logger.info("Waived late fee %s (%s) by %s", charge_id, charge.amount, charge.waived_by)
        return charge

    def cancel_charge(self, charge_id: UUID) -> LateFeeCharge:
        """Cancel a pending charge (assessed in error)."""
        with self.store.transaction() as session:
            charge = get_for_update(session, LateFeeCharge, charge_id, "LateFeeCharge")
            ChargeStateMachine.validate_transition(charge.status, ChargeStatus.CANCELLED.value)
            charge.status = ChargeStatus.CANCELLED.value

        logger.info("Cancelled late fee %s", charge_id)
        return charge

    def get_charge(self, charge_id: UUID) -> LateFeeCharge:
        with self.store.transaction() as session:
            charge = session.get(LateFeeCharge, charge_id)
            if charge is None:
                raise NotFoundError("LateFeeCharge", charge_id)
            return charge

    def list_charges(self, charge_filter: ChargeFilter | None = None) -> list[LateFeeCharge]:
        """List charges matching the filter, oldest period first."""
        charge_filter = charge_filter or ChargeFilter()
        stmt = (
            select(LateFeeCharge)
            .join(
                RecurringObligation,
                RecurringObligation.obligation_id == LateFeeCharge.obligation_id,
            )
            .where(*charge_filter.conditions())
            .order_by(
                LateFeeCharge.period_due_date,
                LateFeeCharge.created_at,
                LateFeeCharge.charge_id,
            )
        )
        with self.store.transaction() as session:
            return list(session.execute(stmt).scalars().all())
