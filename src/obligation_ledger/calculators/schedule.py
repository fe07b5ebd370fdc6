"""Due-date resolution for recurring obligations.

Pure functions, no database access. An anchor day that does not exist in
the resolved month (31 in April, 30 in February) is clamped to the last
day of that month, and the clamp is re-applied after every step back.
"""

from __future__ import annotations

import calendar
from datetime import date

from obligation_ledger.calculators.types import Frequency, Period, parse_enum
from obligation_ledger.errors import ValidationError

# Months per period for each frequency
STEP_MONTHS = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.ANNUAL: 12,
}


def clamped_date(year: int, month: int, anchor_day: int) -> date:
    """Build a date, clamping the day to the month's last day."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(anchor_day, last_day))


def shift_months(year: int, month: int, delta: int) -> tuple[int, int]:
    """Move a (year, month) pair by delta months."""
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _validate_anchor(anchor_day: int) -> None:
    if not isinstance(anchor_day, int) or isinstance(anchor_day, bool):
        raise ValidationError("anchor_day must be an integer", field="anchor_day")
    if not 1 <= anchor_day <= 31:
        raise ValidationError(
            f"anchor_day must be between 1 and 31, got {anchor_day}", field="anchor_day"
        )


def _period_start_month(
    frequency: Frequency, as_of: date, start_date: date | None
) -> tuple[int, int]:
    if frequency == Frequency.MONTHLY:
        return as_of.year, as_of.month
    if frequency == Frequency.QUARTERLY:
        return as_of.year, ((as_of.month - 1) // 3) * 3 + 1
    if start_date is None:
        raise ValidationError(
            "Annual obligations need a start_date to fix the due month",
            field="start_date",
        )
    return as_of.year, start_date.month


def resolve_due_date(
    frequency: Frequency | str,
    anchor_day: int,
    as_of: date,
    start_date: date | None = None,
) -> date:
    """Resolve the most recently elapsed (or current) due date.

    Args:
        frequency: monthly, quarterly or annual
        anchor_day: Day of month the obligation falls due (1-31)
        as_of: Reference date
        start_date: Obligation start; its month fixes the annual due month

    Returns:
        The due date of the period containing as_of. Never after as_of.

    Raises:
        ValidationError: Invalid frequency or anchor day
    """
    freq = parse_enum(Frequency, frequency, "frequency")
    _validate_anchor(anchor_day)

    year, month = _period_start_month(freq, as_of, start_date)
    due = clamped_date(year, month, anchor_day)
    if due > as_of:
        year, month = shift_months(year, month, -STEP_MONTHS[freq])
        due = clamped_date(year, month, anchor_day)
    return due


def next_due_date(
    frequency: Frequency | str,
    anchor_day: int,
    due_date: date,
) -> date:
    """Due date of the period following the one due on due_date."""
    freq = parse_enum(Frequency, frequency, "frequency")
    _validate_anchor(anchor_day)
    year, month = shift_months(due_date.year, due_date.month, STEP_MONTHS[freq])
    return clamped_date(year, month, anchor_day)


def period_bounds(
    frequency: Frequency | str,
    anchor_day: int,
    as_of: date,
    start_date: date | None = None,
) -> Period:
    """The period containing as_of as a half-open date window."""
    due = resolve_due_date(frequency, anchor_day, as_of, start_date)
    return Period(due_date=due, next_due_date=next_due_date(frequency, anchor_day, due))
