"""Pure ledger calculations: schedules, fees, allocation."""

from obligation_ledger.calculators.late_fee import clamp_fee, compute_fee
from obligation_ledger.calculators.schedule import next_due_date, period_bounds, resolve_due_date
from obligation_ledger.calculators.waterfall import Allocation, WaterfallPlan, allocate_waterfall

__all__ = [
    "resolve_due_date",
    "next_due_date",
    "period_bounds",
    "compute_fee",
    "clamp_fee",
    "allocate_waterfall",
    "Allocation",
    "WaterfallPlan",
]
