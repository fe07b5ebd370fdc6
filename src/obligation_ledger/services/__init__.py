"""Obligation ledger services."""

from obligation_ledger.services.expense_service import ExpenseFilter, ExpenseService
from obligation_ledger.services.late_fee_service import (
    ChargeFilter,
    FeeDecision,
    LateFeeService,
    SkipReason,
    SweepResult,
)
from obligation_ledger.services.obligation_service import ObligationService
from obligation_ledger.services.payment_service import PaymentResult, PaymentService
from obligation_ledger.services.report_service import ReportService
from obligation_ledger.services.state_machine import ChargeStateMachine, ExpenseStateMachine
from obligation_ledger.services.trust_service import BalanceCheck, TrustService

__all__ = [
    "ObligationService",
    "LateFeeService",
    "FeeDecision",
    "SkipReason",
    "SweepResult",
    "ChargeFilter",
    "PaymentService",
    "PaymentResult",
    "TrustService",
    "BalanceCheck",
    "ExpenseService",
    "ExpenseFilter",
    "ReportService",
    "ChargeStateMachine",
    "ExpenseStateMachine",
]
