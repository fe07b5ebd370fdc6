"""Status state machines for late-fee charges and expenses.

Status transitions are the only writes allowed on ledger rows after
creation, so every transition goes through one of these machines.
"""

from __future__ import annotations

from obligation_ledger.calculators.types import ChargeStatus, ExpenseStatus
from obligation_ledger.errors import InvalidTransitionError


class StatusStateMachine:
    """Transition table with validation helpers."""

    # {from_status: [allowed_to_statuses]}
    VALID_TRANSITIONS: dict[str, list[str]] = {}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            reason = "terminal status" if cls.is_terminal(from_status) else None
            raise InvalidTransitionError(from_status, to_status, reason)

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return not cls.VALID_TRANSITIONS.get(status)

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return list(cls.VALID_TRANSITIONS.get(current_status, []))


class ChargeStateMachine(StatusStateMachine):
    """Late fee charge transitions.

    Allowed transitions:
    - pending → paid (fully allocated by a payment)
    - pending → waived
    - pending → cancelled
    """

    VALID_TRANSITIONS = {
        ChargeStatus.PENDING.value: [
            ChargeStatus.PAID.value,
            ChargeStatus.WAIVED.value,
            ChargeStatus.CANCELLED.value,
        ],
        ChargeStatus.PAID.value: [],
        ChargeStatus.WAIVED.value: [],
        ChargeStatus.CANCELLED.value: [],
    }


class ExpenseStateMachine(StatusStateMachine):
    """Expense transitions.

    Allowed transitions:
    - pending → paid | cancelled | disputed
    - disputed → pending | paid | cancelled
    """

    VALID_TRANSITIONS = {
        ExpenseStatus.PENDING.value: [
            ExpenseStatus.PAID.value,
            ExpenseStatus.CANCELLED.value,
            ExpenseStatus.DISPUTED.value,
        ],
        ExpenseStatus.DISPUTED.value: [
            ExpenseStatus.PENDING.value,
            ExpenseStatus.PAID.value,
            ExpenseStatus.CANCELLED.value,
        ],
        ExpenseStatus.PAID.value: [],
        ExpenseStatus.CANCELLED.value: [],
    }
