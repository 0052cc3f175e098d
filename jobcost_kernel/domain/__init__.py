"""
Pure domain layer: clock, ledger primitives and workflow value objects.

No ORM, no database, no I/O beyond ``SystemClock``.
"""

from jobcost_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from jobcost_kernel.domain.ledger import (
    TOLERANCE,
    BalanceResult,
    Polarity,
    apply_delta,
    check_balance,
    polarity_of,
    within_tolerance,
)
from jobcost_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "TOLERANCE",
    "BalanceResult",
    "Polarity",
    "apply_delta",
    "check_balance",
    "polarity_of",
    "within_tolerance",
    "Guard",
    "Transition",
    "Workflow",
]
