"""
Ledger primitives (``jobcost_kernel.domain.ledger``).

Responsibility
--------------
Pure functions for signed-amount balancing: tolerance comparison,
credit/standard polarity, the allocation balance rule and floored running
totals.  Everything that decides whether money lines up goes through here.

Architecture position
---------------------
**Kernel domain layer** -- ZERO I/O, no ORM.

Invariants enforced
-------------------
* Amounts are compared with a fixed tolerance (0.01 by default).
* A credit (negative) invoice is balanced by negative allocations only;
  a standard invoice by positive allocations only.
* Over-allocation beyond tolerance fails; under-allocation is a partial
  condition, never an error.
* Running totals never go below zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Iterable

TOLERANCE = Decimal("0.01")
ZERO = Decimal("0")


class Polarity(str, Enum):
    STANDARD = "standard"
    CREDIT = "credit"


def polarity_of(amount: Decimal) -> Polarity:
    """Negative amounts are credits.  Zero counts as standard."""
    return Polarity.CREDIT if amount < ZERO else Polarity.STANDARD


def matches_polarity(amount: Decimal, polarity: Polarity) -> bool:
    """True when ``amount`` is non-zero and carries the given sign."""
    if polarity is Polarity.CREDIT:
        return amount < ZERO
    return amount > ZERO


def within_tolerance(a: Decimal, b: Decimal, tolerance: Decimal = TOLERANCE) -> bool:
    return abs(a - b) <= tolerance


def total(amounts: Iterable[Decimal]) -> Decimal:
    return sum(amounts, ZERO)


def floored(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO


def apply_delta(current: Decimal | None, delta: Decimal) -> Decimal:
    """``max(0, current + delta)``: the running-total update rule."""
    return floored((current or ZERO) + delta)


def within_percent(a: Decimal, b: Decimal, percent: Decimal) -> bool:
    """True when ``a`` is within ``percent`` (0.01 == 1%) of ``b``."""
    if a == b:
        return True
    base = abs(b)
    if base == ZERO:
        return abs(a) <= TOLERANCE
    return abs(a - b) <= base * percent


@dataclass(frozen=True)
class BalanceResult:
    """Outcome of checking an allocation set against an invoice amount.

    ``violations`` holds human-readable reasons; ``is_partial`` marks an
    under-allocated but otherwise valid set.
    """
    invoice_amount: Decimal
    allocated: Decimal
    polarity: Polarity
    violations: tuple[str, ...] = ()
    is_partial: bool = False

    @property
    def is_balanced(self) -> bool:
        return not self.violations

    @property
    def unallocated(self) -> Decimal:
        return self.invoice_amount - self.allocated


def check_balance(
    invoice_amount: Decimal,
    allocation_amounts: Iterable[Decimal],
    tolerance: Decimal = TOLERANCE,
) -> BalanceResult:
    """Evaluate the allocation balance rule.

    Standard (amount >= 0): each allocation > 0 and sum <= amount + tol.
    Credit (amount < 0): each allocation < 0 and sum >= amount - tol.
    Zero allocations, zero amounts and mixed signs always fail.
    """
    amounts = list(allocation_amounts)
    polarity = polarity_of(invoice_amount)
    allocated = total(amounts)
    violations: list[str] = []

    if not amounts:
        violations.append("Invoice has no allocations")
        return BalanceResult(invoice_amount, allocated, polarity, tuple(violations))

    if any(a == ZERO for a in amounts):
        violations.append("Allocation amounts must be non-zero")

    signs = {a > ZERO for a in amounts if a != ZERO}
    if len(signs) > 1:
        violations.append("Allocations mix positive and negative amounts")
    elif any(a != ZERO and not matches_polarity(a, polarity) for a in amounts):
        if polarity is Polarity.CREDIT:
            violations.append("Credit invoice allocations must be negative")
        else:
            violations.append("Standard invoice allocations must be positive")

    if polarity is Polarity.CREDIT:
        if allocated < invoice_amount - tolerance:
            violations.append(
                f"Allocated credit {allocated} exceeds invoice credit {invoice_amount}"
            )
        partial = allocated > invoice_amount + tolerance
    else:
        if allocated > invoice_amount + tolerance:
            violations.append(
                f"Allocated {allocated} exceeds invoice amount {invoice_amount}"
            )
        partial = allocated < invoice_amount - tolerance

    return BalanceResult(
        invoice_amount=invoice_amount,
        allocated=allocated,
        polarity=polarity,
        violations=tuple(violations),
        is_partial=partial and not violations,
    )


def split_sums_to(parent_amount: Decimal, parts: Iterable[Decimal], tolerance: Decimal = TOLERANCE) -> bool:
    """Split groups must reproduce the parent amount within tolerance."""
    return within_tolerance(total(parts), parent_amount, tolerance)
