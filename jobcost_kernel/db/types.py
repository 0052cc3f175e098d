"""
Module: jobcost_kernel.db.types
Responsibility: Money boundary conversion shared by every
    model and service.
Architecture position: Kernel > DB.  MUST NOT import from models/,
    domain/ or services/.

Invariants enforced:
    No floats for money.  ``to_money`` is the boundary conversion.
"""

from decimal import Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0")


def to_money(value: Any) -> Decimal:
    """
    Convert a boundary value (str, int, Decimal or float) to Decimal.

    Floats go through ``str`` so 0.1 stays 0.1.

    Raises:
        ValueError: If the value is not numeric.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip().replace(",", "").replace("$", ""))
        except InvalidOperation as exc:
            raise ValueError(f"Not a monetary amount: {value!r}") from exc
    else:
        raise ValueError(f"Not a monetary amount: {value!r}")
    if not result.is_finite():
        raise ValueError(f"Not a finite amount: {value!r}")
    return result
