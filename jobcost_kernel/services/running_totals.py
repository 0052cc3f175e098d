"""
Running-total writes for ledger counters (PO line items, change orders,
budget lines).

Each call applies one delta to one counter with the floored update rule
``max(0, current + delta)`` inside its own SAVEPOINT, so a single counter
write is discrete and retryable.  A failure is never swallowed: it is
logged at CRITICAL, because a counter that disagrees with its allocations
is a correctness bug, then raised as ``LedgerUpdateError``.
"""

from decimal import Decimal
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from jobcost_kernel.domain.ledger import ZERO, apply_delta
from jobcost_kernel.exceptions import LedgerUpdateError
from jobcost_kernel.logging_config import get_logger

logger = get_logger("services.running_totals")


def apply_running_total(
    session: Session,
    target: Any,
    attribute: str,
    delta: Decimal,
    *,
    floor_at_zero: bool = True,
) -> Decimal:
    """Add ``delta`` to ``target.<attribute>`` and flush.  Returns the new value."""
    if delta == ZERO:
        return getattr(target, attribute) or ZERO
    target_type = type(target).__name__
    target_id = target.id
    before = getattr(target, attribute) or ZERO
    after = apply_delta(before, delta) if floor_at_zero else before + delta
    try:
        with session.begin_nested():
            setattr(target, attribute, after)
            session.flush()
    except SQLAlchemyError as exc:
        logger.critical(
            "ledger_total_update_failed",
            exc_info=True,
            extra={
                "target_type": target_type,
                "target_id": str(target_id),
                "attribute": attribute,
                "delta": delta,
                "before": before,
            },
        )
        raise LedgerUpdateError(target_type, target_id, delta, str(exc)) from exc
    logger.debug(
        "ledger_total_updated",
        extra={
            "target_type": target_type,
            "target_id": str(target_id),
            "attribute": attribute,
            "delta": delta,
            "before": before,
            "after": after,
        },
    )
    return after
