"""
Typed Exception Hierarchy for the job-cost engine.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from JobCostError:

    JobCostError (base)
    |
    +-- ValidationFailedError            field-level, 1:N messages
    |
    +-- LifecycleError
    |   +-- InvalidTransitionError       (current, target) not in the table
    |   +-- PreconditionFailedError      target requirements unmet (list)
    |   +-- PoOverageError               soft block, overridable
    |
    +-- DuplicateInvoiceError            carries matches + confidence
    |
    +-- ConcurrencyError
    |   +-- EntityLockedError            another owner holds a live lock
    |   +-- VersionConflictError         stale write detected
    |
    +-- LockError
    |   +-- LockNotFoundError
    |   +-- LockOwnershipError
    |
    +-- UndoError
    |   +-- UndoNotFoundError
    |   +-- UndoExpiredError
    |   +-- UndoBlockedError
    |
    +-- NotFoundError
    |   +-- InvoiceNotFoundError, DrawNotFoundError,
    |       PurchaseOrderNotFoundError, ChangeOrderNotFoundError,
    |       JobNotFoundError
    |
    +-- SplitError
    |   +-- SplitNotAllowedError
    |   +-- UnsplitBlockedError
    |
    +-- DrawError
    |   +-- DrawStateError
    |   +-- AlreadyInDrawError
    |
    +-- DeletionNotAllowedError
    |
    +-- LedgerUpdateError               running-total write failed

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                  | Retry | When Raised
--------------|-----------------------|-------|----------------------------------
Validation    | VALIDATION_FAILED     | no    | Field or allocation rules broken
Lifecycle     | INVALID_TRANSITION    | no    | Status pair not permitted
              | PRE_TRANSITION_FAILED | no    | Target-state requirements unmet
              | PO_OVERAGE            | no    | PO capacity exceeded (override ok)
Duplicate     | DUPLICATE_INVOICE     | no    | Candidate >= duplicate threshold
Concurrency   | ENTITY_LOCKED         | yes   | Another actor is editing
              | VERSION_CONFLICT      | no    | Entity changed since it was read
Lock          | LOCK_NOT_FOUND        | no    | Releasing a missing lock
              | LOCK_NOT_OWNED        | no    | Releasing someone else's lock
Undo          | UNDO_NOT_FOUND        | no    | Nothing to undo / already used
              | UNDO_EXPIRED          | no    | Undo window elapsed
              | UNDO_BLOCKED          | no    | State changed since the snapshot
Not found     | *_NOT_FOUND           | no    | Entity missing or deleted
Split         | SPLIT_NOT_ALLOWED     | no    | Invoice cannot be split
              | UNSPLIT_BLOCKED       | no    | A child has committed work
Draw          | DRAW_STATE_INVALID    | no    | Operation not valid in draw state
              | ALREADY_IN_DRAW       | no    | Invoice already belongs to a draw
Deletion      | DELETION_NOT_ALLOWED  | no    | Paid or funded invoice
Ledger        | LEDGER_UPDATE_FAILED  | yes   | PO/CO/budget total write failed

===============================================================================
HANDLING PATTERNS
===============================================================================

Branch on type, read structured attributes, and only ever offer an override
for ``PoOverageError`` (``overridable`` is True on that class alone):

    try:
        service.transition(invoice_id, request)
    except PoOverageError as e:
        ask_for_override(e.remaining, e.overage_amount)
    except PreconditionFailedError as e:
        render_requirements(e.violations)
    except EntityLockedError as e:
        show_locked(e.locked_by, e.expires_at)
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from jobcost_kernel.utils.hashing import to_json_safe


class JobCostError(Exception):
    """
    Base exception for all job-cost errors.

    Every subclass has a ``code`` class attribute and keeps its context in
    public instance attributes, which ``to_dict()`` exposes to API layers.
    """

    code: str = "JOBCOST_ERROR"
    retry: bool = False
    retry_after_ms: int | None = None
    overridable: bool = False

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "code": self.code,
            "message": str(self),
            "retry": self.retry,
            "overridable": self.overridable,
        }
        if self.retry_after_ms is not None:
            body["retry_after_ms"] = self.retry_after_ms
        for key, value in vars(self).items():
            if not key.startswith("_") and key not in body:
                body[key] = value
        return to_json_safe(body)


# Validation


class ValidationFailedError(JobCostError):
    """One or more field-level rules failed.

    ``errors`` is a list of ``{"field": ..., "message": ...}`` dicts.
    """

    code: str = "VALIDATION_FAILED"

    def __init__(self, errors: list[dict[str, str]], warnings: list[dict[str, str]] | None = None):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        summary = "; ".join(f"{e['field']}: {e['message']}" for e in self.errors)
        super().__init__(f"Validation failed: {summary}")


# Lifecycle


class LifecycleError(JobCostError):
    """Base exception for invoice status transition failures."""

    code: str = "LIFECYCLE_ERROR"


class InvalidTransitionError(LifecycleError):
    """The requested (current, target) pair is not in the transition table."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, current_status: str, target_status: str, allowed: tuple[str, ...] = ()):
        self.current_status = current_status
        self.target_status = target_status
        self.allowed = list(allowed)
        super().__init__(
            f"Cannot transition from {current_status} to {target_status}"
        )


class PreconditionFailedError(LifecycleError):
    """Requirements of the target status are unmet.

    ``violations`` is a list of ``{"requirement": ..., "message": ...}``.
    """

    code: str = "PRE_TRANSITION_FAILED"

    def __init__(self, target_status: str, violations: list[dict[str, str]]):
        self.target_status = target_status
        self.violations = list(violations)
        names = ", ".join(v["requirement"] for v in self.violations)
        super().__init__(
            f"Requirements for {target_status} not met: {names}"
        )

    @property
    def requirements(self) -> list[str]:
        return [v["requirement"] for v in self.violations]


class PoOverageError(LifecycleError):
    """Approving would bill a PO past its total.  Retry with an override."""

    code: str = "PO_OVERAGE"
    overridable: bool = True

    def __init__(
        self,
        po_id: UUID,
        po_total: Decimal,
        billed: Decimal,
        invoice_amount: Decimal,
    ):
        self.po_id = po_id
        self.po_total = po_total
        self.billed = billed
        self.remaining = po_total - billed
        self.invoice_amount = invoice_amount
        self.overage_amount = billed + invoice_amount - po_total
        self.requires_override = True
        super().__init__(
            f"PO {po_id} would be exceeded by {self.overage_amount} "
            f"(remaining {self.remaining}, invoice {invoice_amount})"
        )


# Duplicates


class DuplicateInvoiceError(JobCostError):
    """An existing invoice matches at or above the duplicate threshold."""

    code: str = "DUPLICATE_INVOICE"

    def __init__(self, existing_invoice_id: UUID, confidence: float, matches: list[dict[str, Any]]):
        self.existing_invoice_id = existing_invoice_id
        self.confidence = confidence
        self.matches = matches
        super().__init__(
            f"Invoice duplicates {existing_invoice_id} (confidence {confidence:.2f})"
        )


# Concurrency


class ConcurrencyError(JobCostError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class EntityLockedError(ConcurrencyError):
    """Another actor holds a live lock on the entity."""

    code: str = "ENTITY_LOCKED"
    retry: bool = True
    retry_after_ms: int | None = 5000

    def __init__(self, entity_type: str, entity_id: UUID, locked_by: str, expires_at: datetime):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.locked_by = locked_by
        self.expires_at = expires_at
        super().__init__(
            f"{entity_type} {entity_id} is locked by {locked_by} until "
            f"{expires_at.isoformat()}"
        )


class VersionConflictError(ConcurrencyError):
    """The entity changed since the caller read it."""

    code: str = "VERSION_CONFLICT"

    def __init__(self, entity_type: str, entity_id: UUID, expected_version: int, actual_version: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"{entity_type} {entity_id} is at version {actual_version}, "
            f"expected {expected_version}"
        )


# Locks


class LockError(JobCostError):
    code: str = "LOCK_ERROR"


class LockNotFoundError(LockError):
    code: str = "LOCK_NOT_FOUND"

    def __init__(self, lock_ref: Any):
        self.lock_ref = lock_ref
        super().__init__(f"Lock not found: {lock_ref}")


class LockOwnershipError(LockError):
    """Only the owner may release a lock (see force_release)."""

    code: str = "LOCK_NOT_OWNED"

    def __init__(self, lock_id: UUID, locked_by: str, requested_by: str):
        self.lock_id = lock_id
        self.locked_by = locked_by
        self.requested_by = requested_by
        super().__init__(
            f"Lock {lock_id} is owned by {locked_by}, not {requested_by}"
        )


# Undo


class UndoError(JobCostError):
    code: str = "UNDO_ERROR"


class UndoNotFoundError(UndoError):
    """No unconsumed snapshot exists for the entity."""

    code: str = "UNDO_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: UUID):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"Nothing to undo for {entity_type} {entity_id}")


class UndoExpiredError(UndoError):
    """The latest snapshot exists but its window has elapsed."""

    code: str = "UNDO_EXPIRED"

    def __init__(self, entity_type: str, entity_id: UUID, expired_at: datetime):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expired_at = expired_at
        super().__init__(
            f"Undo for {entity_type} {entity_id} expired at {expired_at.isoformat()}"
        )


class UndoBlockedError(UndoError):
    """Restoring the snapshot would contradict state that changed since."""

    code: str = "UNDO_BLOCKED"

    def __init__(self, entity_type: str, entity_id: UUID, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot undo {entity_type} {entity_id}: {reason}")


# Not found


class NotFoundError(JobCostError):
    code: str = "NOT_FOUND"
    entity_type: str = "entity"

    def __init__(self, entity_id: Any):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class InvoiceNotFoundError(NotFoundError):
    code: str = "INVOICE_NOT_FOUND"
    entity_type = "Invoice"


class DrawNotFoundError(NotFoundError):
    code: str = "DRAW_NOT_FOUND"
    entity_type = "Draw"


class PurchaseOrderNotFoundError(NotFoundError):
    code: str = "PO_NOT_FOUND"
    entity_type = "PurchaseOrder"


class ChangeOrderNotFoundError(NotFoundError):
    code: str = "CHANGE_ORDER_NOT_FOUND"
    entity_type = "ChangeOrder"


class JobNotFoundError(NotFoundError):
    code: str = "JOB_NOT_FOUND"
    entity_type = "Job"


# Split


class SplitError(JobCostError):
    code: str = "SPLIT_ERROR"


class SplitNotAllowedError(SplitError):
    code: str = "SPLIT_NOT_ALLOWED"

    def __init__(self, invoice_id: UUID, reason: str):
        self.invoice_id = invoice_id
        self.reason = reason
        super().__init__(f"Invoice {invoice_id} cannot be split: {reason}")


class UnsplitBlockedError(SplitError):
    """At least one child already represents committed downstream work."""

    code: str = "UNSPLIT_BLOCKED"

    def __init__(self, invoice_id: UUID, blocking_children: list[dict[str, str]] | None = None, reason: str | None = None):
        self.invoice_id = invoice_id
        self.blocking_children = list(blocking_children or [])
        self.reason = reason or "children have progressed past review"
        super().__init__(f"Invoice {invoice_id} cannot be unsplit: {self.reason}")


# Draws


class DrawError(JobCostError):
    code: str = "DRAW_ERROR"


class DrawStateError(DrawError):
    code: str = "DRAW_STATE_INVALID"

    def __init__(self, draw_id: UUID, status: str, operation: str):
        self.draw_id = draw_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} draw {draw_id} in status {status}")


class AlreadyInDrawError(DrawError):
    code: str = "ALREADY_IN_DRAW"

    def __init__(self, invoice_id: UUID, draw_id: UUID):
        self.invoice_id = invoice_id
        self.draw_id = draw_id
        super().__init__(f"Invoice {invoice_id} already belongs to draw {draw_id}")


# Deletion


class DeletionNotAllowedError(JobCostError):
    code: str = "DELETION_NOT_ALLOWED"

    def __init__(self, invoice_id: UUID, reason: str):
        self.invoice_id = invoice_id
        self.reason = reason
        super().__init__(f"Invoice {invoice_id} cannot be deleted: {reason}")


# Ledger


class LedgerUpdateError(JobCostError):
    """A PO line-item, change-order or budget running total failed to update.

    Always logged at CRITICAL before being raised; the enclosing SAVEPOINT
    has been rolled back when the caller sees it.
    """

    code: str = "LEDGER_UPDATE_FAILED"
    retry: bool = True

    def __init__(self, target_type: str, target_id: UUID, delta: Decimal, cause: str):
        self.target_type = target_type
        self.target_id = target_id
        self.delta = delta
        self.cause = cause
        super().__init__(
            f"Failed to apply {delta} to {target_type} {target_id}: {cause}"
        )
