"""
Invoice Domain Models (``jobcost_modules.invoices.models``).

Responsibility
--------------
Frozen dataclasses and enums for the invoice lifecycle: the closed status
enumeration (with legacy alias normalization), read-side invoice and
allocation views, and the explicit request/response types of every core
operation.  Request types coerce and validate loosely-typed boundary input
(``from_dict``) before any core function runs.

Architecture position
---------------------
**Modules layer** -- pure data definitions with zero I/O.  Consumed by
``validation``, ``allocation``, ``split`` and ``service``.

Invariants enforced
-------------------
* ``InvoiceType`` is derived from the sign of the amount, never supplied.
* An allocation never carries both ``po_id`` and ``change_order_id``.
* Boundary parsing reports every bad field at once.

Failure modes
-------------
* ``ValidationFailedError`` from ``from_dict`` constructors.
* ``ValueError`` from ``normalize_status`` for an unknown status string.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from jobcost_kernel.db.types import to_money
from jobcost_kernel.domain.ledger import ZERO, Polarity, polarity_of
from jobcost_kernel.exceptions import ValidationFailedError
from jobcost_kernel.logging_config import get_logger

logger = get_logger("modules.invoices.models")


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states.

    ``DELETED`` is a transition target only; a deleted invoice keeps its
    last status and gets ``deleted_at`` set.
    """

    NEEDS_REVIEW = "needs_review"
    READY_FOR_APPROVAL = "ready_for_approval"
    APPROVED = "approved"
    IN_DRAW = "in_draw"
    PAID = "paid"
    DENIED = "denied"
    SPLIT = "split"
    RECONCILED = "reconciled"
    DELETED = "deleted"


LEGACY_STATUS_ALIASES: dict[str, InvoiceStatus] = {
    "received": InvoiceStatus.NEEDS_REVIEW,
    "needs_approval": InvoiceStatus.READY_FOR_APPROVAL,
}


def normalize_status(value: str | InvoiceStatus) -> InvoiceStatus:
    """Map a raw or legacy status string onto ``InvoiceStatus``."""
    if isinstance(value, InvoiceStatus):
        return value
    raw = str(value).strip().lower()
    if raw in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[raw]
    try:
        return InvoiceStatus(raw)
    except ValueError:
        raise ValueError(f"Unknown invoice status: {value!r}") from None


class InvoiceType(str, Enum):
    STANDARD = "standard"
    CREDIT_MEMO = "credit_memo"


def invoice_type_for(amount: Decimal) -> InvoiceType:
    if polarity_of(amount) is Polarity.CREDIT:
        return InvoiceType.CREDIT_MEMO
    return InvoiceType.STANDARD


class PaymentMethod(str, Enum):
    CHECK = "check"
    ACH = "ach"
    WIRE = "wire"
    CREDIT_CARD = "credit_card"
    CASH = "cash"
    OTHER = "other"


class ReviewFlag(str, Enum):
    SPLIT_CHILD = "split_child"
    NO_JOB = "no_job"
    EXTRACTION_INCOMPLETE = "extraction_incomplete"
    LIKELY_DUPLICATE = "likely_duplicate"
    PARTIALLY_ALLOCATED = "partially_allocated"


# ---------------------------------------------------------------------------
# Boundary coercion helpers
# ---------------------------------------------------------------------------


class _FieldCollector:
    """Collects every field error before raising once."""

    def __init__(self, prefix: str = ""):
        self.prefix = prefix
        self.errors: list[dict[str, str]] = []

    def fail(self, name: str, message: str) -> None:
        self.errors.append({"field": f"{self.prefix}{name}", "message": message})

    def money(self, data: Mapping[str, Any], name: str, required: bool = True) -> Decimal | None:
        value = data.get(name)
        if value is None or value == "":
            if required:
                self.fail(name, "is required")
            return None
        try:
            return to_money(value)
        except ValueError:
            self.fail(name, "must be a number")
            return None

    def uuid(self, data: Mapping[str, Any], name: str, required: bool = False) -> UUID | None:
        value = data.get(name)
        if value is None or value == "":
            if required:
                self.fail(name, "is required")
            return None
        if isinstance(value, UUID):
            return value
        try:
            return UUID(str(value))
        except ValueError:
            self.fail(name, "must be a valid identifier")
            return None

    def date(self, data: Mapping[str, Any], name: str, required: bool = False) -> date | None:
        value = data.get(name)
        if value is None or value == "":
            if required:
                self.fail(name, "is required")
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value)[:10])
        except ValueError:
            self.fail(name, "must be an ISO date (YYYY-MM-DD)")
            return None

    def text(self, data: Mapping[str, Any], name: str, required: bool = False) -> str | None:
        value = data.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            if required:
                self.fail(name, "is required")
            return None
        return str(value).strip()

    def raise_if_failed(self) -> None:
        if self.errors:
            raise ValidationFailedError(self.errors)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AllocationInput:
    """One submitted allocation line."""

    cost_code_id: UUID | None
    amount: Decimal
    job_id: UUID | None = None
    po_id: UUID | None = None
    po_line_item_id: UUID | None = None
    change_order_id: UUID | None = None
    pending_co: bool = False
    notes: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AllocationInput:
        return parse_allocations([data])[0]


def parse_allocations(items: list[Mapping[str, Any]]) -> list[AllocationInput]:
    """Coerce raw allocation dicts, reporting every bad field at once."""
    errors: list[dict[str, str]] = []
    parsed: list[AllocationInput] = []
    for i, data in enumerate(items):
        fields = _FieldCollector(prefix=f"allocations[{i}].")
        amount = fields.money(data, "amount")
        alloc = AllocationInput(
            cost_code_id=fields.uuid(data, "cost_code_id"),
            amount=amount if amount is not None else ZERO,
            job_id=fields.uuid(data, "job_id"),
            po_id=fields.uuid(data, "po_id"),
            po_line_item_id=fields.uuid(data, "po_line_item_id"),
            change_order_id=fields.uuid(data, "change_order_id"),
            pending_co=bool(data.get("pending_co", False)),
            notes=fields.text(data, "notes"),
        )
        errors.extend(fields.errors)
        parsed.append(alloc)
    if errors:
        raise ValidationFailedError(errors)
    return parsed


@dataclass(frozen=True)
class CreateInvoiceRequest:
    """Manual or extraction-assisted invoice intake."""

    actor: str
    amount: Decimal | None
    invoice_number: str | None
    invoice_date: date | None
    vendor_id: UUID | None = None
    job_id: UUID | None = None
    po_id: UUID | None = None
    due_date: date | None = None
    notes: str | None = None
    document_url: str | None = None
    content_hash: str | None = None
    extraction: dict[str, Any] | None = None
    review_flags: tuple[str, ...] = ()
    allow_duplicate: bool = False
    # False for extraction intake, where missing fields are left for review.
    require_complete: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], actor: str) -> CreateInvoiceRequest:
        fields = _FieldCollector()
        request = cls(
            actor=actor,
            amount=fields.money(data, "amount", required=False),
            invoice_number=fields.text(data, "invoice_number"),
            invoice_date=fields.date(data, "invoice_date"),
            vendor_id=fields.uuid(data, "vendor_id"),
            job_id=fields.uuid(data, "job_id"),
            po_id=fields.uuid(data, "po_id"),
            due_date=fields.date(data, "due_date"),
            notes=fields.text(data, "notes"),
            document_url=fields.text(data, "document_url"),
            content_hash=fields.text(data, "content_hash"),
            allow_duplicate=bool(data.get("allow_duplicate", False)),
        )
        fields.raise_if_failed()
        return request


@dataclass(frozen=True)
class TransitionRequest:
    """A requested status change plus its optional payload."""

    target_status: InvoiceStatus
    actor: str
    allocations: tuple[AllocationInput, ...] | None = None
    draw_id: UUID | None = None
    override_po_overage: bool = False
    denial_reason: str | None = None
    expected_version: int | None = None
    note: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], actor: str) -> TransitionRequest:
        fields = _FieldCollector()
        target = fields.text(data, "status", required=True)
        status = None
        if target is not None:
            try:
                status = normalize_status(target)
            except ValueError as exc:
                fields.fail("status", str(exc))
        draw_id = fields.uuid(data, "draw_id")
        version = data.get("expected_version")
        if version is not None and not isinstance(version, int):
            fields.fail("expected_version", "must be an integer")
            version = None
        fields.raise_if_failed()
        allocations = None
        if data.get("allocations") is not None:
            allocations = tuple(parse_allocations(list(data["allocations"])))
        return cls(
            target_status=status,
            actor=actor,
            allocations=allocations,
            draw_id=draw_id,
            override_po_overage=bool(data.get("override_po_overage", False)),
            denial_reason=data.get("denial_reason"),
            expected_version=version,
            note=data.get("note"),
        )


@dataclass(frozen=True)
class SplitGroup:
    amount: Decimal
    job_id: UUID | None = None
    notes: str | None = None


@dataclass(frozen=True)
class PaymentRequest:
    """Marks an invoice as paid out to the vendor."""

    actor: str
    method: PaymentMethod
    reference: str | None = None
    paid_on: date | None = None
    expected_version: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], actor: str) -> PaymentRequest:
        fields = _FieldCollector()
        raw_method = fields.text(data, "payment_method", required=True)
        method = None
        if raw_method is not None:
            try:
                method = PaymentMethod(raw_method.lower())
            except ValueError:
                allowed = ", ".join(m.value for m in PaymentMethod)
                fields.fail("payment_method", f"must be one of: {allowed}")
        request = cls(
            actor=actor,
            method=method,
            reference=fields.text(data, "payment_reference"),
            paid_on=fields.date(data, "payment_date"),
            expected_version=data.get("expected_version"),
        )
        fields.raise_if_failed()
        return request


# ---------------------------------------------------------------------------
# Read-side views
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Allocation:
    id: UUID
    invoice_id: UUID
    cost_code_id: UUID
    amount: Decimal
    job_id: UUID | None = None
    po_id: UUID | None = None
    po_line_item_id: UUID | None = None
    change_order_id: UUID | None = None
    pending_co: bool = False
    notes: str | None = None


@dataclass(frozen=True)
class Invoice:
    """
    Read-side view of an invoice.

    Guarantees:
        ``invoice_type`` matches the sign of ``amount``.
    """

    id: UUID
    invoice_number: str | None
    amount: Decimal
    invoice_type: InvoiceType
    status: InvoiceStatus
    version: int
    invoice_date: date | None = None
    due_date: date | None = None
    job_id: UUID | None = None
    vendor_id: UUID | None = None
    po_id: UUID | None = None
    parent_invoice_id: UUID | None = None
    is_split_parent: bool = False
    split_index: int | None = None
    original_amount: Decimal | None = None
    notes: str | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    denied_at: datetime | None = None
    denied_by: str | None = None
    denial_reason: str | None = None
    paid_amount: Decimal | None = None
    paid_to_vendor: bool = False
    paid_to_vendor_at: datetime | None = None
    paid_to_vendor_by: str | None = None
    payment_method: str | None = None
    payment_reference: str | None = None
    document_url: str | None = None
    stamped_document_url: str | None = None
    review_flags: tuple[str, ...] = ()
    extraction: dict[str, Any] | None = None
    deleted_at: datetime | None = None
    allocations: tuple[Allocation, ...] = field(default_factory=tuple)

    @property
    def allocated_total(self) -> Decimal:
        return sum((a.amount for a in self.allocations), ZERO)

    @property
    def is_credit(self) -> bool:
        return self.invoice_type is InvoiceType.CREDIT_MEMO

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DuplicateMatch:
    invoice_id: UUID
    invoice_number: str | None
    vendor_id: UUID | None
    amount: Decimal
    status: str
    confidence: float
    reason: str


@dataclass(frozen=True)
class DuplicateCheckResult:
    matches: tuple[DuplicateMatch, ...]
    is_duplicate: bool
    is_likely_duplicate: bool

    @property
    def best(self) -> DuplicateMatch | None:
        return self.matches[0] if self.matches else None


@dataclass(frozen=True)
class CreateInvoiceResult:
    invoice: Invoice
    duplicate_check: DuplicateCheckResult
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class AllocationResult:
    invoice: Invoice
    is_partial: bool
    unallocated: Decimal


@dataclass(frozen=True)
class TransitionResult:
    invoice: Invoice
    previous_status: InvoiceStatus
    is_partial: bool = False
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class BulkTransitionResult:
    succeeded: tuple[UUID, ...]
    failed: dict[UUID, dict[str, Any]]


@dataclass(frozen=True)
class SplitResult:
    parent: Invoice
    children: tuple[Invoice, ...]


@dataclass(frozen=True)
class UnsplitResult:
    parent: Invoice
    deleted_child_count: int


@dataclass(frozen=True)
class InvoiceFamily:
    parent: Invoice
    children: tuple[Invoice, ...]


@dataclass(frozen=True)
class UndoResult:
    entity_type: str
    entity_id: UUID
    undone_state: str
    invoice: Invoice
