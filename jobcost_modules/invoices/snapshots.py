"""
Invoice undo snapshots: what an invoice looked like before a mutation.

``snapshot_invoice`` produces a JSON-safe dict for ``UndoStore.capture``;
``restore_fields`` writes the scalar fields back and
``allocation_inputs`` rebuilds the allocation set so the caller can push it
through ``AllocationReconciler.replace`` (which keeps counters right).
Draw membership and budget effects are compensated by the lifecycle
service, using ``draw_id`` from the snapshot.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from jobcost_kernel.utils.hashing import to_json_safe
from jobcost_modules.invoices.models import AllocationInput
from jobcost_modules.invoices.orm import InvoiceModel

_UUID_FIELDS = ("job_id", "vendor_id", "po_id")
_MONEY_FIELDS = ("amount", "paid_amount", "original_amount")
_DATE_FIELDS = ("invoice_date", "due_date", "paid_to_vendor_on")
_DATETIME_FIELDS = ("approved_at", "denied_at", "paid_to_vendor_at", "deleted_at")
_PLAIN_FIELDS = (
    "status",
    "invoice_number",
    "invoice_type",
    "notes",
    "approved_by",
    "denied_by",
    "denial_reason",
    "paid_to_vendor",
    "paid_to_vendor_by",
    "payment_method",
    "payment_reference",
    "is_split_parent",
    "review_flags",
)

_ALL_FIELDS = _UUID_FIELDS + _MONEY_FIELDS + _DATE_FIELDS + _DATETIME_FIELDS + _PLAIN_FIELDS


def snapshot_invoice(invoice: InvoiceModel, draw_id: UUID | None = None) -> dict[str, Any]:
    state: dict[str, Any] = {name: getattr(invoice, name) for name in _ALL_FIELDS}
    state["version"] = invoice.version
    state["draw_id"] = draw_id
    state["allocations"] = [
        {
            "cost_code_id": a.cost_code_id,
            "amount": a.amount,
            "job_id": a.job_id,
            "po_id": a.po_id,
            "po_line_item_id": a.po_line_item_id,
            "change_order_id": a.change_order_id,
            "pending_co": a.pending_co,
            "notes": a.notes,
        }
        for a in invoice.allocations
    ]
    return to_json_safe(state)


def _uuid(value: str | None) -> UUID | None:
    return UUID(value) if value else None


def _money(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


def _date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def _datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def restore_fields(invoice: InvoiceModel, state: dict[str, Any]) -> None:
    """Write every captured scalar field back onto ``invoice``."""
    for name in _UUID_FIELDS:
        setattr(invoice, name, _uuid(state.get(name)))
    for name in _MONEY_FIELDS:
        setattr(invoice, name, _money(state.get(name)))
    for name in _DATE_FIELDS:
        setattr(invoice, name, _date(state.get(name)))
    for name in _DATETIME_FIELDS:
        setattr(invoice, name, _datetime(state.get(name)))
    for name in _PLAIN_FIELDS:
        value = state.get(name)
        if name == "review_flags":
            value = list(value or [])
        setattr(invoice, name, value)


def allocation_inputs(state: dict[str, Any]) -> list[AllocationInput]:
    return [
        AllocationInput(
            cost_code_id=_uuid(a.get("cost_code_id")),
            amount=Decimal(a["amount"]),
            job_id=_uuid(a.get("job_id")),
            po_id=_uuid(a.get("po_id")),
            po_line_item_id=_uuid(a.get("po_line_item_id")),
            change_order_id=_uuid(a.get("change_order_id")),
            pending_co=bool(a.get("pending_co", False)),
            notes=a.get("notes"),
        )
        for a in state.get("allocations", [])
    ]


def snapshot_draw_id(state: dict[str, Any]) -> UUID | None:
    return _uuid(state.get("draw_id"))
