"""Purchasing domain models: frozen views of POs, line items and COs."""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class POLineItem:
    id: UUID
    po_id: UUID
    cost_code_id: UUID
    description: str | None
    amount: Decimal
    invoiced_amount: Decimal


@dataclass(frozen=True)
class PurchaseOrder:
    id: UUID
    po_number: str
    job_id: UUID
    vendor_id: UUID
    total_amount: Decimal
    status: str
    job_change_order_id: UUID | None = None
    line_items: tuple[POLineItem, ...] = ()


@dataclass(frozen=True)
class ChangeOrder:
    id: UUID
    job_id: UUID
    change_order_number: str
    title: str
    amount: Decimal
    invoiced_amount: Decimal
    status: str

    @property
    def remaining(self) -> Decimal:
        return self.amount - self.invoiced_amount


@dataclass(frozen=True)
class POCapacity:
    """Billed position of a PO at the moment of a check."""
    po_id: UUID
    total_amount: Decimal
    billed: Decimal

    @property
    def remaining(self) -> Decimal:
        return self.total_amount - self.billed
