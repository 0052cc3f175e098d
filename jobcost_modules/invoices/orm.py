"""
Invoice ORM Models (``jobcost_modules.invoices.orm``).

Responsibility
--------------
SQLAlchemy persistence for invoices, their allocations, document content
hashes and the stamping outbox.  Maps to the frozen dataclasses in
``models.py``.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``jobcost_kernel.db.base``
and sibling ``models.py``.  MUST NOT be imported by ``jobcost_kernel``.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from jobcost_kernel.db.base import TrackedBase


class InvoiceModel(TrackedBase):
    """
    ORM model for invoices.

    Guarantees:
        - status stored as the ``InvoiceStatus`` value.
        - version starts at 1 and is bumped on every mutation.
        - Soft delete via deleted_at; rows are never removed.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        Index("idx_invoices_vendor_id", "vendor_id"),
        Index("idx_invoices_job_id", "job_id"),
        Index("idx_invoices_po_id", "po_id"),
        Index("idx_invoices_status", "status"),
        Index("idx_invoices_parent_invoice_id", "parent_invoice_id"),
        Index("idx_invoices_invoice_number", "invoice_number"),
    )

    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    invoice_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    invoice_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    job_id: Mapped[UUID | None] = mapped_column(ForeignKey("jobs.id"), nullable=True)
    vendor_id: Mapped[UUID | None] = mapped_column(ForeignKey("vendors.id"), nullable=True)
    po_id: Mapped[UUID | None] = mapped_column(ForeignKey("purchase_orders.id"), nullable=True)

    parent_invoice_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("invoices.id"), nullable=True
    )
    is_split_parent: Mapped[bool] = mapped_column(Boolean, default=False)
    split_index: Mapped[int | None] = mapped_column(nullable=True)
    original_amount: Mapped[Decimal | None] = mapped_column(nullable=True)

    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    denied_at: Mapped[datetime | None] = mapped_column(nullable=True)
    denied_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    denial_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_amount: Mapped[Decimal | None] = mapped_column(nullable=True)

    paid_to_vendor: Mapped[bool] = mapped_column(Boolean, default=False)
    paid_to_vendor_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_to_vendor_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(20), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    paid_to_vendor_on: Mapped[date | None] = mapped_column(Date, nullable=True)

    document_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    stamped_document_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    review_flags: Mapped[list] = mapped_column(JSON, default=list)
    # Opaque output of the extraction collaborator, including per-field confidence.
    extraction: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    allocations: Mapped[list["AllocationModel"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="AllocationModel.position",
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def add_flag(self, flag: str) -> None:
        flags = list(self.review_flags or [])
        if flag not in flags:
            flags.append(flag)
            self.review_flags = flags

    def remove_flag(self, flag: str) -> None:
        flags = [f for f in (self.review_flags or []) if f != flag]
        if flags != list(self.review_flags or []):
            self.review_flags = flags

    def to_dto(self):
        from jobcost_modules.invoices.models import Invoice, InvoiceStatus, InvoiceType

        return Invoice(
            id=self.id,
            invoice_number=self.invoice_number,
            amount=self.amount,
            invoice_type=InvoiceType(self.invoice_type),
            status=InvoiceStatus(self.status),
            version=self.version,
            invoice_date=self.invoice_date,
            due_date=self.due_date,
            job_id=self.job_id,
            vendor_id=self.vendor_id,
            po_id=self.po_id,
            parent_invoice_id=self.parent_invoice_id,
            is_split_parent=self.is_split_parent,
            split_index=self.split_index,
            original_amount=self.original_amount,
            notes=self.notes,
            approved_at=self.approved_at,
            approved_by=self.approved_by,
            denied_at=self.denied_at,
            denied_by=self.denied_by,
            denial_reason=self.denial_reason,
            paid_amount=self.paid_amount,
            paid_to_vendor=self.paid_to_vendor,
            paid_to_vendor_at=self.paid_to_vendor_at,
            paid_to_vendor_by=self.paid_to_vendor_by,
            payment_method=self.payment_method,
            payment_reference=self.payment_reference,
            document_url=self.document_url,
            stamped_document_url=self.stamped_document_url,
            review_flags=tuple(self.review_flags or ()),
            extraction=self.extraction,
            deleted_at=self.deleted_at,
            allocations=tuple(a.to_dto() for a in self.allocations),
        )

    def __repr__(self) -> str:
        return f"<InvoiceModel {self.invoice_number} {self.status} v{self.version}>"


class AllocationModel(TrackedBase):
    """
    ORM model for invoice allocations.

    Guarantees:
        - Exactly one cost code per row.
        - po_id and change_order_id are never both set
          (enforced by the validation engine before insert).
    """

    __tablename__ = "invoice_allocations"

    __table_args__ = (
        Index("idx_invoice_allocations_invoice_id", "invoice_id"),
        Index("idx_invoice_allocations_po_id", "po_id"),
        Index("idx_invoice_allocations_change_order_id", "change_order_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    position: Mapped[int] = mapped_column(nullable=False, default=0)
    cost_code_id: Mapped[UUID] = mapped_column(ForeignKey("cost_codes.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    job_id: Mapped[UUID | None] = mapped_column(ForeignKey("jobs.id"), nullable=True)
    po_id: Mapped[UUID | None] = mapped_column(ForeignKey("purchase_orders.id"), nullable=True)
    po_line_item_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("po_line_items.id"), nullable=True
    )
    change_order_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("change_orders.id"), nullable=True
    )
    pending_co: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    invoice: Mapped[InvoiceModel] = relationship(back_populates="allocations")

    def to_dto(self):
        from jobcost_modules.invoices.models import Allocation

        return Allocation(
            id=self.id,
            invoice_id=self.invoice_id,
            cost_code_id=self.cost_code_id,
            amount=self.amount,
            job_id=self.job_id,
            po_id=self.po_id,
            po_line_item_id=self.po_line_item_id,
            change_order_id=self.change_order_id,
            pending_co=self.pending_co,
            notes=self.notes,
        )

    @classmethod
    def from_input(cls, alloc, invoice_id: UUID, position: int, created_by: str) -> "AllocationModel":
        """Create a row from an ``AllocationInput``."""
        return cls(
            invoice_id=invoice_id,
            position=position,
            cost_code_id=alloc.cost_code_id,
            amount=alloc.amount,
            job_id=alloc.job_id,
            po_id=alloc.po_id,
            po_line_item_id=alloc.po_line_item_id,
            change_order_id=alloc.change_order_id,
            pending_co=alloc.pending_co,
            notes=alloc.notes,
            created_by=created_by,
        )


class DocumentHashModel(TrackedBase):
    """SHA-256 of an invoice's source document, for exact-duplicate checks."""

    __tablename__ = "invoice_document_hashes"

    __table_args__ = (
        Index("idx_invoice_document_hashes_hash", "content_hash"),
        UniqueConstraint("invoice_id", name="uq_invoice_document_hashes_invoice"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)


class StampJobModel(TrackedBase):
    """
    Outbox row asking the stamping collaborator to re-render an invoice
    document after approval or payment.

    Written in the same transaction as the transition; processed later by
    ``jobcost_services.stamping.StampWorker``.
    """

    __tablename__ = "stamp_jobs"

    __table_args__ = (
        Index("idx_stamp_jobs_status", "status"),
        Index("idx_stamp_jobs_invoice_id", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    reason: Mapped[str] = mapped_column(String(30), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(nullable=False, default=3)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
