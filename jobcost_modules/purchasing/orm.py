"""
Purchasing ORM Models (``jobcost_modules.purchasing.orm``).

Responsibility
--------------
Purchase orders with their line items, and job change orders.  PO line
items and change orders carry ``invoiced_amount`` running totals that the
allocation reconciler maintains incrementally.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``jobcost_kernel.db.base``.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from jobcost_kernel.db.base import TrackedBase


class ChangeOrderModel(TrackedBase):
    """
    An approved adjustment to a job's contract.

    Guarantees:
        - invoiced_amount equals the sum of linked, active allocations and
          never goes below zero.
    """

    __tablename__ = "change_orders"

    __table_args__ = (
        UniqueConstraint("job_id", "change_order_number", name="uq_change_orders_job_number"),
        Index("idx_change_orders_job_id", "job_id"),
    )

    job_id: Mapped[UUID] = mapped_column(ForeignKey("jobs.id"), nullable=False)
    change_order_number: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    invoiced_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(20), default="approved")

    def to_dto(self):
        from jobcost_modules.purchasing.models import ChangeOrder

        return ChangeOrder(
            id=self.id,
            job_id=self.job_id,
            change_order_number=self.change_order_number,
            title=self.title,
            amount=self.amount,
            invoiced_amount=self.invoiced_amount,
            status=self.status,
        )

    def __repr__(self) -> str:
        return f"<ChangeOrderModel {self.change_order_number}>"


class PurchaseOrderModel(TrackedBase):
    """
    A capped spending authorization for a vendor on a job.

    A PO funded by a change order carries ``job_change_order_id``; approved
    allocations on invoices against it inherit that change order.
    """

    __tablename__ = "purchase_orders"

    __table_args__ = (
        UniqueConstraint("po_number", name="uq_purchase_orders_po_number"),
        Index("idx_purchase_orders_job_id", "job_id"),
        Index("idx_purchase_orders_vendor_id", "vendor_id"),
    )

    po_number: Mapped[str] = mapped_column(String(50), nullable=False)
    job_id: Mapped[UUID] = mapped_column(ForeignKey("jobs.id"), nullable=False)
    vendor_id: Mapped[UUID] = mapped_column(ForeignKey("vendors.id"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active")
    job_change_order_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("change_orders.id"), nullable=True
    )

    line_items: Mapped[list["POLineItemModel"]] = relationship(
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dto(self):
        from jobcost_modules.purchasing.models import PurchaseOrder

        return PurchaseOrder(
            id=self.id,
            po_number=self.po_number,
            job_id=self.job_id,
            vendor_id=self.vendor_id,
            total_amount=self.total_amount,
            status=self.status,
            job_change_order_id=self.job_change_order_id,
            line_items=tuple(li.to_dto() for li in self.line_items),
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.po_number}>"


class POLineItemModel(TrackedBase):
    __tablename__ = "po_line_items"

    __table_args__ = (
        Index("idx_po_line_items_po_id", "po_id"),
        Index("idx_po_line_items_cost_code_id", "cost_code_id"),
    )

    po_id: Mapped[UUID] = mapped_column(ForeignKey("purchase_orders.id"), nullable=False)
    cost_code_id: Mapped[UUID] = mapped_column(ForeignKey("cost_codes.id"), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    invoiced_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    purchase_order: Mapped[PurchaseOrderModel] = relationship(back_populates="line_items")

    def to_dto(self):
        from jobcost_modules.purchasing.models import POLineItem

        return POLineItem(
            id=self.id,
            po_id=self.po_id,
            cost_code_id=self.cost_code_id,
            description=self.description,
            amount=self.amount,
            invoiced_amount=self.invoiced_amount,
        )
