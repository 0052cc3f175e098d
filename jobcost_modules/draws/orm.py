"""
Draw ORM Models (``jobcost_modules.draws.orm``).

Responsibility
--------------
Payment-application batches, their invoice membership and the allocation
amounts billed through each membership (so billed totals can be reversed
exactly even if the invoice's coding changes later).

Architecture position
---------------------
**Modules layer** -- persistence.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from jobcost_kernel.db.base import TrackedBase


class DrawModel(TrackedBase):
    __tablename__ = "draws"

    __table_args__ = (
        UniqueConstraint("job_id", "draw_number", name="uq_draws_job_draw_number"),
        Index("idx_draws_status", "status"),
    )

    job_id: Mapped[UUID] = mapped_column(ForeignKey("jobs.id"), nullable=False)
    draw_number: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="draft")
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    funded_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    funded_at: Mapped[datetime | None] = mapped_column(nullable=True)

    members: Mapped[list["DrawInvoiceModel"]] = relationship(
        back_populates="draw",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dto(self):
        from jobcost_modules.draws.models import Draw, DrawStatus

        return Draw(
            id=self.id,
            job_id=self.job_id,
            draw_number=self.draw_number,
            status=DrawStatus(self.status),
            total_amount=self.total_amount,
            funded_amount=self.funded_amount,
            invoice_ids=tuple(m.invoice_id for m in self.members),
            submitted_at=self.submitted_at,
            funded_at=self.funded_at,
        )

    def __repr__(self) -> str:
        return f"<DrawModel #{self.draw_number} {self.status}>"


class DrawInvoiceModel(TrackedBase):
    """Membership of one invoice in one draw (at most one draw per invoice)."""

    __tablename__ = "draw_invoices"

    __table_args__ = (
        UniqueConstraint("invoice_id", name="uq_draw_invoices_invoice_id"),
        Index("idx_draw_invoices_draw_id", "draw_id"),
    )

    draw_id: Mapped[UUID] = mapped_column(ForeignKey("draws.id"), nullable=False)
    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)

    draw: Mapped[DrawModel] = relationship(back_populates="members")
    allocations: Mapped[list["DrawAllocationModel"]] = relationship(
        back_populates="membership",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class DrawAllocationModel(TrackedBase):
    """Allocation amount billed to the budget through a draw membership."""

    __tablename__ = "draw_allocations"

    __table_args__ = (
        Index("idx_draw_allocations_membership_id", "membership_id"),
    )

    membership_id: Mapped[UUID] = mapped_column(ForeignKey("draw_invoices.id"), nullable=False)
    job_id: Mapped[UUID] = mapped_column(ForeignKey("jobs.id"), nullable=False)
    cost_code_id: Mapped[UUID] = mapped_column(ForeignKey("cost_codes.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    membership: Mapped[DrawInvoiceModel] = relationship(back_populates="allocations")
