"""
DrawService -- payment-application batches and their budget effects.

Responsibility
--------------
Creates draws, moves them through draft -> submitted -> funded, and owns
the budget side of draw membership:

* attaching an invoice snapshots its allocations into ``draw_allocations``
  and adds them to budget billed;
* detaching reverses exactly that snapshot;
* paying adds the snapshot to budget paid, and reversing a payment takes it
  back out.

The invoice's own status is not touched here; the invoice lifecycle
service calls these methods as the side effects of its transitions.

Failure modes
-------------
* ``DrawNotFoundError`` / ``JobNotFoundError``.
* ``DrawStateError`` -- operation not allowed in the draw's status.
* ``AlreadyInDrawError`` -- the invoice is a member of another draw.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from jobcost_config.schema import JobCostConfig
from jobcost_kernel.domain.clock import Clock
from jobcost_kernel.domain.ledger import ZERO, total, within_tolerance
from jobcost_kernel.exceptions import (
    AlreadyInDrawError,
    DrawNotFoundError,
    DrawStateError,
    JobNotFoundError,
)
from jobcost_kernel.logging_config import get_logger
from jobcost_kernel.services.activity_service import ActivityRecorder
from jobcost_kernel.services.base import BaseService
from jobcost_modules.draws.models import DrawStatus, is_funded
from jobcost_modules.draws.orm import DrawAllocationModel, DrawInvoiceModel, DrawModel
from jobcost_modules.jobs.budget import BudgetLedger
from jobcost_modules.jobs.orm import JobModel

logger = get_logger("modules.draws.service")


class DrawService(BaseService):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: JobCostConfig | None = None,
    ):
        super().__init__(session, clock)
        self.config = config or JobCostConfig()
        self.budget = BudgetLedger(session, self.clock)
        self.activity = ActivityRecorder(session, self.clock)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_draw(self, draw_id: UUID) -> DrawModel:
        draw = self.session.get(DrawModel, draw_id)
        if draw is None:
            raise DrawNotFoundError(draw_id)
        return draw

    def membership(self, invoice_id: UUID) -> DrawInvoiceModel | None:
        return self.session.scalars(
            select(DrawInvoiceModel).where(DrawInvoiceModel.invoice_id == invoice_id)
        ).one_or_none()

    # ------------------------------------------------------------------
    # Draw lifecycle
    # ------------------------------------------------------------------

    def create_draw(self, job_id: UUID, actor: str) -> DrawModel:
        if self.session.get(JobModel, job_id) is None:
            raise JobNotFoundError(job_id)
        last = self.session.scalar(
            select(func.max(DrawModel.draw_number)).where(DrawModel.job_id == job_id)
        )
        draw = DrawModel(
            job_id=job_id,
            draw_number=(last or 0) + 1,
            status=DrawStatus.DRAFT.value,
            total_amount=ZERO,
            created_by=actor,
        )
        self.session.add(draw)
        self.session.flush()
        self.activity.record("draw", draw.id, "created", actor, {"draw_number": draw.draw_number})
        logger.info(
            "draw_created",
            extra={"draw_id": str(draw.id), "job_id": str(job_id), "draw_number": draw.draw_number},
        )
        return draw

    def _move(self, draw: DrawModel, expected: DrawStatus, target: DrawStatus, operation: str, actor: str) -> DrawModel:
        if DrawStatus(draw.status) is not expected:
            raise DrawStateError(draw.id, draw.status, operation)
        draw.status = target.value
        draw.updated_by = actor
        self.session.flush()
        self.activity.record("draw", draw.id, operation, actor, {"status": target.value})
        logger.info(
            "draw_status_changed",
            extra={"draw_id": str(draw.id), "from_status": expected.value, "to_status": target.value},
        )
        return draw

    def submit(self, draw_id: UUID, actor: str) -> DrawModel:
        draw = self.get_draw(draw_id)
        self._move(draw, DrawStatus.DRAFT, DrawStatus.SUBMITTED, "submit", actor)
        draw.submitted_at = self.clock.now()
        self.session.flush()
        return draw

    def unsubmit(self, draw_id: UUID, actor: str) -> DrawModel:
        draw = self.get_draw(draw_id)
        self._move(draw, DrawStatus.SUBMITTED, DrawStatus.DRAFT, "unsubmit", actor)
        draw.submitted_at = None
        self.session.flush()
        return draw

    def fund(self, draw_id: UUID, funded_amount: Decimal | None, actor: str) -> DrawModel:
        """
        Record the lender's funding of a submitted draw.

        ``funded_amount`` defaults to the draw total.  The resulting status
        is ``funded`` within tolerance of the total, ``partially_funded``
        below it and ``overfunded`` above it.
        """
        draw = self.get_draw(draw_id)
        if DrawStatus(draw.status) is not DrawStatus.SUBMITTED:
            raise DrawStateError(draw.id, draw.status, "fund")
        amount = draw.total_amount if funded_amount is None else funded_amount
        tolerance = self.config.ledger.tolerance
        if within_tolerance(amount, draw.total_amount, tolerance):
            status = DrawStatus.FUNDED
        elif amount < draw.total_amount:
            status = DrawStatus.PARTIALLY_FUNDED
        else:
            status = DrawStatus.OVERFUNDED
        draw.status = status.value
        draw.funded_amount = amount
        draw.funded_at = self.clock.now()
        draw.updated_by = actor
        self.session.flush()
        self.activity.record(
            "draw",
            draw.id,
            "funded",
            actor,
            {
                "billed_amount": draw.total_amount,
                "funded_amount": amount,
                "funding_difference": amount - draw.total_amount,
                "status": status.value,
            },
        )
        logger.info(
            "draw_funded",
            extra={
                "draw_id": str(draw.id),
                "status": status.value,
                "billed_amount": draw.total_amount,
                "funded_amount": amount,
            },
        )
        return draw

    def recompute_total(self, draw: DrawModel) -> Decimal:
        self.session.flush()
        amounts = self.session.scalars(
            select(DrawAllocationModel.amount)
            .join(DrawInvoiceModel, DrawAllocationModel.membership_id == DrawInvoiceModel.id)
            .where(DrawInvoiceModel.draw_id == draw.id)
        )
        draw.total_amount = total(amounts)
        self.session.flush()
        return draw.total_amount

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def attach_invoice(self, draw_id: UUID, invoice, actor: str) -> DrawInvoiceModel:
        """Add ``invoice`` to the draw and bill its allocations to the budget."""
        draw = self.get_draw(draw_id)
        if is_funded(draw.status):
            raise DrawStateError(draw.id, draw.status, "add_invoice")
        existing = self.membership(invoice.id)
        if existing is not None:
            raise AlreadyInDrawError(invoice.id, existing.draw_id)

        membership = DrawInvoiceModel(draw_id=draw.id, invoice_id=invoice.id, created_by=actor)
        draw.members.append(membership)
        for alloc in invoice.allocations:
            membership.allocations.append(
                DrawAllocationModel(
                    job_id=alloc.job_id or invoice.job_id,
                    cost_code_id=alloc.cost_code_id,
                    amount=alloc.amount,
                    created_by=actor,
                )
            )
        self.session.flush()
        for row in membership.allocations:
            self.budget.adjust_billed(row.job_id, row.cost_code_id, row.amount, actor)
        self.recompute_total(draw)
        logger.info(
            "invoice_added_to_draw",
            extra={
                "draw_id": str(draw.id),
                "invoice_id": str(invoice.id),
                "billed": total(r.amount for r in membership.allocations),
            },
        )
        return membership

    def detach_invoice(self, invoice_id: UUID, actor: str) -> UUID | None:
        """
        Remove the invoice from its draw, reversing the billed snapshot.
        Returns the draw id, or None when the invoice was in no draw.
        """
        membership = self.membership(invoice_id)
        if membership is None:
            return None
        draw = membership.draw
        if is_funded(draw.status):
            raise DrawStateError(draw.id, draw.status, "remove_invoice")
        for row in membership.allocations:
            self.budget.adjust_billed(row.job_id, row.cost_code_id, -row.amount, actor)
        draw.members.remove(membership)
        self.session.flush()
        self.recompute_total(draw)
        logger.info(
            "invoice_removed_from_draw",
            extra={"draw_id": str(draw.id), "invoice_id": str(invoice_id)},
        )
        return draw.id

    def record_payment(self, invoice_id: UUID, actor: str) -> Decimal:
        """Add the invoice's billed snapshot to budget paid."""
        membership = self.membership(invoice_id)
        if membership is None:
            return ZERO
        for row in membership.allocations:
            self.budget.adjust_paid(row.job_id, row.cost_code_id, row.amount, actor)
        return total(r.amount for r in membership.allocations)

    def reverse_payment(self, invoice_id: UUID, actor: str) -> Decimal:
        membership = self.membership(invoice_id)
        if membership is None:
            return ZERO
        for row in membership.allocations:
            self.budget.adjust_paid(row.job_id, row.cost_code_id, -row.amount, actor)
        return total(r.amount for r in membership.allocations)

    def member_invoice_ids(self, draw_id: UUID) -> list[UUID]:
        draw = self.get_draw(draw_id)
        return [m.invoice_id for m in draw.members]
