"""
BudgetLedger -- billed and paid totals per (job, cost code).

Billed moves when an invoice's allocations enter or leave a draw; paid
moves when the invoice is paid.  Lines that do not exist yet are created
with a zero budget so billing never fails for an unbudgeted cost code.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from jobcost_kernel.domain.ledger import ZERO
from jobcost_kernel.logging_config import get_logger
from jobcost_kernel.services.base import BaseService
from jobcost_kernel.services.running_totals import apply_running_total
from jobcost_modules.jobs.orm import BudgetLineModel

logger = get_logger("modules.jobs.budget")


class BudgetLedger(BaseService):
    def line_for(self, job_id: UUID, cost_code_id: UUID, actor: str) -> BudgetLineModel:
        line = self.session.scalars(
            select(BudgetLineModel).where(
                BudgetLineModel.job_id == job_id,
                BudgetLineModel.cost_code_id == cost_code_id,
            )
        ).one_or_none()
        if line is None:
            line = BudgetLineModel(
                job_id=job_id,
                cost_code_id=cost_code_id,
                budgeted_amount=ZERO,
                billed_amount=ZERO,
                paid_amount=ZERO,
                created_by=actor,
            )
            self.session.add(line)
            self.session.flush()
            logger.info(
                "budget_line_created",
                extra={"job_id": str(job_id), "cost_code_id": str(cost_code_id)},
            )
        return line

    def adjust_billed(self, job_id: UUID, cost_code_id: UUID, delta: Decimal, actor: str) -> Decimal:
        line = self.line_for(job_id, cost_code_id, actor)
        line.updated_by = actor
        return apply_running_total(self.session, line, "billed_amount", delta)

    def adjust_paid(self, job_id: UUID, cost_code_id: UUID, delta: Decimal, actor: str) -> Decimal:
        line = self.line_for(job_id, cost_code_id, actor)
        line.updated_by = actor
        return apply_running_total(self.session, line, "paid_amount", delta)
