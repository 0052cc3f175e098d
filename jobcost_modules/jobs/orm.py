"""
Jobs ORM Models (``jobcost_modules.jobs.orm``).

Responsibility
--------------
Reference data the invoice lifecycle is coded against: jobs, vendors,
cost codes and the per-(job, cost code) budget lines whose billed and paid
totals move as invoices enter draws and get paid.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``jobcost_kernel.db.base``.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from jobcost_kernel.db.base import TrackedBase


class JobModel(TrackedBase):
    __tablename__ = "jobs"

    __table_args__ = (
        UniqueConstraint("code", name="uq_jobs_code"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    contract_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def to_dto(self):
        from jobcost_modules.jobs.models import Job

        return Job(
            id=self.id,
            code=self.code,
            name=self.name,
            contract_amount=self.contract_amount,
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<JobModel {self.code}: {self.name}>"


class VendorModel(TrackedBase):
    __tablename__ = "vendors"

    __table_args__ = (
        Index("idx_vendors_name", "name"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def to_dto(self):
        from jobcost_modules.jobs.models import Vendor

        return Vendor(id=self.id, name=self.name, is_active=self.is_active)

    def __repr__(self) -> str:
        return f"<VendorModel {self.name}>"


class CostCodeModel(TrackedBase):
    __tablename__ = "cost_codes"

    __table_args__ = (
        UniqueConstraint("code", name="uq_cost_codes_code"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Cost codes whose work normally arrives through a change order.
    implies_change_order: Mapped[bool] = mapped_column(Boolean, default=False)

    def to_dto(self):
        from jobcost_modules.jobs.models import CostCode

        return CostCode(
            id=self.id,
            code=self.code,
            name=self.name,
            implies_change_order=self.implies_change_order,
        )

    def __repr__(self) -> str:
        return f"<CostCodeModel {self.code}>"


class BudgetLineModel(TrackedBase):
    """
    Budget for one cost code on one job.

    Guarantees:
        - One line per (job, cost code) (uq_budget_lines_job_cost_code).
        - billed_amount and paid_amount are running totals, never negative.
    """

    __tablename__ = "budget_lines"

    __table_args__ = (
        UniqueConstraint("job_id", "cost_code_id", name="uq_budget_lines_job_cost_code"),
        Index("idx_budget_lines_job_id", "job_id"),
    )

    job_id: Mapped[UUID] = mapped_column(ForeignKey("jobs.id"), nullable=False)
    cost_code_id: Mapped[UUID] = mapped_column(ForeignKey("cost_codes.id"), nullable=False)
    budgeted_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    billed_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    def to_dto(self):
        from jobcost_modules.jobs.models import BudgetLine

        return BudgetLine(
            id=self.id,
            job_id=self.job_id,
            cost_code_id=self.cost_code_id,
            budgeted_amount=self.budgeted_amount,
            billed_amount=self.billed_amount,
            paid_amount=self.paid_amount,
        )

    def __repr__(self) -> str:
        return f"<BudgetLineModel {self.job_id}/{self.cost_code_id}>"
