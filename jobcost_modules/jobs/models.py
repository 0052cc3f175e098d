"""Jobs domain models: frozen read-side views of the reference data."""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class Job:
    id: UUID
    code: str
    name: str
    contract_amount: Decimal = Decimal("0")
    is_active: bool = True


@dataclass(frozen=True)
class Vendor:
    id: UUID
    name: str
    is_active: bool = True


@dataclass(frozen=True)
class CostCode:
    id: UUID
    code: str
    name: str
    implies_change_order: bool = False


@dataclass(frozen=True)
class BudgetLine:
    id: UUID
    job_id: UUID
    cost_code_id: UUID
    budgeted_amount: Decimal
    billed_amount: Decimal
    paid_amount: Decimal

    @property
    def remaining(self) -> Decimal:
        return self.budgeted_amount - self.billed_amount
