"""Draw domain models: status enumeration and frozen draw view."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class DrawStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    FUNDED = "funded"
    PARTIALLY_FUNDED = "partially_funded"
    OVERFUNDED = "overfunded"


FUNDED_STATUSES = frozenset(
    {DrawStatus.FUNDED, DrawStatus.PARTIALLY_FUNDED, DrawStatus.OVERFUNDED}
)


def is_funded(status: str | DrawStatus) -> bool:
    return DrawStatus(status) in FUNDED_STATUSES


@dataclass(frozen=True)
class Draw:
    id: UUID
    job_id: UUID
    draw_number: int
    status: DrawStatus
    total_amount: Decimal
    funded_amount: Decimal | None
    invoice_ids: tuple[UUID, ...] = ()
    submitted_at: datetime | None = None
    funded_at: datetime | None = None


@dataclass(frozen=True)
class DrawFundingResult:
    draw: Draw
    paid_invoice_ids: tuple[UUID, ...]
    failed: dict[UUID, dict]
