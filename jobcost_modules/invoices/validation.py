"""
Invoice Validation Engine (``jobcost_modules.invoices.validation``).

Responsibility
--------------
Stateless rule evaluation for the invoice lifecycle:

* field validation of new invoices (amount range and sign, invoice number
  format, date window, referenced entities exist);
* allocation validation (cost code present and known, sign matches the
  invoice, PO and CO exclusive, referenced PO/CO/line item known, no
  over-allocation);
* transition legality against ``INVOICE_WORKFLOW``;
* pre-transition requirement checks, dispatched by guard name, including
  the soft PO-capacity block.

Architecture position
---------------------
**Modules layer** -- reads persisted entities, never writes them.  Called
by ``InvoiceLifecycleService`` before any side effect.

Invariants enforced
-------------------
* A transition not in the table is rejected before anything else runs.
* Requirement failures are reported together, as a list.
* PO overage is raised as ``PoOverageError`` only after every hard
  requirement has passed, so an override is never offered for an invoice
  that could not be approved anyway.

Failure modes
-------------
* ``ValidationFailedError`` -- field or allocation rules.
* ``InvalidTransitionError`` -- pair not permitted.
* ``PreconditionFailedError`` -- target requirements unmet.
* ``PoOverageError`` -- PO capacity exceeded without override.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Callable, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from jobcost_config.schema import JobCostConfig
from jobcost_kernel.domain.clock import Clock
from jobcost_kernel.domain.ledger import (
    ZERO,
    BalanceResult,
    Polarity,
    check_balance,
    matches_polarity,
    polarity_of,
    total,
)
from jobcost_kernel.domain.workflow import Transition
from jobcost_kernel.exceptions import (
    InvalidTransitionError,
    PoOverageError,
    PreconditionFailedError,
    ValidationFailedError,
)
from jobcost_kernel.logging_config import get_logger
from jobcost_kernel.services.base import BaseService
from jobcost_modules.draws.models import DrawStatus, is_funded
from jobcost_modules.draws.orm import DrawInvoiceModel, DrawModel
from jobcost_modules.invoices.models import (
    AllocationInput,
    CreateInvoiceRequest,
    InvoiceStatus,
)
from jobcost_modules.invoices.orm import AllocationModel, InvoiceModel
from jobcost_modules.invoices.workflows import (
    COMMITTED_STATUSES,
    allowed_targets,
    transition_for,
)
from jobcost_modules.jobs.orm import CostCodeModel, JobModel, VendorModel
from jobcost_modules.purchasing.models import POCapacity
from jobcost_modules.purchasing.orm import (
    ChangeOrderModel,
    POLineItemModel,
    PurchaseOrderModel,
)

logger = get_logger("modules.invoices.validation")


@dataclass(frozen=True)
class RequirementReport:
    """Outcome of a passed requirement check."""
    target: InvoiceStatus
    balance: BalanceResult | None = None
    warnings: tuple[str, ...] = ()
    overridden: tuple[POCapacity, ...] = ()

    @property
    def is_partial(self) -> bool:
        return self.balance is not None and self.balance.is_partial


def effective_po_id(alloc, invoice_po_id: UUID | None) -> UUID | None:
    """An allocation bills its own PO, else its invoice's PO."""
    return alloc.po_id if alloc.po_id is not None else invoice_po_id


class InvoiceValidator(BaseService):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: JobCostConfig | None = None,
    ):
        super().__init__(session, clock)
        self.config = config or JobCostConfig()
        self.tolerance = self.config.ledger.tolerance
        self._number_pattern = re.compile(self.config.invoice_rules.invoice_number_pattern)
        self._guards: dict[str, Callable[..., dict[str, str] | None]] = {
            "job_id": self._require_job,
            "vendor_id": self._require_vendor,
            "allocations_balanced": self._require_balanced,
            "draw_id": self._require_open_draw,
            "funded_draw": self._require_funded_draw,
            "draft_draw": self._require_draft_draw,
        }

    # ------------------------------------------------------------------
    # Existence helpers
    # ------------------------------------------------------------------

    def _exists(self, model, entity_id: UUID | None) -> bool:
        return entity_id is not None and self.session.get(model, entity_id) is not None

    # ------------------------------------------------------------------
    # Field validation
    # ------------------------------------------------------------------

    def validate_new_invoice(self, request: CreateInvoiceRequest) -> list[str]:
        """
        Field rules for invoice creation.  Returns warnings.

        With ``require_complete=False`` (extraction intake) missing values
        are accepted; values that are present are still checked.

        Raises:
            ValidationFailedError: listing every failed field.
        """
        rules = self.config.invoice_rules
        errors: list[dict[str, str]] = []
        warnings: list[str] = []

        def fail(name: str, message: str) -> None:
            errors.append({"field": name, "message": message})

        strict = request.require_complete

        if request.amount is None:
            if strict:
                fail("amount", "is required")
        else:
            if request.amount == ZERO and strict:
                fail("amount", "cannot be zero")
            if abs(request.amount) > rules.max_abs_amount:
                fail("amount", f"must be between -{rules.max_abs_amount} and {rules.max_abs_amount}")

        number = request.invoice_number
        if not number:
            if strict:
                fail("invoice_number", "is required")
        else:
            if len(number) > rules.max_invoice_number_length:
                fail("invoice_number", f"must be at most {rules.max_invoice_number_length} characters")
            if not self._number_pattern.match(number):
                fail("invoice_number", "contains invalid characters")

        today = self.clock.today()
        if request.invoice_date is None:
            if strict:
                fail("invoice_date", "is required")
        else:
            if request.invoice_date > today:
                fail("invoice_date", "cannot be in the future")
            elif request.invoice_date < today - timedelta(days=rules.max_invoice_age_days):
                fail("invoice_date", f"cannot be more than {rules.max_invoice_age_days} days old")
            if request.due_date is not None and request.due_date < request.invoice_date:
                fail("due_date", "must be on or after invoice_date")

        if request.notes and len(request.notes) > rules.max_notes_length:
            fail("notes", f"must be at most {rules.max_notes_length} characters")

        if request.vendor_id is not None and not self._exists(VendorModel, request.vendor_id):
            fail("vendor_id", "does not exist")
        if request.job_id is not None and not self._exists(JobModel, request.job_id):
            fail("job_id", "does not exist")
        if request.po_id is not None:
            po = self.session.get(PurchaseOrderModel, request.po_id)
            if po is None:
                fail("po_id", "does not exist")
            else:
                if request.job_id is not None and po.job_id != request.job_id:
                    warnings.append("po_job_mismatch")
                if request.vendor_id is not None and po.vendor_id != request.vendor_id:
                    warnings.append("po_vendor_mismatch")

        if errors:
            logger.info(
                "invoice_fields_rejected",
                extra={"fields": [e["field"] for e in errors]},
            )
            raise ValidationFailedError(errors, [{"field": "", "message": w} for w in warnings])
        return warnings

    # ------------------------------------------------------------------
    # Allocation validation
    # ------------------------------------------------------------------

    def validate_allocations(
        self,
        invoice: InvoiceModel,
        allocations: Sequence[AllocationInput],
    ) -> BalanceResult:
        """
        Field-level allocation rules plus the over-allocation check.

        An empty set is accepted here (it clears the coding); the
        ``allocations_balanced`` requirement rejects it at approval.

        Raises:
            ValidationFailedError: listing every failed allocation field.
        """
        polarity = polarity_of(invoice.amount)
        errors: list[dict[str, str]] = []

        def fail(i: int, name: str, message: str) -> None:
            errors.append({"field": f"allocations[{i}].{name}", "message": message})

        for i, alloc in enumerate(allocations):
            if alloc.cost_code_id is None:
                fail(i, "cost_code_id", "is required")
            elif not self._exists(CostCodeModel, alloc.cost_code_id):
                fail(i, "cost_code_id", "does not exist")

            if alloc.amount == ZERO:
                fail(i, "amount", "cannot be zero")
            elif not matches_polarity(alloc.amount, polarity):
                if polarity is Polarity.CREDIT:
                    fail(i, "amount", "must be negative on a credit invoice")
                else:
                    fail(i, "amount", "must be positive on a standard invoice")

            if alloc.po_id is not None and alloc.change_order_id is not None:
                fail(i, "change_order_id", "cannot be combined with po_id")

            if alloc.po_id is not None and not self._exists(PurchaseOrderModel, alloc.po_id):
                fail(i, "po_id", "does not exist")
            if alloc.change_order_id is not None and not self._exists(
                ChangeOrderModel, alloc.change_order_id
            ):
                fail(i, "change_order_id", "does not exist")
            if alloc.job_id is not None and not self._exists(JobModel, alloc.job_id):
                fail(i, "job_id", "does not exist")
            if alloc.po_line_item_id is not None:
                item = self.session.get(POLineItemModel, alloc.po_line_item_id)
                po_id = effective_po_id(alloc, invoice.po_id)
                if item is None:
                    fail(i, "po_line_item_id", "does not exist")
                elif po_id is not None and item.po_id != po_id:
                    fail(i, "po_line_item_id", "belongs to a different purchase order")

        balance = check_balance(invoice.amount, [a.amount for a in allocations], self.tolerance)
        if allocations:
            allocated = balance.allocated
            if polarity is Polarity.CREDIT and allocated < invoice.amount - self.tolerance:
                errors.append({
                    "field": "allocations",
                    "message": f"Allocated credit {allocated} exceeds invoice credit {invoice.amount}",
                })
            elif polarity is Polarity.STANDARD and allocated > invoice.amount + self.tolerance:
                errors.append({
                    "field": "allocations",
                    "message": f"Allocated {allocated} exceeds invoice amount {invoice.amount}",
                })

        if errors:
            logger.info(
                "allocations_rejected",
                extra={
                    "invoice_id": str(invoice.id),
                    "error_count": len(errors),
                    "fields": [e["field"] for e in errors],
                },
            )
            raise ValidationFailedError(errors)
        return balance

    # ------------------------------------------------------------------
    # Transition legality
    # ------------------------------------------------------------------

    def check_transition(self, current: InvoiceStatus, target: InvoiceStatus) -> Transition:
        transition = transition_for(current, target)
        if transition is None:
            raise InvalidTransitionError(
                current.value,
                target.value,
                tuple(s.value for s in allowed_targets(current)),
            )
        return transition

    # ------------------------------------------------------------------
    # Requirements
    # ------------------------------------------------------------------

    def check_requirements(
        self,
        invoice: InvoiceModel,
        transition: Transition,
        allocations: Sequence[AllocationInput] | None = None,
        draw_id: UUID | None = None,
        override_po_overage: bool = False,
    ) -> RequirementReport:
        """
        Evaluate every guard of ``transition`` against the invoice.

        ``allocations`` are the submitted set when the request carries one,
        otherwise the stored set is used.

        Raises:
            PreconditionFailedError: any hard requirement failed.
            PoOverageError: PO capacity exceeded and no override given.
        """
        target = InvoiceStatus(transition.to_state)
        if allocations is None:
            allocations = list(invoice.allocations)
        ctx = {"invoice": invoice, "allocations": allocations, "draw_id": draw_id}

        violations: list[dict[str, str]] = []
        balance: BalanceResult | None = None
        check_capacity = False
        for guard in transition.guards:
            if guard.name == "po_capacity":
                check_capacity = True
                continue
            if guard.name == "allocations_balanced":
                balance = check_balance(
                    invoice.amount, [a.amount for a in allocations], self.tolerance
                )
            violation = self._guards[guard.name](**ctx)
            if violation is not None:
                violations.append(violation)

        if violations:
            logger.info(
                "transition_requirements_failed",
                extra={
                    "invoice_id": str(invoice.id),
                    "target_status": target.value,
                    "requirements": [v["requirement"] for v in violations],
                },
            )
            raise PreconditionFailedError(target.value, violations)

        warnings: list[str] = []
        overridden: list[POCapacity] = []
        if check_capacity:
            overridden = self.check_po_capacity(invoice, allocations, override_po_overage)
            if overridden:
                warnings.append("po_overage_overridden")

        if balance is not None and balance.is_partial:
            warnings.append("partially_allocated")

        return RequirementReport(
            target=target,
            balance=balance,
            warnings=tuple(warnings),
            overridden=tuple(overridden),
        )

    def check_po_capacity(
        self,
        invoice: InvoiceModel,
        allocations,
        override_po_overage: bool = False,
    ) -> list[POCapacity]:
        """
        Compare each effective PO's billed total plus this invoice's share
        against the PO total.  Returns the POs exceeded under override.

        Raises:
            PoOverageError: the first exceeded PO, when not overridden.
        """
        overridden: list[POCapacity] = []
        for capacity, new_amount in self._capacity_checks(invoice, allocations):
            if capacity.billed + new_amount <= capacity.total_amount:
                continue
            if not override_po_overage:
                logger.info(
                    "po_overage_blocked",
                    extra={
                        "invoice_id": str(invoice.id),
                        "po_id": str(capacity.po_id),
                        "remaining": capacity.remaining,
                        "invoice_amount": new_amount,
                    },
                )
                raise PoOverageError(
                    capacity.po_id, capacity.total_amount, capacity.billed, new_amount
                )
            overridden.append(capacity)
        return overridden

    def _require_job(self, invoice: InvoiceModel, **_) -> dict[str, str] | None:
        if invoice.job_id is None:
            return {"requirement": "job_id", "message": "Invoice must be assigned to a job"}
        return None

    def _require_vendor(self, invoice: InvoiceModel, **_) -> dict[str, str] | None:
        if invoice.vendor_id is None:
            return {"requirement": "vendor_id", "message": "Invoice must be assigned to a vendor"}
        return None

    def _require_balanced(self, invoice: InvoiceModel, allocations, **_) -> dict[str, str] | None:
        if not allocations:
            return {
                "requirement": "allocations_balanced",
                "message": "Invoice must have at least one allocation",
            }
        if any(a.cost_code_id is None for a in allocations):
            return {
                "requirement": "allocations_balanced",
                "message": "Every allocation needs a cost code",
            }
        balance = check_balance(invoice.amount, [a.amount for a in allocations], self.tolerance)
        if not balance.is_balanced:
            return {
                "requirement": "allocations_balanced",
                "message": "; ".join(balance.violations),
            }
        return None

    def _membership(self, invoice_id: UUID) -> DrawInvoiceModel | None:
        return self.session.scalars(
            select(DrawInvoiceModel).where(DrawInvoiceModel.invoice_id == invoice_id)
        ).one_or_none()

    def _require_open_draw(self, invoice: InvoiceModel, draw_id: UUID | None, **_) -> dict[str, str] | None:
        if draw_id is None:
            return {"requirement": "draw_id", "message": "A draw must be selected"}
        draw = self.session.get(DrawModel, draw_id)
        if draw is None:
            return {"requirement": "draw_id", "message": f"Draw {draw_id} does not exist"}
        if is_funded(draw.status):
            return {"requirement": "draw_id", "message": f"Draw #{draw.draw_number} is already funded"}
        existing = self._membership(invoice.id)
        if existing is not None and existing.draw_id != draw_id:
            return {"requirement": "draw_id", "message": "Invoice already belongs to another draw"}
        return None

    def _require_funded_draw(self, invoice: InvoiceModel, **_) -> dict[str, str] | None:
        membership = self._membership(invoice.id)
        if membership is None or not is_funded(membership.draw.status):
            return {
                "requirement": "funded_draw",
                "message": "Invoice must be in a funded draw before it is paid",
            }
        return None

    def _require_draft_draw(self, invoice: InvoiceModel, **_) -> dict[str, str] | None:
        membership = self._membership(invoice.id)
        if membership is not None and DrawStatus(membership.draw.status) is not DrawStatus.DRAFT:
            return {
                "requirement": "draft_draw",
                "message": "Invoices can only be removed from a draft draw",
            }
        return None

    # ------------------------------------------------------------------
    # PO capacity
    # ------------------------------------------------------------------

    def po_capacity(self, po_id: UUID, exclude_invoice_id: UUID | None = None) -> POCapacity:
        """Billed total of a PO across committed, live invoices."""
        po = self.session.get(PurchaseOrderModel, po_id)
        committed = [s.value for s in COMMITTED_STATUSES]
        stmt = (
            select(AllocationModel.po_id, AllocationModel.amount, InvoiceModel.po_id)
            .join(InvoiceModel, AllocationModel.invoice_id == InvoiceModel.id)
            .where(
                InvoiceModel.status.in_(committed),
                InvoiceModel.deleted_at.is_(None),
                (AllocationModel.po_id == po_id)
                | (AllocationModel.po_id.is_(None) & (InvoiceModel.po_id == po_id)),
            )
        )
        if exclude_invoice_id is not None:
            stmt = stmt.where(InvoiceModel.id != exclude_invoice_id)
        billed = total(amount for _, amount, _ in self.session.execute(stmt))
        return POCapacity(po_id=po_id, total_amount=po.total_amount if po else ZERO, billed=billed)

    def _capacity_checks(self, invoice: InvoiceModel, allocations) -> list[tuple[POCapacity, Decimal]]:
        per_po: dict[UUID, Decimal] = {}
        for alloc in allocations:
            po_id = effective_po_id(alloc, invoice.po_id)
            if po_id is not None:
                per_po[po_id] = per_po.get(po_id, ZERO) + alloc.amount
        return [
            (self.po_capacity(po_id, exclude_invoice_id=invoice.id), amount)
            for po_id, amount in per_po.items()
        ]
