"""
AllocationReconciler -- keeps PO line-item and change-order totals in step
with an invoice's stored allocation set.

Every stored allocation contributes its amount to:

* the change order it names (``change_orders.invoiced_amount``), and
* the PO line item it bills: the explicit ``po_line_item_id``, else the
  first line item of its effective PO with the same cost code.

Replacing a set reverses the old contributions first, then applies the new
ones, all inside one SAVEPOINT.  Counters are floored at zero by
``apply_running_total``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Sequence

from sqlalchemy.orm import Session

from jobcost_kernel.domain.clock import Clock
from jobcost_kernel.logging_config import get_logger
from jobcost_kernel.services.activity_service import ActivityRecorder
from jobcost_kernel.services.base import BaseService
from jobcost_modules.invoices.models import AllocationInput
from jobcost_modules.invoices.orm import AllocationModel, InvoiceModel
from jobcost_modules.invoices.validation import effective_po_id
from jobcost_modules.purchasing.ledger import PurchasingLedger

logger = get_logger("modules.invoices.allocation")


class AllocationReconciler(BaseService):
    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self.purchasing = PurchasingLedger(session, self.clock)
        self.activity = ActivityRecorder(session, self.clock)

    def _contribute(
        self,
        invoice: InvoiceModel,
        allocations: Iterable[AllocationModel],
        sign: int,
        actor: str,
    ) -> None:
        for alloc in allocations:
            delta = alloc.amount * sign
            if alloc.change_order_id is not None:
                self.purchasing.apply_change_order(alloc.change_order_id, delta, actor)
            po_id = effective_po_id(alloc, invoice.po_id)
            item = self.purchasing.find_line_item(po_id, alloc.cost_code_id, alloc.po_line_item_id)
            if item is not None:
                self.purchasing.apply_line_item(item, delta, actor)

    def reverse(self, invoice: InvoiceModel, actor: str) -> None:
        """Take the stored set's contributions back out of every counter."""
        self._contribute(invoice, invoice.allocations, -1, actor)

    def apply(self, invoice: InvoiceModel, actor: str) -> None:
        self._contribute(invoice, invoice.allocations, 1, actor)

    def replace(
        self,
        invoice: InvoiceModel,
        inputs: Sequence[AllocationInput],
        actor: str,
    ) -> list[AllocationModel]:
        """
        Swap the stored allocation set for ``inputs``.

        Inputs are assumed validated.  Runs in one SAVEPOINT: on any
        failure the old set and every counter stay as they were.
        """
        before = [a.amount for a in invoice.allocations]
        with self.session.begin_nested():
            self.reverse(invoice, actor)
            invoice.allocations.clear()
            self.session.flush()
            for position, alloc in enumerate(inputs):
                invoice.allocations.append(
                    AllocationModel.from_input(alloc, invoice.id, position, actor)
                )
            self.session.flush()
            self.apply(invoice, actor)
        logger.info(
            "allocations_replaced",
            extra={
                "invoice_id": str(invoice.id),
                "previous_count": len(before),
                "previous_total": sum(before, Decimal("0")),
                "allocation_count": len(invoice.allocations),
                "allocation_total": sum((a.amount for a in invoice.allocations), Decimal("0")),
            },
        )
        return list(invoice.allocations)

    def inherit_change_order(self, invoice: InvoiceModel, actor: str) -> int:
        """
        Stamp the invoice PO's linked change order onto allocations that
        name neither a CO nor their own PO.  Returns the number stamped.
        """
        if invoice.po_id is None:
            return 0
        po = self.purchasing.get_po(invoice.po_id)
        if po.job_change_order_id is None:
            return 0
        stamped = [
            a for a in invoice.allocations
            if a.change_order_id is None and a.po_id is None
        ]
        if not stamped:
            return 0
        for alloc in stamped:
            alloc.change_order_id = po.job_change_order_id
            alloc.updated_by = actor
            self.purchasing.apply_change_order(po.job_change_order_id, alloc.amount, actor)
        self.session.flush()
        self.activity.record(
            "invoice",
            invoice.id,
            "co_auto_linked",
            actor,
            {
                "change_order_id": po.job_change_order_id,
                "po_id": po.id,
                "allocation_count": len(stamped),
            },
        )
        logger.info(
            "change_order_inherited",
            extra={
                "invoice_id": str(invoice.id),
                "change_order_id": str(po.job_change_order_id),
                "allocation_count": len(stamped),
            },
        )
        return len(stamped)
