"""
PurchasingLedger -- incremental PO line-item and change-order totals.

Line items are matched by explicit ``po_line_item_id`` first, then by
(PO, cost code).  Every write goes through ``apply_running_total``: one
delta, one counter, floored at zero.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from jobcost_kernel.exceptions import ChangeOrderNotFoundError, PurchaseOrderNotFoundError
from jobcost_kernel.logging_config import get_logger
from jobcost_kernel.services.base import BaseService
from jobcost_kernel.services.running_totals import apply_running_total
from jobcost_modules.purchasing.orm import (
    ChangeOrderModel,
    POLineItemModel,
    PurchaseOrderModel,
)

logger = get_logger("modules.purchasing.ledger")


class PurchasingLedger(BaseService):
    def get_po(self, po_id: UUID) -> PurchaseOrderModel:
        po = self.session.get(PurchaseOrderModel, po_id)
        if po is None:
            raise PurchaseOrderNotFoundError(po_id)
        return po

    def get_change_order(self, change_order_id: UUID) -> ChangeOrderModel:
        co = self.session.get(ChangeOrderModel, change_order_id)
        if co is None:
            raise ChangeOrderNotFoundError(change_order_id)
        return co

    def find_line_item(
        self,
        po_id: UUID | None,
        cost_code_id: UUID,
        po_line_item_id: UUID | None = None,
    ) -> POLineItemModel | None:
        if po_line_item_id is not None:
            item = self.session.get(POLineItemModel, po_line_item_id)
            if item is not None:
                return item
        if po_id is None:
            return None
        return self.session.scalars(
            select(POLineItemModel)
            .where(
                POLineItemModel.po_id == po_id,
                POLineItemModel.cost_code_id == cost_code_id,
            )
            .order_by(POLineItemModel.created_at, POLineItemModel.id)
            .limit(1)
        ).first()

    def apply_line_item(self, item: POLineItemModel, delta: Decimal, actor: str) -> Decimal:
        item.updated_by = actor
        return apply_running_total(self.session, item, "invoiced_amount", delta)

    def apply_change_order(self, change_order_id: UUID, delta: Decimal, actor: str) -> Decimal:
        co = self.get_change_order(change_order_id)
        co.updated_by = actor
        return apply_running_total(self.session, co, "invoiced_amount", delta)
