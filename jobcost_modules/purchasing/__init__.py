"""Purchasing module: purchase orders, PO line items and change orders."""

from jobcost_modules.purchasing.ledger import PurchasingLedger
from jobcost_modules.purchasing.models import ChangeOrder, POCapacity, POLineItem, PurchaseOrder

__all__ = ["PurchasingLedger", "ChangeOrder", "POCapacity", "POLineItem", "PurchaseOrder"]
