"""
Invoices module: intake, coding, lifecycle transitions, duplicate
detection, split/unsplit and undo.

``InvoiceLifecycleService`` is the entry point; the other classes are its
collaborators and are exported for direct use in tests and tooling.
"""

from jobcost_modules.invoices.allocation import AllocationReconciler
from jobcost_modules.invoices.duplicates import DuplicateDetector, normalize_invoice_number
from jobcost_modules.invoices.models import (
    AllocationInput,
    CreateInvoiceRequest,
    Invoice,
    InvoiceStatus,
    InvoiceType,
    PaymentMethod,
    PaymentRequest,
    ReviewFlag,
    SplitGroup,
    TransitionRequest,
    normalize_status,
    parse_allocations,
)
from jobcost_modules.invoices.service import InvoiceLifecycleService
from jobcost_modules.invoices.split import SplitManager
from jobcost_modules.invoices.validation import InvoiceValidator
from jobcost_modules.invoices.workflows import INVOICE_WORKFLOW, allowed_targets

__all__ = [
    "AllocationInput",
    "AllocationReconciler",
    "CreateInvoiceRequest",
    "DuplicateDetector",
    "INVOICE_WORKFLOW",
    "Invoice",
    "InvoiceLifecycleService",
    "InvoiceStatus",
    "InvoiceType",
    "InvoiceValidator",
    "PaymentMethod",
    "PaymentRequest",
    "ReviewFlag",
    "SplitGroup",
    "SplitManager",
    "TransitionRequest",
    "allowed_targets",
    "normalize_invoice_number",
    "normalize_status",
    "parse_allocations",
]
