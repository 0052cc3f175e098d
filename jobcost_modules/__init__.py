"""
Job-cost modules.

Each module contains:
- Domain models (frozen dataclasses and enums)
- ORM models (``orm.py``)
- Services over the kernel (ledgers, validators, orchestrators)

Modules:
- jobs: jobs, vendors, cost codes, budget lines
- purchasing: purchase orders, PO line items, change orders
- invoices: invoice lifecycle, allocation, duplicates, split/unsplit
- draws: payment-application batches and their budget effects
"""

from jobcost_modules import draws, invoices, jobs, purchasing

__all__ = ["draws", "invoices", "jobs", "purchasing"]
