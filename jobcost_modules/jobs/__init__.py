"""Jobs module: jobs, vendors, cost codes and budget lines."""

from jobcost_modules.jobs.budget import BudgetLedger
from jobcost_modules.jobs.models import BudgetLine, CostCode, Job, Vendor

__all__ = ["BudgetLedger", "BudgetLine", "CostCode", "Job", "Vendor"]
