"""Draws module: payment-application batches, membership and funding."""

from jobcost_modules.draws.models import Draw, DrawFundingResult, DrawStatus, is_funded
from jobcost_modules.draws.service import DrawService

__all__ = ["Draw", "DrawFundingResult", "DrawService", "DrawStatus", "is_funded"]
