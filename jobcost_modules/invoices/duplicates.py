"""
Duplicate Detection (``jobcost_modules.invoices.duplicates``).

Responsibility
--------------
Scores live invoices against a candidate (vendor, number, amount, date,
document hash, job) and reports ranked matches with a confidence.  Each
existing invoice appears at most once, with its strongest rule.

Rules, strongest first (confidences come from ``DuplicateSettings``):

=========================  ============================================
``exact_document``          same document content hash
``exact_invoice_number``    same vendor, same normalized number
``same_amount_and_date``    same vendor, amount within tolerance %, same date
``similar_number``          same vendor, one normalized number contains
                            the other, amount within tolerance %
``same_number_same_job``    same job, different vendor, same number
``same_amount``             same vendor, amount within tolerance %
=========================  ============================================

Architecture position
---------------------
**Modules layer** -- read-only apart from ``register_hash``.
"""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from jobcost_config.schema import JobCostConfig
from jobcost_kernel.domain.clock import Clock
from jobcost_kernel.domain.ledger import ZERO, within_percent
from jobcost_kernel.logging_config import get_logger
from jobcost_kernel.services.base import BaseService
from jobcost_modules.invoices.models import DuplicateCheckResult, DuplicateMatch
from jobcost_modules.invoices.orm import DocumentHashModel, InvoiceModel

logger = get_logger("modules.invoices.duplicates")

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_PREFIXES = re.compile(r"^(invoice|inv|num|no)+")


def normalize_invoice_number(number: str | None) -> str:
    """``"INV-00123"`` and ``"#00123"`` both normalize to ``"00123"``."""
    if not number:
        return ""
    return _PREFIXES.sub("", _NON_ALNUM.sub("", number.lower()))


class DuplicateDetector(BaseService):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: JobCostConfig | None = None,
    ):
        super().__init__(session, clock)
        self.settings = (config or JobCostConfig()).duplicates

    def _live(self):
        return select(InvoiceModel).where(InvoiceModel.deleted_at.is_(None))

    def check(
        self,
        vendor_id: UUID | None,
        invoice_number: str | None,
        amount: Decimal | None,
        invoice_date: date | None = None,
        content_hash: str | None = None,
        job_id: UUID | None = None,
        exclude_invoice_id: UUID | None = None,
    ) -> DuplicateCheckResult:
        conf = self.settings.confidences
        best: dict[UUID, DuplicateMatch] = {}

        def consider(inv: InvoiceModel, confidence: float, reason: str) -> None:
            if inv.id == exclude_invoice_id:
                return
            current = best.get(inv.id)
            if current is None or confidence > current.confidence:
                best[inv.id] = DuplicateMatch(
                    invoice_id=inv.id,
                    invoice_number=inv.invoice_number,
                    vendor_id=inv.vendor_id,
                    amount=inv.amount,
                    status=inv.status,
                    confidence=confidence,
                    reason=reason,
                )

        if content_hash:
            stmt = (
                self._live()
                .join(DocumentHashModel, DocumentHashModel.invoice_id == InvoiceModel.id)
                .where(DocumentHashModel.content_hash == content_hash)
            )
            for inv in self.session.scalars(stmt):
                consider(inv, conf.content_hash, "exact_document")

        normalized = normalize_invoice_number(invoice_number)
        has_amount = amount is not None and amount != ZERO

        if vendor_id is not None:
            for inv in self.session.scalars(self._live().where(InvoiceModel.vendor_id == vendor_id)):
                existing = normalize_invoice_number(inv.invoice_number)
                amount_match = has_amount and within_percent(
                    inv.amount, amount, self.settings.amount_match_percent
                )
                if normalized and normalized == existing:
                    consider(inv, conf.exact_number, "exact_invoice_number")
                elif amount_match and invoice_date is not None and inv.invoice_date == invoice_date:
                    consider(inv, conf.amount_and_date, "same_amount_and_date")
                elif amount_match and normalized and existing and (
                    normalized in existing or existing in normalized
                ):
                    consider(inv, conf.fuzzy_number_and_amount, "similar_number")
                elif amount_match:
                    consider(inv, conf.amount_only, "same_amount")

        if job_id is not None and normalized:
            stmt = self._live().where(InvoiceModel.job_id == job_id)
            if vendor_id is not None:
                stmt = stmt.where(
                    (InvoiceModel.vendor_id != vendor_id) | InvoiceModel.vendor_id.is_(None)
                )
            for inv in self.session.scalars(stmt):
                if normalize_invoice_number(inv.invoice_number) == normalized:
                    consider(inv, conf.cross_vendor_number, "same_number_same_job")

        ranked = sorted(best.values(), key=lambda m: m.confidence, reverse=True)
        matches = tuple(ranked[: self.settings.max_matches])
        result = DuplicateCheckResult(
            matches=matches,
            is_duplicate=any(m.confidence >= self.settings.duplicate_threshold for m in matches),
            is_likely_duplicate=any(m.confidence >= self.settings.likely_threshold for m in matches),
        )
        if matches:
            logger.info(
                "duplicate_candidates_found",
                extra={
                    "match_count": len(matches),
                    "best_confidence": matches[0].confidence,
                    "best_reason": matches[0].reason,
                    "is_duplicate": result.is_duplicate,
                },
            )
        return result

    def register_hash(self, invoice_id: UUID, content_hash: str, actor: str) -> DocumentHashModel:
        """Record (or replace) the document hash of an invoice."""
        row = self.session.scalars(
            select(DocumentHashModel).where(DocumentHashModel.invoice_id == invoice_id)
        ).one_or_none()
        if row is None:
            row = DocumentHashModel(invoice_id=invoice_id, content_hash=content_hash, created_by=actor)
            self.session.add(row)
        else:
            row.content_hash = content_hash
            row.updated_by = actor
        self.session.flush()
        return row
