"""
InvoiceIntakeService -- turns an uploaded document into a ``needs_review``
invoice.

Flow:
    1. Hash the document and store it through the ``DocumentStore``.
    2. Run the ``Extractor`` with a timeout.  A timeout or extractor error
       does not fail the upload; the invoice is created with whatever is
       known and the ``extraction_incomplete`` review flag.
    3. Keep extracted fields at or above ``min_field_confidence``; drop
       fields that do not coerce or that the field rules reject.
    4. Create the invoice through ``InvoiceLifecycleService`` (duplicate
       detection included, with the document hash).  If creation fails the
       stored document is removed again.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from jobcost_config.schema import JobCostConfig
from jobcost_kernel.db.types import to_money
from jobcost_kernel.domain.clock import Clock
from jobcost_kernel.exceptions import ValidationFailedError
from jobcost_kernel.logging_config import get_logger
from jobcost_kernel.services.base import BaseService
from jobcost_kernel.utils.hashing import hash_document
from jobcost_modules.invoices.models import CreateInvoiceRequest, CreateInvoiceResult, ReviewFlag
from jobcost_modules.invoices.service import InvoiceLifecycleService
from jobcost_services.collaborators import DocumentStore, ExtractionResult, Extractor

logger = get_logger("services.intake")

_REQUIRED_FIELDS = ("amount", "invoice_number", "invoice_date", "vendor_id")


def _as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _as_uuid(value: Any) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def _as_text(value: Any) -> str:
    text = str(value).strip()
    if not text:
        raise ValueError("empty")
    return text


_COERCERS = {
    "invoice_number": _as_text,
    "amount": to_money,
    "invoice_date": _as_date,
    "due_date": _as_date,
    "vendor_id": _as_uuid,
    "job_id": _as_uuid,
    "po_id": _as_uuid,
    "notes": _as_text,
}


class InvoiceIntakeService(BaseService):
    def __init__(
        self,
        session: Session,
        extractor: Extractor,
        documents: DocumentStore,
        clock: Clock | None = None,
        config: JobCostConfig | None = None,
    ):
        super().__init__(session, clock)
        self.extractor = extractor
        self.documents = documents
        self.config = config or JobCostConfig()
        self.lifecycle = InvoiceLifecycleService(session, self.clock, self.config)

    def _extract(self, document: bytes, timeout: float) -> tuple[ExtractionResult | None, str]:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="jobcost-extract")
        try:
            future = executor.submit(self.extractor.extract, document)
            return future.result(timeout=timeout), "complete"
        except FuturesTimeoutError:
            logger.warning("extraction_timed_out", extra={"timeout_seconds": timeout})
            return None, "timeout"
        except Exception:
            logger.warning("extraction_failed", exc_info=True)
            return None, "error"
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _fields(self, extraction: ExtractionResult | None) -> tuple[dict[str, Any], list[str]]:
        """Coerced fields above the confidence floor, and the names dropped."""
        if extraction is None:
            return {}, []
        floor = self.config.intake.min_field_confidence
        values: dict[str, Any] = {}
        dropped: list[str] = []
        for name, coerce in _COERCERS.items():
            raw = extraction.value(name)
            if raw is None:
                continue
            if extraction.value(name, floor) is None:
                dropped.append(name)
                continue
            try:
                values[name] = coerce(raw)
            except (TypeError, ValueError):
                dropped.append(name)
        return values, dropped

    def ingest(
        self,
        document: bytes,
        filename: str,
        actor: str,
        timeout: float | None = None,
    ) -> CreateInvoiceResult:
        timeout = timeout if timeout is not None else self.config.intake.extraction_timeout_seconds
        content_hash = hash_document(document)
        url = self.documents.put(document, filename)
        extraction, outcome = self._extract(document, timeout)
        values, dropped = self._fields(extraction)

        try:
            result = self._create(values, dropped, extraction, outcome, url, content_hash, filename, actor)
        except Exception:
            self.documents.delete(url)
            raise

        logger.info(
            "invoice_ingested",
            extra={
                "invoice_id": str(result.invoice.id),
                "extraction_status": outcome,
                "dropped_fields": dropped,
                "review_flags": list(result.invoice.review_flags),
            },
        )
        return result

    def _request(
        self,
        values: dict[str, Any],
        dropped: list[str],
        extraction: ExtractionResult | None,
        outcome: str,
        url: str,
        content_hash: str,
        filename: str,
        actor: str,
    ) -> CreateInvoiceRequest:
        incomplete = outcome != "complete" or bool(dropped) or any(
            name not in values for name in _REQUIRED_FIELDS
        )
        return CreateInvoiceRequest(
            actor=actor,
            amount=values.get("amount"),
            invoice_number=values.get("invoice_number"),
            invoice_date=values.get("invoice_date"),
            vendor_id=values.get("vendor_id"),
            job_id=values.get("job_id"),
            po_id=values.get("po_id"),
            due_date=values.get("due_date"),
            notes=values.get("notes"),
            document_url=url,
            content_hash=content_hash,
            extraction={
                "status": outcome,
                "filename": filename,
                "dropped_fields": list(dropped),
                "fields": {
                    name: {"value": str(f.value), "confidence": f.confidence}
                    for name, f in (extraction.fields.items() if extraction else ())
                },
            },
            review_flags=(ReviewFlag.EXTRACTION_INCOMPLETE.value,) if incomplete else (),
            require_complete=False,
        )

    def _create(self, values: dict[str, Any], dropped: list[str], *args) -> CreateInvoiceResult:
        try:
            return self.lifecycle.create_invoice(self._request(values, dropped, *args))
        except ValidationFailedError as exc:
            rejected = [e["field"] for e in exc.errors if e["field"] in values]
            if not rejected:
                raise
            for name in rejected:
                values.pop(name)
                dropped.append(name)
            logger.info("extracted_fields_rejected", extra={"fields": rejected})
        return self.lifecycle.create_invoice(self._request(values, dropped, *args))
