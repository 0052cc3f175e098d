"""
StampWorker -- drains the ``stamp_jobs`` outbox.

Approval and payment enqueue a stamp job in the same transaction as the
status change.  The worker renders the status onto the invoice document
through the ``Stamper`` collaborator and stores the result.

Each job runs in its own SAVEPOINT: a failure rolls back that job's work
only, is recorded on the row (``attempts``, ``last_error``) and is retried
on a later run until ``max_attempts``, after which the job is ``failed``.
The worker flushes; the caller commits.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from jobcost_config.schema import JobCostConfig
from jobcost_kernel.domain.clock import Clock
from jobcost_kernel.logging_config import get_logger
from jobcost_kernel.services.base import BaseService
from jobcost_modules.invoices.orm import InvoiceModel, StampJobModel
from jobcost_services.collaborators import DocumentStore, Stamper

logger = get_logger("services.stamping")

PENDING = "pending"
DONE = "done"
FAILED = "failed"


@dataclass(frozen=True)
class StampRunResult:
    processed: int
    succeeded: tuple[UUID, ...] = ()
    retrying: tuple[UUID, ...] = ()
    failed: tuple[UUID, ...] = ()
    errors: dict[UUID, str] = field(default_factory=dict)


class StampWorker(BaseService):
    def __init__(
        self,
        session: Session,
        stamper: Stamper,
        documents: DocumentStore,
        clock: Clock | None = None,
        config: JobCostConfig | None = None,
    ):
        super().__init__(session, clock)
        self.stamper = stamper
        self.documents = documents
        self.settings = (config or JobCostConfig()).stamping

    def pending(self, limit: int | None = None) -> list[StampJobModel]:
        stmt = (
            select(StampJobModel)
            .where(StampJobModel.status == PENDING)
            .order_by(StampJobModel.created_at, StampJobModel.id)
            .limit(limit or self.settings.batch_size)
        )
        return list(self.session.scalars(stmt))

    def _stamp(self, job: StampJobModel) -> None:
        invoice = self.session.get(InvoiceModel, job.invoice_id)
        source_url = job.payload.get("document_url") or (invoice.document_url if invoice else None)
        if invoice is None or not source_url:
            raise LookupError(f"No document to stamp for invoice {job.invoice_id}")
        pdf = self.documents.get(source_url)
        stamped = self.stamper.stamp(pdf, job.payload)
        number = (invoice.invoice_number or str(invoice.id)).replace("/", "_")
        url = self.documents.put(stamped, f"{number}_{job.reason}_stamped.pdf")
        previous = invoice.stamped_document_url
        invoice.stamped_document_url = url
        job.status = DONE
        job.completed_at = self.clock.now()
        job.last_error = None
        self.session.flush()
        if previous and previous != url:
            self.documents.delete(previous)

    def run_pending(self, limit: int | None = None) -> StampRunResult:
        succeeded: list[UUID] = []
        retrying: list[UUID] = []
        failed: list[UUID] = []
        errors: dict[UUID, str] = {}
        jobs = self.pending(limit)

        for job in jobs:
            job.attempts += 1
            self.session.flush()
            try:
                with self.session.begin_nested():
                    self._stamp(job)
                succeeded.append(job.id)
            except Exception as exc:
                errors[job.id] = str(exc)
                job.last_error = str(exc)[:2000]
                if job.attempts >= job.max_attempts:
                    job.status = FAILED
                    failed.append(job.id)
                else:
                    retrying.append(job.id)
                self.session.flush()
                logger.warning(
                    "stamp_job_failed",
                    exc_info=True,
                    extra={
                        "stamp_job_id": str(job.id),
                        "invoice_id": str(job.invoice_id),
                        "attempts": job.attempts,
                        "max_attempts": job.max_attempts,
                        "status": job.status,
                    },
                )

        if jobs:
            logger.info(
                "stamp_run_completed",
                extra={
                    "processed": len(jobs),
                    "succeeded": len(succeeded),
                    "retrying": len(retrying),
                    "failed": len(failed),
                },
            )
        return StampRunResult(
            processed=len(jobs),
            succeeded=tuple(succeeded),
            retrying=tuple(retrying),
            failed=tuple(failed),
            errors=errors,
        )
