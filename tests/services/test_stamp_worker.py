"""
StampWorker tests.

Tests cover:
- Approval enqueues a job that the worker renders and stores
- Failures are retried and the job fails after max_attempts
- A newer stamp replaces the previous stamped document
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from jobcost_modules.invoices.models import InvoiceStatus, TransitionRequest
from jobcost_modules.invoices.orm import StampJobModel
from jobcost_services.stamping import StampWorker
from tests.conftest import TEST_ACTOR
from tests.services.fakes import MemoryDocumentStore, RecordingStamper

S = InvoiceStatus


@pytest.fixture
def documents():
    return MemoryDocumentStore()


@pytest.fixture
def approved_with_document(make_invoice, lifecycle, documents, cost_code, alloc):
    url = documents.put(b"%PDF-1.7 original", "inv.pdf")
    invoice = make_invoice(Decimal("10000"), document_url=url)
    lifecycle.transition(invoice.id, TransitionRequest(S.READY_FOR_APPROVAL, TEST_ACTOR))
    lifecycle.transition(
        invoice.id,
        TransitionRequest(S.APPROVED, TEST_ACTOR, allocations=(alloc(cost_code.id, 10000),)),
    )
    return invoice


def _worker(session, deterministic_clock, config, documents, stamper):
    return StampWorker(session, stamper, documents, deterministic_clock, config)


def _jobs(session, invoice_id) -> list[StampJobModel]:
    return list(session.scalars(select(StampJobModel).where(StampJobModel.invoice_id == invoice_id)))


class TestStamping:
    def test_success(self, approved_with_document, session, deterministic_clock, config, documents, lifecycle):
        stamper = RecordingStamper()
        result = _worker(session, deterministic_clock, config, documents, stamper).run_pending()
        assert result.processed == 1
        assert len(result.succeeded) == 1

        invoice = lifecycle.get_invoice(approved_with_document.id)
        assert documents.get(invoice.stamped_document_url) == b"%PDF-1.7 original|approved"
        assert stamper.calls[0]["approved_by"] == TEST_ACTOR
        job = _jobs(session, invoice.id)[0]
        assert job.status == "done"
        assert job.completed_at == deterministic_clock.now()

    def test_nothing_pending(self, session, deterministic_clock, config, documents):
        result = _worker(session, deterministic_clock, config, documents, RecordingStamper()).run_pending()
        assert result.processed == 0

    def test_retry_then_fail(self, approved_with_document, session, deterministic_clock, config, documents, captured_logs):
        stamper = RecordingStamper(failures=10)
        worker = _worker(session, deterministic_clock, config, documents, stamper)

        first = worker.run_pending()
        assert len(first.retrying) == 1
        job = _jobs(session, approved_with_document.id)[0]
        assert (job.status, job.attempts) == ("pending", 1)
        assert job.last_error == "renderer crashed"

        worker.run_pending()
        last = worker.run_pending()
        assert last.failed == (job.id,)
        assert (job.status, job.attempts) == ("failed", 3)
        assert worker.run_pending().processed == 0

        failure = [r for r in captured_logs() if r["message"] == "stamp_job_failed"][-1]
        assert failure["level"] == "WARNING"
        assert failure["exc_type"] == "OSError"

    def test_recovers_after_transient_failure(
        self, approved_with_document, session, deterministic_clock, config, documents, lifecycle
    ):
        worker = _worker(session, deterministic_clock, config, documents, RecordingStamper(failures=1))
        worker.run_pending()
        result = worker.run_pending()
        assert len(result.succeeded) == 1
        assert lifecycle.get_invoice(approved_with_document.id).stamped_document_url is not None

    def test_restamp_replaces_previous(
        self, approved_with_document, session, deterministic_clock, config, documents, lifecycle
    ):
        worker = _worker(session, deterministic_clock, config, documents, RecordingStamper())
        worker.run_pending()
        first_url = lifecycle.get_invoice(approved_with_document.id).stamped_document_url

        lifecycle.transition(approved_with_document.id, TransitionRequest(S.READY_FOR_APPROVAL, TEST_ACTOR))
        lifecycle.transition(approved_with_document.id, TransitionRequest(S.APPROVED, TEST_ACTOR))
        worker.run_pending()

        second_url = lifecycle.get_invoice(approved_with_document.id).stamped_document_url
        assert second_url != first_url
        assert first_url in documents.deleted
