"""
NotificationRelay tests.

Tests cover:
- Committed lifecycle events reach the sink, filtered by name
- Nothing is delivered for a rolled-back transaction
- Uninstalling stops delivery
"""

from decimal import Decimal

from jobcost_modules.invoices.models import InvoiceStatus, TransitionRequest
from jobcost_services.notifications import NotificationRelay
from tests.conftest import TEST_ACTOR
from tests.services.fakes import RecordingSink


class TestRelay:
    def test_committed_events_delivered(self, make_invoice, lifecycle, session):
        sink = RecordingSink()
        with NotificationRelay(sink):
            invoice = make_invoice(Decimal("500"))
            lifecycle.transition(invoice.id, TransitionRequest(InvoiceStatus.READY_FOR_APPROVAL, TEST_ACTOR))
            assert sink.events == []
            session.commit()
        assert sink.names == ["invoice_created", "invoice_status_changed"]
        payload = sink.events[1][1]
        assert payload["invoice_id"] == str(invoice.id)
        assert payload["status"] == "ready_for_approval"
        assert payload["previous_status"] == "needs_review"

    def test_filtered(self, make_invoice, lifecycle, session):
        sink = RecordingSink()
        with NotificationRelay(sink, event_names={"invoice_status_changed"}):
            invoice = make_invoice(Decimal("500"))
            lifecycle.transition(invoice.id, TransitionRequest(InvoiceStatus.READY_FOR_APPROVAL, TEST_ACTOR))
            session.commit()
        assert sink.names == ["invoice_status_changed"]

    def test_rollback_delivers_nothing(self, make_invoice, session):
        sink = RecordingSink()
        with NotificationRelay(sink):
            make_invoice(Decimal("500"))
            session.rollback()
            session.commit()
        assert sink.events == []

    def test_uninstall(self, make_invoice, session):
        sink = RecordingSink()
        relay = NotificationRelay(sink).install()
        relay.install()
        relay.uninstall()
        make_invoice(Decimal("500"))
        session.commit()
        assert sink.events == []
