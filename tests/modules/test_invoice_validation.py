"""
Tests for the invoice validation engine.

Validates:
- New-invoice field rules, strict and extraction modes
- Allocation field rules with per-line field paths
- Transition legality
- Requirement checks reported together, PO capacity last
- Boundary parsing of loosely-typed request dicts
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from jobcost_kernel.exceptions import (
    InvalidTransitionError,
    PoOverageError,
    PreconditionFailedError,
    ValidationFailedError,
)
from jobcost_modules.invoices.models import (
    CreateInvoiceRequest,
    InvoiceStatus,
    PaymentMethod,
    PaymentRequest,
    TransitionRequest,
    parse_allocations,
)
from jobcost_modules.invoices.orm import InvoiceModel
from jobcost_modules.invoices.validation import InvoiceValidator
from jobcost_modules.invoices.workflows import transition_for
from tests.conftest import INVOICE_DATE, TEST_ACTOR, TEST_TODAY


@pytest.fixture
def validator(session, deterministic_clock, config):
    return InvoiceValidator(session, deterministic_clock, config)


def _fields(exc_info) -> list[str]:
    return [e["field"] for e in exc_info.value.errors]


def _request(**overrides) -> CreateInvoiceRequest:
    values = dict(
        actor=TEST_ACTOR,
        amount=Decimal("1000"),
        invoice_number="INV-1",
        invoice_date=INVOICE_DATE,
    )
    values.update(overrides)
    return CreateInvoiceRequest(**values)


# =============================================================================
# New invoices
# =============================================================================


class TestNewInvoiceFields:
    def test_valid_request(self, validator, job, vendor):
        assert validator.validate_new_invoice(_request(job_id=job.id, vendor_id=vendor.id)) == []

    def test_missing_required_fields(self, validator):
        with pytest.raises(ValidationFailedError) as exc_info:
            validator.validate_new_invoice(_request(amount=None, invoice_number=None, invoice_date=None))
        assert set(_fields(exc_info)) == {"amount", "invoice_number", "invoice_date"}

    def test_extraction_mode_accepts_missing(self, validator):
        request = _request(amount=None, invoice_number=None, invoice_date=None, require_complete=False)
        assert validator.validate_new_invoice(request) == []

    def test_zero_amount(self, validator):
        with pytest.raises(ValidationFailedError) as exc_info:
            validator.validate_new_invoice(_request(amount=Decimal("0")))
        assert _fields(exc_info) == ["amount"]

    def test_amount_out_of_range(self, validator):
        with pytest.raises(ValidationFailedError) as exc_info:
            validator.validate_new_invoice(_request(amount=Decimal("-10000001")))
        assert _fields(exc_info) == ["amount"]

    def test_negative_amount_is_allowed(self, validator):
        assert validator.validate_new_invoice(_request(amount=Decimal("-250"))) == []

    def test_invoice_number_characters(self, validator):
        with pytest.raises(ValidationFailedError) as exc_info:
            validator.validate_new_invoice(_request(invoice_number="INV<1>"))
        assert _fields(exc_info) == ["invoice_number"]

    def test_future_date(self, validator):
        with pytest.raises(ValidationFailedError) as exc_info:
            validator.validate_new_invoice(_request(invoice_date=TEST_TODAY + timedelta(days=1)))
        assert _fields(exc_info) == ["invoice_date"]

    def test_stale_date(self, validator):
        with pytest.raises(ValidationFailedError) as exc_info:
            validator.validate_new_invoice(_request(invoice_date=TEST_TODAY - timedelta(days=400)))
        assert _fields(exc_info) == ["invoice_date"]

    def test_due_before_invoice_date(self, validator):
        with pytest.raises(ValidationFailedError) as exc_info:
            validator.validate_new_invoice(_request(due_date=INVOICE_DATE - timedelta(days=1)))
        assert _fields(exc_info) == ["due_date"]

    def test_unknown_references(self, validator):
        with pytest.raises(ValidationFailedError) as exc_info:
            validator.validate_new_invoice(_request(vendor_id=uuid4(), job_id=uuid4(), po_id=uuid4()))
        assert set(_fields(exc_info)) == {"vendor_id", "job_id", "po_id"}

    def test_po_mismatch_warnings(self, validator, make_job, make_vendor, make_po):
        job_a, job_b = make_job(), make_job()
        vendor_a, vendor_b = make_vendor("A"), make_vendor("B")
        po = make_po(job_a.id, vendor_a.id)
        warnings = validator.validate_new_invoice(
            _request(job_id=job_b.id, vendor_id=vendor_b.id, po_id=po.id)
        )
        assert warnings == ["po_job_mismatch", "po_vendor_mismatch"]

    def test_every_error_reported_at_once(self, validator):
        with pytest.raises(ValidationFailedError) as exc_info:
            validator.validate_new_invoice(
                _request(amount=Decimal("0"), invoice_number="bad!", vendor_id=uuid4())
            )
        assert set(_fields(exc_info)) == {"amount", "invoice_number", "vendor_id"}


# =============================================================================
# Allocations
# =============================================================================


class TestAllocationFields:
    def test_valid_set(self, validator, make_invoice, session, cost_code, alloc):
        invoice = session.get(InvoiceModel, make_invoice(Decimal("1000")).id)
        balance = validator.validate_allocations(invoice, [alloc(cost_code.id, 600), alloc(cost_code.id, 400)])
        assert balance.is_balanced
        assert not balance.is_partial

    def test_empty_set_is_accepted(self, validator, make_invoice, session):
        invoice = session.get(InvoiceModel, make_invoice().id)
        assert validator.validate_allocations(invoice, []).allocated == Decimal("0")

    def test_field_paths(self, validator, make_invoice, session, cost_code, alloc):
        invoice = session.get(InvoiceModel, make_invoice(Decimal("1000")).id)
        with pytest.raises(ValidationFailedError) as exc_info:
            validator.validate_allocations(
                invoice,
                [
                    alloc(cost_code.id, 100),
                    alloc(uuid4(), 100),
                    alloc(None, -50),
                ],
            )
        assert set(_fields(exc_info)) == {
            "allocations[1].cost_code_id",
            "allocations[2].cost_code_id",
            "allocations[2].amount",
        }

    def test_over_allocation(self, validator, make_invoice, session, cost_code, alloc):
        invoice = session.get(InvoiceModel, make_invoice(Decimal("1000")).id)
        with pytest.raises(ValidationFailedError) as exc_info:
            validator.validate_allocations(invoice, [alloc(cost_code.id, 700), alloc(cost_code.id, 400)])
        assert _fields(exc_info) == ["allocations"]

    def test_credit_invoice_needs_negative_lines(self, validator, make_invoice, session, cost_code, alloc):
        invoice = session.get(InvoiceModel, make_invoice(Decimal("-500")).id)
        with pytest.raises(ValidationFailedError) as exc_info:
            validator.validate_allocations(invoice, [alloc(cost_code.id, 100)])
        assert exc_info.value.errors[0]["message"] == "must be negative on a credit invoice"

    def test_po_and_change_order_exclusive(
        self, validator, make_invoice, session, cost_code, alloc, job, vendor, make_po, make_change_order
    ):
        po = make_po(job.id, vendor.id)
        co = make_change_order(job.id)
        invoice = session.get(InvoiceModel, make_invoice().id)
        with pytest.raises(ValidationFailedError) as exc_info:
            validator.validate_allocations(
                invoice, [alloc(cost_code.id, 100, po_id=po.id, change_order_id=co.id)]
            )
        assert _fields(exc_info) == ["allocations[0].change_order_id"]

    def test_line_item_must_belong_to_po(
        self, validator, make_invoice, session, cost_code, alloc, job, vendor, make_po
    ):
        po_a = make_po(job.id, vendor.id, lines=[(cost_code.id, Decimal("1000"))])
        po_b = make_po(job.id, vendor.id)
        invoice = session.get(InvoiceModel, make_invoice(po_id=po_b.id).id)
        with pytest.raises(ValidationFailedError) as exc_info:
            validator.validate_allocations(
                invoice, [alloc(cost_code.id, 100, po_line_item_id=po_a.line_items[0].id)]
            )
        assert _fields(exc_info) == ["allocations[0].po_line_item_id"]


# =============================================================================
# Transitions and requirements
# =============================================================================


class TestTransitionChecks:
    def test_illegal_pair(self, validator):
        with pytest.raises(InvalidTransitionError) as exc_info:
            validator.check_transition(InvoiceStatus.NEEDS_REVIEW, InvoiceStatus.PAID)
        assert exc_info.value.current_status == "needs_review"
        assert "ready_for_approval" in exc_info.value.allowed

    def test_requirements_listed_together(self, validator, make_invoice, session):
        invoice = session.get(InvoiceModel, make_invoice(job_id=None, vendor_id=None).id)
        transition = transition_for(InvoiceStatus.READY_FOR_APPROVAL, InvoiceStatus.APPROVED)
        with pytest.raises(PreconditionFailedError) as exc_info:
            validator.check_requirements(invoice, transition)
        assert exc_info.value.requirements == ["job_id", "vendor_id", "allocations_balanced"]

    def test_overage_only_after_hard_requirements(
        self, validator, make_invoice, session, cost_code, alloc, job, vendor, make_po
    ):
        po = make_po(job.id, vendor.id, total_amount=Decimal("100"))
        invoice = session.get(InvoiceModel, make_invoice(Decimal("500"), job_id=None, po_id=po.id).id)
        transition = transition_for(InvoiceStatus.READY_FOR_APPROVAL, InvoiceStatus.APPROVED)
        with pytest.raises(PreconditionFailedError) as exc_info:
            validator.check_requirements(invoice, transition, allocations=[alloc(cost_code.id, 500)])
        assert exc_info.value.requirements == ["job_id"]

    def test_po_overage(self, validator, make_invoice, session, cost_code, alloc, job, vendor, make_po):
        po = make_po(job.id, vendor.id, total_amount=Decimal("100"))
        invoice = session.get(InvoiceModel, make_invoice(Decimal("500"), po_id=po.id).id)
        transition = transition_for(InvoiceStatus.READY_FOR_APPROVAL, InvoiceStatus.APPROVED)
        with pytest.raises(PoOverageError) as exc_info:
            validator.check_requirements(invoice, transition, allocations=[alloc(cost_code.id, 500)])
        assert exc_info.value.overage_amount == Decimal("400")
        assert exc_info.value.overridable is True

    def test_po_overage_override(self, validator, make_invoice, session, cost_code, alloc, job, vendor, make_po):
        po = make_po(job.id, vendor.id, total_amount=Decimal("100"))
        invoice = session.get(InvoiceModel, make_invoice(Decimal("500"), po_id=po.id).id)
        transition = transition_for(InvoiceStatus.READY_FOR_APPROVAL, InvoiceStatus.APPROVED)
        report = validator.check_requirements(
            invoice, transition, allocations=[alloc(cost_code.id, 500)], override_po_overage=True
        )
        assert report.warnings == ("po_overage_overridden",)
        assert [c.po_id for c in report.overridden] == [po.id]

    def test_exactly_filling_po_is_allowed(
        self, validator, make_invoice, session, cost_code, alloc, job, vendor, make_po
    ):
        po = make_po(job.id, vendor.id, total_amount=Decimal("500"))
        invoice = session.get(InvoiceModel, make_invoice(Decimal("500"), po_id=po.id).id)
        transition = transition_for(InvoiceStatus.READY_FOR_APPROVAL, InvoiceStatus.APPROVED)
        report = validator.check_requirements(invoice, transition, allocations=[alloc(cost_code.id, 500)])
        assert report.overridden == ()

    def test_partial_warning(self, validator, make_invoice, session, cost_code, alloc):
        invoice = session.get(InvoiceModel, make_invoice(Decimal("10000")).id)
        transition = transition_for(InvoiceStatus.READY_FOR_APPROVAL, InvoiceStatus.APPROVED)
        report = validator.check_requirements(invoice, transition, allocations=[alloc(cost_code.id, 6000)])
        assert report.is_partial
        assert "partially_allocated" in report.warnings

    def test_draw_required(self, validator, make_invoice, session):
        invoice = session.get(InvoiceModel, make_invoice().id)
        transition = transition_for(InvoiceStatus.APPROVED, InvoiceStatus.IN_DRAW)
        with pytest.raises(PreconditionFailedError) as exc_info:
            validator.check_requirements(invoice, transition)
        assert exc_info.value.requirements == ["draw_id"]


# =============================================================================
# Boundary parsing
# =============================================================================


class TestBoundaryParsing:
    def test_allocations_from_dicts(self):
        cost_code_id = uuid4()
        parsed = parse_allocations([{"cost_code_id": str(cost_code_id), "amount": "$1,250.50"}])
        assert parsed[0].cost_code_id == cost_code_id
        assert parsed[0].amount == Decimal("1250.50")

    def test_allocation_errors_indexed(self):
        with pytest.raises(ValidationFailedError) as exc_info:
            parse_allocations([{"amount": "10"}, {"cost_code_id": "nope", "amount": "ten"}])
        assert set(_fields(exc_info)) == {"allocations[1].cost_code_id", "allocations[1].amount"}

    def test_create_request_from_dict(self):
        request = CreateInvoiceRequest.from_dict(
            {"amount": "100.00", "invoice_number": " INV-9 ", "invoice_date": "2023-12-01"},
            actor=TEST_ACTOR,
        )
        assert request.amount == Decimal("100.00")
        assert request.invoice_number == "INV-9"
        assert request.invoice_date == date(2023, 12, 1)

    def test_create_request_bad_date(self):
        with pytest.raises(ValidationFailedError) as exc_info:
            CreateInvoiceRequest.from_dict({"invoice_date": "12/01/2023"}, actor=TEST_ACTOR)
        assert _fields(exc_info) == ["invoice_date"]

    def test_transition_request_legacy_status(self):
        request = TransitionRequest.from_dict({"status": "needs_approval"}, actor=TEST_ACTOR)
        assert request.target_status is InvoiceStatus.READY_FOR_APPROVAL

    def test_transition_request_unknown_status(self):
        with pytest.raises(ValidationFailedError) as exc_info:
            TransitionRequest.from_dict({"status": "archived"}, actor=TEST_ACTOR)
        assert _fields(exc_info) == ["status"]

    def test_payment_request(self):
        request = PaymentRequest.from_dict(
            {"payment_method": "ACH", "payment_reference": "TX-1", "payment_date": "2024-01-01"},
            actor=TEST_ACTOR,
        )
        assert request.method is PaymentMethod.ACH
        assert request.paid_on == date(2024, 1, 1)

    def test_payment_request_bad_method(self):
        with pytest.raises(ValidationFailedError) as exc_info:
            PaymentRequest.from_dict({"payment_method": "barter"}, actor=TEST_ACTOR)
        assert _fields(exc_info) == ["payment_method"]
