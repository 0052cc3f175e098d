"""
Split, unsplit and split-parent reconciliation.

Validates:
- Children are numbered, flagged and sum to the parent
- Group validation (count, sign, total)
- Unsplit is refused once a child is committed
- The parent settles once every child is finished
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from jobcost_kernel.exceptions import (
    SplitNotAllowedError,
    UnsplitBlockedError,
    ValidationFailedError,
)
from jobcost_modules.invoices.models import (
    InvoiceStatus,
    ReviewFlag,
    SplitGroup,
    TransitionRequest,
)
from jobcost_modules.purchasing.orm import ChangeOrderModel
from tests.conftest import TEST_ACTOR, TEST_TODAY

S = InvoiceStatus


def _move(lifecycle, invoice_id, target, **kwargs):
    return lifecycle.transition(invoice_id, TransitionRequest(target, TEST_ACTOR, **kwargs))


@pytest.fixture
def split_invoice(make_invoice, lifecycle, make_job):
    """A $10,000 invoice split $6,000 / $4,000 across two jobs."""
    job_a, job_b = make_job(), make_job()
    invoice = make_invoice(Decimal("10000"), invoice_number="INV-500")
    return lifecycle.split(
        invoice.id,
        [SplitGroup(Decimal("6000"), job_id=job_a.id), SplitGroup(Decimal("4000"), job_id=job_b.id)],
        TEST_ACTOR,
    )


class TestSplit:
    def test_children(self, split_invoice):
        children = split_invoice.children
        assert [c.invoice_number for c in children] == ["INV-500-1", "INV-500-2"]
        assert [c.amount for c in children] == [Decimal("6000"), Decimal("4000")]
        assert all(c.status is S.NEEDS_REVIEW for c in children)
        assert all(c.parent_invoice_id == split_invoice.parent.id for c in children)
        assert all(ReviewFlag.SPLIT_CHILD.value in c.review_flags for c in children)
        assert [c.split_index for c in children] == [1, 2]

    def test_parent(self, split_invoice):
        parent = split_invoice.parent
        assert parent.status is S.SPLIT
        assert parent.is_split_parent
        assert parent.original_amount == Decimal("10000")
        assert parent.notes == f"Split into 2 invoices on {TEST_TODAY.isoformat()}"

    def test_group_without_job_flagged(self, make_invoice, lifecycle):
        invoice = make_invoice(Decimal("1000"))
        result = lifecycle.split(
            invoice.id, [SplitGroup(Decimal("500")), SplitGroup(Decimal("500"))], TEST_ACTOR
        )
        assert all(ReviewFlag.NO_JOB.value in c.review_flags for c in result.children)

    def test_parent_allocations_released(
        self, make_invoice, lifecycle, job, cost_code, alloc, make_change_order, session
    ):
        co = make_change_order(job.id)
        invoice = make_invoice(Decimal("1000"))
        lifecycle.allocate(invoice.id, [alloc(cost_code.id, 1000, change_order_id=co.id)], TEST_ACTOR)
        result = lifecycle.split(
            invoice.id, [SplitGroup(Decimal("700")), SplitGroup(Decimal("300"))], TEST_ACTOR
        )
        assert result.parent.allocations == ()
        assert session.get(ChangeOrderModel, co.id).invoiced_amount == Decimal("0")

    def test_activity(self, split_invoice, lifecycle):
        parent_actions = {e.action for e in lifecycle.history(split_invoice.parent.id)}
        assert "split" in parent_actions
        child_actions = {e.action for e in lifecycle.history(split_invoice.children[0].id)}
        assert child_actions == {"created_from_split"}

    def test_family(self, split_invoice, lifecycle):
        family = lifecycle.family(split_invoice.children[1].id)
        assert family.parent.id == split_invoice.parent.id
        assert [c.id for c in family.children] == [c.id for c in split_invoice.children]


class TestSplitValidation:
    def test_needs_two_groups(self, make_invoice, lifecycle):
        invoice = make_invoice(Decimal("1000"))
        with pytest.raises(SplitNotAllowedError):
            lifecycle.split(invoice.id, [SplitGroup(Decimal("1000"))], TEST_ACTOR)

    def test_amounts_must_sum(self, make_invoice, lifecycle):
        invoice = make_invoice(Decimal("1000"))
        with pytest.raises(ValidationFailedError) as exc_info:
            lifecycle.split(invoice.id, [SplitGroup(Decimal("600")), SplitGroup(Decimal("300"))], TEST_ACTOR)
        assert exc_info.value.errors[0]["field"] == "groups"

    def test_sign_and_job(self, make_invoice, lifecycle):
        invoice = make_invoice(Decimal("1000"))
        with pytest.raises(ValidationFailedError) as exc_info:
            lifecycle.split(
                invoice.id,
                [SplitGroup(Decimal("1200")), SplitGroup(Decimal("-200"), job_id=uuid4())],
                TEST_ACTOR,
            )
        assert {e["field"] for e in exc_info.value.errors} == {"groups[1].amount", "groups[1].job_id"}

    def test_credit_memo_split(self, make_invoice, lifecycle):
        invoice = make_invoice(Decimal("-900"))
        result = lifecycle.split(
            invoice.id, [SplitGroup(Decimal("-450")), SplitGroup(Decimal("-450"))], TEST_ACTOR
        )
        assert all(c.is_credit for c in result.children)

    def test_approved_invoice_cannot_split(self, make_invoice, lifecycle, cost_code, alloc):
        invoice = make_invoice(Decimal("1000"))
        _move(lifecycle, invoice.id, S.READY_FOR_APPROVAL)
        _move(lifecycle, invoice.id, S.APPROVED, allocations=(alloc(cost_code.id, 1000),))
        with pytest.raises(SplitNotAllowedError):
            lifecycle.split(invoice.id, [SplitGroup(Decimal("500")), SplitGroup(Decimal("500"))], TEST_ACTOR)

    def test_child_cannot_split_again(self, split_invoice, lifecycle):
        child = split_invoice.children[0]
        with pytest.raises(SplitNotAllowedError):
            lifecycle.split(child.id, [SplitGroup(Decimal("3000")), SplitGroup(Decimal("3000"))], TEST_ACTOR)

    def test_split_status_needs_groups(self, make_invoice, lifecycle):
        invoice = make_invoice()
        with pytest.raises(ValidationFailedError):
            _move(lifecycle, invoice.id, S.SPLIT)


class TestUnsplit:
    def test_unsplit_restores_parent(self, split_invoice, lifecycle):
        result = lifecycle.unsplit(split_invoice.parent.id, TEST_ACTOR)
        assert result.deleted_child_count == 2
        assert result.parent.status is S.NEEDS_REVIEW
        assert not result.parent.is_split_parent
        assert lifecycle.family(split_invoice.parent.id).children == ()

    def test_blocked_by_approved_child(self, split_invoice, lifecycle, cost_code, alloc):
        child = split_invoice.children[0]
        _move(lifecycle, child.id, S.READY_FOR_APPROVAL)
        _move(lifecycle, child.id, S.APPROVED, allocations=(alloc(cost_code.id, 6000),))
        with pytest.raises(UnsplitBlockedError) as exc_info:
            lifecycle.unsplit(split_invoice.parent.id, TEST_ACTOR)
        assert [b["invoice_number"] for b in exc_info.value.blocking_children] == ["INV-500-1"]
        assert lifecycle.get_invoice(split_invoice.parent.id).status is S.SPLIT

    def test_not_a_split_parent(self, make_invoice, lifecycle):
        invoice = make_invoice()
        with pytest.raises(SplitNotAllowedError):
            lifecycle.unsplit(invoice.id, TEST_ACTOR)


class TestReconciliation:
    def test_all_children_denied(self, split_invoice, lifecycle):
        for child in split_invoice.children:
            _move(lifecycle, child.id, S.DENIED, denial_reason="Not ours")
        parent = lifecycle.get_invoice(split_invoice.parent.id)
        assert parent.status is S.RECONCILED
        assert parent.notes.endswith("Paid: 0, Denied: 2, Deleted: 0")
        assert "split_reconciled" in {e.action for e in lifecycle.history(parent.id)}

    def test_unfinished_child_keeps_parent_split(self, split_invoice, lifecycle):
        _move(lifecycle, split_invoice.children[0].id, S.DENIED, denial_reason="Not ours")
        assert lifecycle.get_invoice(split_invoice.parent.id).status is S.SPLIT

    def test_deleted_and_denied_children(self, split_invoice, lifecycle):
        first, second = split_invoice.children
        lifecycle.delete_invoice(first.id, TEST_ACTOR)
        _move(lifecycle, second.id, S.DENIED, denial_reason="Not ours")
        parent = lifecycle.get_invoice(split_invoice.parent.id)
        assert parent.status is S.RECONCILED
        assert parent.notes.endswith("Paid: 0, Denied: 1, Deleted: 1")

    def test_all_children_deleted_restores_parent(self, split_invoice, lifecycle):
        for child in split_invoice.children:
            lifecycle.delete_invoice(child.id, TEST_ACTOR)
        parent = lifecycle.get_invoice(split_invoice.parent.id)
        assert parent.status is S.NEEDS_REVIEW
        assert not parent.is_split_parent
        assert "auto_unsplit" in {e.action for e in lifecycle.history(parent.id)}
