"""
Tests for the invoice state machine declaration.

Validates:
- The transition table matches the lifecycle (and nothing else)
- Terminal states have no way out
- Guards are attached where approval, draws and payment need them
- Workflow value objects reject inconsistent definitions
- Legacy status strings normalize onto the closed enumeration
"""

import pytest

from jobcost_kernel.domain.workflow import Transition, Workflow
from jobcost_modules.invoices.models import InvoiceStatus, normalize_status
from jobcost_modules.invoices.workflows import (
    INVOICE_WORKFLOW,
    allowed_targets,
    transition_for,
)

S = InvoiceStatus


EXPECTED_TARGETS = {
    S.NEEDS_REVIEW: {S.READY_FOR_APPROVAL, S.DENIED, S.DELETED, S.SPLIT},
    S.READY_FOR_APPROVAL: {S.APPROVED, S.NEEDS_REVIEW, S.DENIED, S.SPLIT},
    S.APPROVED: {S.IN_DRAW, S.READY_FOR_APPROVAL, S.NEEDS_REVIEW},
    S.IN_DRAW: {S.PAID, S.APPROVED},
    S.DENIED: {S.NEEDS_REVIEW, S.DELETED},
    S.PAID: set(),
    S.SPLIT: set(),
    S.RECONCILED: set(),
}


class TestTransitionTable:
    @pytest.mark.parametrize("status", list(EXPECTED_TARGETS))
    def test_allowed_targets(self, status):
        assert set(allowed_targets(status)) == EXPECTED_TARGETS[status]

    @pytest.mark.parametrize("status", [S.PAID, S.SPLIT, S.RECONCILED])
    def test_terminal_states(self, status):
        assert INVOICE_WORKFLOW.is_terminal(status.value)

    def test_unknown_pair_is_none(self):
        assert transition_for(S.NEEDS_REVIEW, S.PAID) is None
        assert transition_for(S.PAID, S.NEEDS_REVIEW) is None

    def test_approval_guards(self):
        transition = transition_for(S.READY_FOR_APPROVAL, S.APPROVED)
        names = [g.name for g in transition.guards]
        assert names == ["job_id", "vendor_id", "allocations_balanced", "po_capacity"]

    def test_draw_and_payment_guards(self):
        assert [g.name for g in transition_for(S.APPROVED, S.IN_DRAW).guards] == ["draw_id"]
        assert [g.name for g in transition_for(S.IN_DRAW, S.PAID).guards] == ["funded_draw"]
        assert [g.name for g in transition_for(S.IN_DRAW, S.APPROVED).guards] == ["draft_draw"]


class TestWorkflowDefinition:
    def test_rejects_unknown_state(self):
        with pytest.raises(ValueError, match="undeclared state"):
            Workflow(
                name="w",
                description="",
                initial_state="a",
                states=("a",),
                transitions=(Transition("a", "b", action="go"),),
            )

    def test_rejects_terminal_with_exit(self):
        with pytest.raises(ValueError, match="terminal state"):
            Workflow(
                name="w",
                description="",
                initial_state="a",
                states=("a", "b"),
                transitions=(Transition("b", "a", action="back"),),
                terminal_states=("b",),
            )

    def test_rejects_duplicate_pair(self):
        with pytest.raises(ValueError, match="duplicate transition"):
            Workflow(
                name="w",
                description="",
                initial_state="a",
                states=("a", "b"),
                transitions=(
                    Transition("a", "b", action="one"),
                    Transition("a", "b", action="two"),
                ),
            )


class TestStatusNormalization:
    def test_legacy_aliases(self):
        assert normalize_status("received") is S.NEEDS_REVIEW
        assert normalize_status("needs_approval") is S.READY_FOR_APPROVAL

    def test_case_and_whitespace(self):
        assert normalize_status("  Approved ") is S.APPROVED

    def test_unknown_status(self):
        with pytest.raises(ValueError, match="Unknown invoice status"):
            normalize_status("archived")
