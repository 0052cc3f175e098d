"""
Invoice Lifecycle Workflow (``jobcost_modules.invoices.workflows``).

Responsibility
--------------
Declares the invoice state machine once, as data: the permitted
(current, target) pairs and the named requirements guarding each target.
The validation engine evaluates guards by name; the lifecycle service
dispatches side effects by target status.  No other module compares raw
status strings.

Architecture position
---------------------
**Modules layer** -- declarative workflow definitions.  Pure data; no I/O
apart from a registration log line at import.

Invariants enforced
-------------------
* ``paid``, ``split`` and ``reconciled`` are terminal.
* Every transition into ``approved`` carries the balance and PO-capacity
  guards.
"""

from jobcost_kernel.domain.workflow import Guard, Transition, Workflow
from jobcost_kernel.logging_config import get_logger
from jobcost_modules.invoices.models import InvoiceStatus

logger = get_logger("modules.invoices.workflows")

S = InvoiceStatus

# -----------------------------------------------------------------------------
# Guards (requirement names surface in PreconditionFailedError.violations)
# -----------------------------------------------------------------------------

JOB_ASSIGNED = Guard(name="job_id", description="Invoice is assigned to a job")
VENDOR_ASSIGNED = Guard(name="vendor_id", description="Invoice is assigned to a vendor")
ALLOCATIONS_BALANCED = Guard(
    name="allocations_balanced",
    description="Allocations exist, share the invoice's sign and do not exceed its amount",
)
PO_CAPACITY = Guard(
    name="po_capacity",
    description="Approving does not bill any referenced PO past its total (overridable)",
)
DRAW_OPEN = Guard(
    name="draw_id",
    description="A target draw is supplied, exists and is not funded",
)
FUNDED_DRAW = Guard(
    name="funded_draw",
    description="The invoice's draw has been funded",
)
DRAFT_DRAW = Guard(
    name="draft_draw",
    description="The invoice's draw is still a draft",
)

# -----------------------------------------------------------------------------
# Transitions
# -----------------------------------------------------------------------------

_APPROVAL_GUARDS = (JOB_ASSIGNED, VENDOR_ASSIGNED, ALLOCATIONS_BALANCED, PO_CAPACITY)

INVOICE_WORKFLOW = Workflow(
    name="invoice",
    description="Construction invoice from intake through payment",
    initial_state=S.NEEDS_REVIEW.value,
    states=tuple(s.value for s in S),
    transitions=(
        Transition(S.NEEDS_REVIEW.value, S.READY_FOR_APPROVAL.value, action="submit",
                   guards=(JOB_ASSIGNED, VENDOR_ASSIGNED)),
        Transition(S.NEEDS_REVIEW.value, S.DENIED.value, action="deny"),
        Transition(S.NEEDS_REVIEW.value, S.DELETED.value, action="delete"),
        Transition(S.NEEDS_REVIEW.value, S.SPLIT.value, action="split"),
        Transition(S.READY_FOR_APPROVAL.value, S.APPROVED.value, action="approve",
                   guards=_APPROVAL_GUARDS),
        Transition(S.READY_FOR_APPROVAL.value, S.NEEDS_REVIEW.value, action="send_back"),
        Transition(S.READY_FOR_APPROVAL.value, S.DENIED.value, action="deny"),
        Transition(S.READY_FOR_APPROVAL.value, S.SPLIT.value, action="split"),
        Transition(S.APPROVED.value, S.IN_DRAW.value, action="add_to_draw",
                   guards=(DRAW_OPEN,)),
        Transition(S.APPROVED.value, S.READY_FOR_APPROVAL.value, action="unapprove"),
        Transition(S.APPROVED.value, S.NEEDS_REVIEW.value, action="send_back"),
        Transition(S.IN_DRAW.value, S.PAID.value, action="pay", guards=(FUNDED_DRAW,)),
        Transition(S.IN_DRAW.value, S.APPROVED.value, action="remove_from_draw",
                   guards=(DRAFT_DRAW,)),
        Transition(S.DENIED.value, S.NEEDS_REVIEW.value, action="reopen"),
        Transition(S.DENIED.value, S.DELETED.value, action="delete"),
    ),
    terminal_states=(S.PAID.value, S.SPLIT.value, S.RECONCILED.value),
)

# Statuses from which an invoice may still be split.
SPLITTABLE_STATUSES = frozenset({S.NEEDS_REVIEW, S.READY_FOR_APPROVAL})

# Statuses that count against PO capacity and block an unsplit.
COMMITTED_STATUSES = frozenset({S.APPROVED, S.IN_DRAW, S.PAID})

# Statuses whose allocations may be (re)submitted outside a transition.
ALLOCATABLE_STATUSES = frozenset(
    {S.NEEDS_REVIEW, S.READY_FOR_APPROVAL, S.APPROVED, S.DENIED}
)

# A split child in one of these is finished for reconciliation purposes.
CHILD_FINAL_STATUSES = frozenset({S.PAID, S.DENIED})


def allowed_targets(status: InvoiceStatus) -> tuple[InvoiceStatus, ...]:
    return tuple(InvoiceStatus(t) for t in INVOICE_WORKFLOW.targets_from(status.value))


def transition_for(current: InvoiceStatus, target: InvoiceStatus) -> Transition | None:
    return INVOICE_WORKFLOW.find(current.value, target.value)


logger.info(
    "invoice_workflow_registered",
    extra={
        "workflow_name": INVOICE_WORKFLOW.name,
        "state_count": len(INVOICE_WORKFLOW.states),
        "transition_count": len(INVOICE_WORKFLOW.transitions),
    },
)
