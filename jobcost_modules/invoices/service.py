"""
jobcost_modules.invoices.service -- Invoice lifecycle orchestrator.

Responsibility:
    The single entry point for every invoice mutation: creation, coding,
    status transitions (single and bulk), deletion, split/unsplit, undo,
    vendor payment marks and draw funding.  Rule evaluation is delegated to
    ``InvoiceValidator``; counters to ``AllocationReconciler``; draw budget
    effects to ``DrawService``; split structure to ``SplitManager``.

Architecture position:
    Modules -- orchestration over the kernel services (locks, undo,
    activity, post-commit events) and the sibling module services.

Invariants enforced:
    - A transition is checked against the workflow table before any side
      effect; the checks, counter writes, undo snapshot and status write
      then run in one SAVEPOINT.
    - Every mutation goes through the same gate: optional
      ``expected_version`` match, then the advisory lock check.
    - Every mutation bumps ``version``, writes an activity entry, captures
      an undo snapshot and publishes a post-commit event.
    - PO overage is only ever accepted with an explicit override, and the
      override is logged at WARNING and recorded as activity.

Failure modes:
    - InvoiceNotFoundError, VersionConflictError, EntityLockedError.
    - ValidationFailedError, InvalidTransitionError,
      PreconditionFailedError, PoOverageError.
    - DuplicateInvoiceError on creation.
    - SplitNotAllowedError, UnsplitBlockedError, DeletionNotAllowedError.
    - UndoNotFoundError, UndoExpiredError, UndoBlockedError.

Non-goals:
    - Does NOT commit.  Callers own the transaction (``session_scope()``).
"""

from __future__ import annotations

from dataclasses import asdict, replace
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from jobcost_config.schema import JobCostConfig
from jobcost_kernel.domain.clock import Clock
from jobcost_kernel.domain.ledger import ZERO
from jobcost_kernel.exceptions import (
    DeletionNotAllowedError,
    DuplicateInvoiceError,
    InvoiceNotFoundError,
    JobCostError,
    UndoBlockedError,
    UndoNotFoundError,
    ValidationFailedError,
    VersionConflictError,
)
from jobcost_kernel.logging_config import LogContext, get_logger
from jobcost_kernel.models.activity import ActivityEntry
from jobcost_kernel.services.activity_service import ActivityRecorder
from jobcost_kernel.services.base import BaseService
from jobcost_kernel.services.event_buffer import publish_after_commit
from jobcost_kernel.services.lock_service import LockInfo, LockManager, LockStatus
from jobcost_kernel.services.undo_service import UndoStore
from jobcost_kernel.utils.hashing import to_json_safe
from jobcost_modules.draws.models import DrawFundingResult, is_funded
from jobcost_modules.draws.service import DrawService
from jobcost_modules.invoices.allocation import AllocationReconciler
from jobcost_modules.invoices.duplicates import DuplicateDetector
from jobcost_modules.invoices.models import (
    AllocationInput,
    AllocationResult,
    BulkTransitionResult,
    CreateInvoiceRequest,
    CreateInvoiceResult,
    Invoice,
    InvoiceFamily,
    InvoiceStatus,
    PaymentRequest,
    ReviewFlag,
    SplitGroup,
    SplitResult,
    TransitionRequest,
    TransitionResult,
    UndoResult,
    UnsplitResult,
    invoice_type_for,
    normalize_status,
)
from jobcost_modules.invoices.orm import InvoiceModel, StampJobModel
from jobcost_modules.invoices.snapshots import (
    allocation_inputs,
    restore_fields,
    snapshot_draw_id,
    snapshot_invoice,
)
from jobcost_modules.invoices.split import SplitManager
from jobcost_modules.invoices.validation import InvoiceValidator, RequirementReport
from jobcost_modules.invoices.workflows import ALLOCATABLE_STATUSES, COMMITTED_STATUSES
from jobcost_modules.purchasing.models import POCapacity

logger = get_logger("modules.invoices.service")

ENTITY_TYPE = "invoice"


class InvoiceLifecycleService(BaseService):
    """Invoice lifecycle orchestration.

    Contract:
        Receives a Session, an optional Clock and an optional
        ``JobCostConfig``.  Constructs its collaborators once and shares
        the Session and Clock with all of them.

    Guarantees:
        - Results are frozen DTOs; ORM rows never leave this class.
        - A failed operation leaves no partial writes behind (SAVEPOINT).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: JobCostConfig | None = None,
    ):
        super().__init__(session, clock)
        self.config = config or JobCostConfig()
        self.validator = InvoiceValidator(session, self.clock, self.config)
        self.allocations = AllocationReconciler(session, self.clock)
        self.duplicates = DuplicateDetector(session, self.clock, self.config)
        self.draws = DrawService(session, self.clock, self.config)
        self.splits = SplitManager(session, self.clock, self.config)
        self.activity = ActivityRecorder(session, self.clock)
        self.locks = LockManager(session, self.clock, lock_seconds=self.config.locks.duration_seconds)
        self.undo_store = UndoStore(session, self.clock, window_seconds=self.config.undo.window_seconds)

    # =========================================================================
    # Reads
    # =========================================================================

    def _load(self, invoice_id: UUID, include_deleted: bool = False) -> InvoiceModel:
        invoice = self.session.get(InvoiceModel, invoice_id)
        if invoice is None or (invoice.is_deleted and not include_deleted):
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    def get_invoice(self, invoice_id: UUID) -> Invoice:
        return self._load(invoice_id).to_dto()

    def get_po_capacity(self, po_id: UUID) -> POCapacity:
        return self.validator.po_capacity(po_id)

    def history(self, invoice_id: UUID) -> list[ActivityEntry]:
        return self.activity.history(ENTITY_TYPE, invoice_id)

    def family(self, invoice_id: UUID) -> InvoiceFamily:
        parent, children = self.splits.family(self._load(invoice_id))
        return InvoiceFamily(parent=parent.to_dto(), children=tuple(c.to_dto() for c in children))

    # =========================================================================
    # Locks
    # =========================================================================

    def acquire_lock(self, invoice_id: UUID, actor: str) -> LockInfo:
        self._load(invoice_id)
        return self.locks.acquire(ENTITY_TYPE, invoice_id, actor)

    def release_lock(self, lock_id: UUID, actor: str) -> None:
        self.locks.release(lock_id, actor)

    def check_lock(self, invoice_id: UUID) -> LockStatus:
        return self.locks.check(ENTITY_TYPE, invoice_id)

    # =========================================================================
    # Shared mutation plumbing
    # =========================================================================

    def _gate(self, invoice: InvoiceModel, actor: str, expected_version: int | None = None) -> None:
        if expected_version is not None and expected_version != invoice.version:
            raise VersionConflictError(ENTITY_TYPE, invoice.id, expected_version, invoice.version)
        if self.config.locks.enforce_on_mutation:
            self.locks.ensure_editable(ENTITY_TYPE, invoice.id, actor)

    def _touch(self, invoice: InvoiceModel, actor: str) -> None:
        invoice.version += 1
        invoice.updated_by = actor

    def _draw_id(self, invoice: InvoiceModel) -> UUID | None:
        membership = self.draws.membership(invoice.id)
        return membership.draw_id if membership is not None else None

    def _capture(self, invoice: InvoiceModel, target_state: str, actor: str, extra: dict | None = None) -> None:
        state = snapshot_invoice(invoice, self._draw_id(invoice))
        if extra:
            state.update(to_json_safe(extra))
        self.undo_store.capture(ENTITY_TYPE, invoice.id, target_state, state, actor)

    def _enqueue_stamp(self, invoice: InvoiceModel, reason: str, actor: str) -> None:
        if not invoice.document_url:
            return
        payload = to_json_safe({
            "invoice_number": invoice.invoice_number,
            "amount": invoice.amount,
            "status": reason,
            "document_url": invoice.document_url,
            "approved_by": invoice.approved_by,
            "approved_at": invoice.approved_at,
            "paid_amount": invoice.paid_amount,
            "job_id": invoice.job_id,
            "vendor_id": invoice.vendor_id,
            "draw_id": self._draw_id(invoice),
        })
        self.session.add(
            StampJobModel(
                invoice_id=invoice.id,
                reason=reason,
                payload=payload,
                status="pending",
                attempts=0,
                max_attempts=self.config.stamping.max_attempts,
                created_by=actor,
            )
        )
        self.session.flush()
        logger.debug("stamp_job_enqueued", extra={"invoice_id": str(invoice.id), "reason": reason})

    def _set_partial_flag(self, invoice: InvoiceModel, is_partial: bool) -> None:
        if is_partial:
            invoice.add_flag(ReviewFlag.PARTIALLY_ALLOCATED.value)
        else:
            invoice.remove_flag(ReviewFlag.PARTIALLY_ALLOCATED.value)

    def _publish(self, event_name: str, invoice: InvoiceModel, **payload) -> None:
        publish_after_commit(
            self.session,
            event_name,
            {"invoice_id": invoice.id, "status": invoice.status, "version": invoice.version, **payload},
        )

    # =========================================================================
    # Creation
    # =========================================================================

    def create_invoice(self, request: CreateInvoiceRequest) -> CreateInvoiceResult:
        """
        Validate, check for duplicates and insert a ``needs_review`` invoice.

        Raises:
            ValidationFailedError: field rules failed.
            DuplicateInvoiceError: a match at or above the duplicate
                threshold exists and ``allow_duplicate`` is not set.
        """
        warnings = self.validator.validate_new_invoice(request)
        check = self.duplicates.check(
            vendor_id=request.vendor_id,
            invoice_number=request.invoice_number,
            amount=request.amount,
            invoice_date=request.invoice_date,
            content_hash=request.content_hash,
            job_id=request.job_id,
        )
        if (
            check.is_duplicate
            and self.config.duplicates.block_duplicates
            and not request.allow_duplicate
        ):
            best = check.best
            logger.info(
                "duplicate_invoice_blocked",
                extra={"existing_invoice_id": str(best.invoice_id), "confidence": best.confidence},
            )
            raise DuplicateInvoiceError(
                best.invoice_id,
                best.confidence,
                [to_json_safe(asdict(m)) for m in check.matches],
            )

        amount = request.amount if request.amount is not None else ZERO
        flags = list(request.review_flags)
        if check.is_likely_duplicate and ReviewFlag.LIKELY_DUPLICATE.value not in flags:
            flags.append(ReviewFlag.LIKELY_DUPLICATE.value)
            warnings.append("likely_duplicate")

        with self.session.begin_nested():
            invoice = InvoiceModel(
                invoice_number=request.invoice_number,
                amount=amount,
                invoice_type=invoice_type_for(amount).value,
                status=InvoiceStatus.NEEDS_REVIEW.value,
                version=1,
                invoice_date=request.invoice_date,
                due_date=request.due_date,
                vendor_id=request.vendor_id,
                job_id=request.job_id,
                po_id=request.po_id,
                notes=request.notes,
                document_url=request.document_url,
                review_flags=flags,
                extraction=request.extraction,
                created_by=request.actor,
            )
            self.session.add(invoice)
            self.session.flush()
            if request.content_hash:
                self.duplicates.register_hash(invoice.id, request.content_hash, request.actor)
            self.activity.record(
                ENTITY_TYPE,
                invoice.id,
                "created",
                request.actor,
                {"amount": amount, "invoice_number": request.invoice_number, "flags": flags},
            )

        logger.info(
            "invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_type": invoice.invoice_type,
                "amount": amount,
                "duplicate_matches": len(check.matches),
            },
        )
        self._publish("invoice_created", invoice)
        return CreateInvoiceResult(
            invoice=invoice.to_dto(),
            duplicate_check=check,
            warnings=tuple(warnings),
        )

    # =========================================================================
    # Allocation
    # =========================================================================

    def allocate(
        self,
        invoice_id: UUID,
        allocations: Sequence[AllocationInput],
        actor: str,
        expected_version: int | None = None,
        override_po_overage: bool = False,
    ) -> AllocationResult:
        """
        Replace the invoice's allocation set.

        An approved invoice's new coding is held to PO capacity the same
        way approval is.
        """
        invoice = self._load(invoice_id)
        status = normalize_status(invoice.status)
        if status not in ALLOCATABLE_STATUSES:
            raise ValidationFailedError([{
                "field": "status",
                "message": f"Allocations cannot be changed while the invoice is {status.value}",
            }])
        self._gate(invoice, actor, expected_version)
        inputs = list(allocations)
        balance = self.validator.validate_allocations(invoice, inputs)
        overridden: list[POCapacity] = []
        if status is InvoiceStatus.APPROVED:
            overridden = self.validator.check_po_capacity(invoice, inputs, override_po_overage)

        with self.session.begin_nested():
            self._capture(invoice, "allocated", actor)
            self.allocations.replace(invoice, inputs, actor)
            self._set_partial_flag(invoice, bool(inputs) and balance.is_partial)
            self._touch(invoice, actor)
            self.activity.record(
                ENTITY_TYPE,
                invoice.id,
                "allocated",
                actor,
                {"allocation_count": len(inputs), "allocated": balance.allocated},
            )
            self._record_overrides(invoice, overridden, actor)

        logger.info(
            "invoice_allocated",
            extra={
                "invoice_id": str(invoice.id),
                "allocation_count": len(inputs),
                "is_partial": balance.is_partial,
            },
        )
        self._publish("invoice_allocated", invoice)
        return AllocationResult(
            invoice=invoice.to_dto(),
            is_partial=bool(inputs) and balance.is_partial,
            unallocated=balance.unallocated,
        )

    def _record_overrides(self, invoice: InvoiceModel, overridden: Sequence[POCapacity], actor: str) -> None:
        for capacity in overridden:
            logger.warning(
                "po_overage_overridden",
                extra={
                    "invoice_id": str(invoice.id),
                    "po_id": str(capacity.po_id),
                    "po_total": capacity.total_amount,
                    "billed": capacity.billed,
                    "actor": actor,
                },
            )
            self.activity.record(
                ENTITY_TYPE,
                invoice.id,
                "po_overage_overridden",
                actor,
                {"po_id": capacity.po_id, "po_total": capacity.total_amount, "billed": capacity.billed},
            )

    # =========================================================================
    # Transitions
    # =========================================================================

    def transition(self, invoice_id: UUID, request: TransitionRequest) -> TransitionResult:
        """
        Move an invoice to ``request.target_status``.

        Order: table check, gate, allocation validation, requirement
        checks (hard first, then PO capacity), then one SAVEPOINT with the
        snapshot, coding replacement, side effects and status write.
        """
        invoice = self._load(invoice_id)
        current = normalize_status(invoice.status)
        target = normalize_status(request.target_status)
        actor = request.actor
        transition = self.validator.check_transition(current, target)

        if target is InvoiceStatus.SPLIT:
            raise ValidationFailedError([{
                "field": "status",
                "message": "Splitting needs split groups; use split()",
            }])
        if target is InvoiceStatus.DELETED:
            deleted = self.delete_invoice(invoice_id, actor, request.expected_version)
            return TransitionResult(invoice=deleted, previous_status=current)

        self._gate(invoice, actor, request.expected_version)

        submitted = list(request.allocations) if request.allocations is not None else None
        if submitted is not None:
            if current not in ALLOCATABLE_STATUSES:
                raise ValidationFailedError([{
                    "field": "allocations",
                    "message": f"Allocations cannot be changed while the invoice is {current.value}",
                }])
            self.validator.validate_allocations(invoice, submitted)
        if target is InvoiceStatus.DENIED and not (request.denial_reason or "").strip():
            raise ValidationFailedError([{"field": "denial_reason", "message": "is required"}])

        report = self.validator.check_requirements(
            invoice,
            transition,
            allocations=submitted,
            draw_id=request.draw_id,
            override_po_overage=request.override_po_overage,
        )
        overridden = list(report.overridden)
        if submitted is not None and current in COMMITTED_STATUSES:
            # Recoding a committed invoice on its way out of approved.
            overridden += self.validator.check_po_capacity(
                invoice, submitted, request.override_po_overage
            )
        warnings = report.warnings
        if overridden and "po_overage_overridden" not in warnings:
            warnings = ("po_overage_overridden",) + warnings

        with LogContext.bind(entity_type=ENTITY_TYPE, entity_id=str(invoice.id), actor=actor):
            with self.session.begin_nested():
                self._capture(invoice, target.value, actor)
                if submitted is not None:
                    self.allocations.replace(invoice, submitted, actor)
                self._leave(invoice, current, target, actor)
                self._enter(invoice, target, request, report)
                invoice.status = target.value
                self._touch(invoice, actor)
                self.activity.record(
                    ENTITY_TYPE,
                    invoice.id,
                    "status_changed",
                    actor,
                    {
                        "from": current.value,
                        "to": target.value,
                        "action": transition.action,
                        "note": request.note,
                        "warnings": list(warnings),
                    },
                )
                self._record_overrides(invoice, overridden, actor)

            logger.info(
                "invoice_transitioned",
                extra={
                    "invoice_id": str(invoice.id),
                    "from_status": current.value,
                    "to_status": target.value,
                    "version": invoice.version,
                    "is_partial": report.is_partial,
                },
            )

        self.splits.reconcile_parent(invoice.parent_invoice_id, actor)
        self._publish("invoice_status_changed", invoice, previous_status=current.value)
        return TransitionResult(
            invoice=invoice.to_dto(),
            previous_status=current,
            is_partial=report.is_partial,
            warnings=warnings,
        )

    def _leave(self, invoice: InvoiceModel, current: InvoiceStatus, target: InvoiceStatus, actor: str) -> None:
        if current is InvoiceStatus.APPROVED and target in (
            InvoiceStatus.READY_FOR_APPROVAL,
            InvoiceStatus.NEEDS_REVIEW,
        ):
            invoice.approved_at = None
            invoice.approved_by = None
        elif current is InvoiceStatus.IN_DRAW and target is InvoiceStatus.APPROVED:
            self.draws.detach_invoice(invoice.id, actor)
        elif current is InvoiceStatus.DENIED:
            invoice.denied_at = None
            invoice.denied_by = None
            invoice.denial_reason = None

    def _enter(
        self,
        invoice: InvoiceModel,
        target: InvoiceStatus,
        request: TransitionRequest,
        report: RequirementReport,
    ) -> None:
        actor = request.actor
        if target is InvoiceStatus.APPROVED:
            invoice.approved_at = self.clock.now()
            invoice.approved_by = actor
            self.allocations.inherit_change_order(invoice, actor)
            self._set_partial_flag(invoice, report.is_partial)
            self._enqueue_stamp(invoice, "approved", actor)
        elif target is InvoiceStatus.DENIED:
            invoice.denied_at = self.clock.now()
            invoice.denied_by = actor
            invoice.denial_reason = request.denial_reason.strip()
        elif target is InvoiceStatus.IN_DRAW:
            self.draws.attach_invoice(request.draw_id, invoice, actor)
        elif target is InvoiceStatus.PAID:
            invoice.paid_amount = invoice.amount
            self.draws.record_payment(invoice.id, actor)
            self._enqueue_stamp(invoice, "paid", actor)

    def bulk_transition(self, invoice_ids: Sequence[UUID], request: TransitionRequest) -> BulkTransitionResult:
        """
        Apply one transition to many invoices, each in its own SAVEPOINT.

        ``expected_version`` does not apply to a batch and is ignored.
        """
        single = replace(request, expected_version=None)
        succeeded: list[UUID] = []
        failed: dict[UUID, dict] = {}
        for invoice_id in invoice_ids:
            try:
                with self.session.begin_nested():
                    self.transition(invoice_id, single)
                succeeded.append(invoice_id)
            except JobCostError as exc:
                failed[invoice_id] = exc.to_dict()
                logger.info(
                    "bulk_transition_item_failed",
                    extra={"invoice_id": str(invoice_id), "error_code": exc.code},
                )
        logger.info(
            "bulk_transition_completed",
            extra={
                "target_status": normalize_status(request.target_status).value,
                "succeeded": len(succeeded),
                "failed": len(failed),
            },
        )
        return BulkTransitionResult(succeeded=tuple(succeeded), failed=failed)

    # =========================================================================
    # Deletion
    # =========================================================================

    def delete_invoice(self, invoice_id: UUID, actor: str, expected_version: int | None = None) -> Invoice:
        """
        Soft-delete an invoice, reversing its counters and draw billing.

        Raises:
            DeletionNotAllowedError: paid, split parent, or in a funded draw.
        """
        invoice = self._load(invoice_id)
        status = normalize_status(invoice.status)
        if status is InvoiceStatus.PAID:
            raise DeletionNotAllowedError(invoice.id, "Paid invoices cannot be deleted")
        if invoice.is_split_parent:
            raise DeletionNotAllowedError(invoice.id, "Unsplit the invoice before deleting it")
        membership = self.draws.membership(invoice.id)
        if membership is not None and is_funded(membership.draw.status):
            raise DeletionNotAllowedError(invoice.id, "Cannot delete an invoice in a funded draw")
        self._gate(invoice, actor, expected_version)

        with self.session.begin_nested():
            self._capture(invoice, InvoiceStatus.DELETED.value, actor)
            if membership is not None:
                self.draws.detach_invoice(invoice.id, actor)
            self.allocations.replace(invoice, [], actor)
            invoice.deleted_at = self.clock.now()
            self._touch(invoice, actor)
            self.activity.record(ENTITY_TYPE, invoice.id, "deleted", actor, {"status": invoice.status})

        logger.info("invoice_deleted", extra={"invoice_id": str(invoice.id), "status": invoice.status})
        self.splits.reconcile_parent(invoice.parent_invoice_id, actor)
        self._publish("invoice_deleted", invoice)
        return invoice.to_dto()

    # =========================================================================
    # Split / unsplit
    # =========================================================================

    def split(
        self,
        invoice_id: UUID,
        groups: Sequence[SplitGroup],
        actor: str,
        expected_version: int | None = None,
    ) -> SplitResult:
        parent = self._load(invoice_id)
        self._gate(parent, actor, expected_version)
        with self.session.begin_nested():
            self._capture(parent, InvoiceStatus.SPLIT.value, actor)
            children = self.splits.split(parent, groups, actor)
            self._touch(parent, actor)
            self.activity.record(
                ENTITY_TYPE,
                parent.id,
                "split",
                actor,
                {"child_count": len(children), "child_ids": [c.id for c in children]},
            )
        self._publish("invoice_split", parent, child_ids=[str(c.id) for c in children])
        return SplitResult(parent=parent.to_dto(), children=tuple(c.to_dto() for c in children))

    def unsplit(self, invoice_id: UUID, actor: str, expected_version: int | None = None) -> UnsplitResult:
        parent = self._load(invoice_id)
        self._gate(parent, actor, expected_version)
        with self.session.begin_nested():
            children = self.splits.children(parent.id)
            self._capture(
                parent,
                "unsplit",
                actor,
                {"children": [{"id": c.id, **snapshot_invoice(c)} for c in children]},
            )
            deleted = self.splits.unsplit(parent, actor)
            self._touch(parent, actor)
            self.activity.record(ENTITY_TYPE, parent.id, "unsplit", actor, {"deleted_child_count": len(deleted)})
        self._publish("invoice_unsplit", parent, deleted_children=[str(c.id) for c in deleted])
        return UnsplitResult(parent=parent.to_dto(), deleted_child_count=len(deleted))

    # =========================================================================
    # Undo
    # =========================================================================

    def undo(self, entity_type: str, entity_id: UUID, actor: str) -> UndoResult:
        """
        Restore an invoice from its latest undo snapshot.

        Compensation covers draw membership, budget billed and paid totals,
        the allocation set (and so the PO/CO counters) and split children.

        Raises:
            UndoNotFoundError / UndoExpiredError from the store.
            UnsplitBlockedError when undoing a split whose children have
            been committed since.
            UndoBlockedError when restoring a split child whose parent has
            been unsplit since.
        """
        if entity_type != ENTITY_TYPE:
            raise UndoNotFoundError(entity_type, entity_id)
        invoice = self._load(entity_id, include_deleted=True)
        if self.config.locks.enforce_on_mutation:
            self.locks.ensure_editable(ENTITY_TYPE, invoice.id, actor)

        with self.session.begin_nested():
            snapshot = self.undo_store.consume(ENTITY_TYPE, invoice.id)
            state = snapshot.snapshot
            undone = snapshot.target_state
            self._compensate(invoice, state, undone, actor)
            self._touch(invoice, actor)
            self.activity.record(
                ENTITY_TYPE,
                invoice.id,
                "undone",
                actor,
                {"undone_state": undone, "restored_status": invoice.status},
            )

        logger.info(
            "invoice_undone",
            extra={"invoice_id": str(invoice.id), "undone_state": undone, "status": invoice.status},
        )
        self.splits.reconcile_parent(invoice.parent_invoice_id, actor)
        self._publish("invoice_undone", invoice, undone_state=undone)
        return UndoResult(
            entity_type=ENTITY_TYPE,
            entity_id=invoice.id,
            undone_state=undone,
            invoice=invoice.to_dto(),
        )

    def _reopen_split_parent(self, child: InvoiceModel, actor: str) -> None:
        """A split child coming back to life needs its parent still split."""
        parent = self.session.get(InvoiceModel, child.parent_invoice_id)
        if parent is None or parent.is_deleted or not parent.is_split_parent:
            raise UndoBlockedError(ENTITY_TYPE, child.id, "its split parent has been unsplit")
        if normalize_status(parent.status) is InvoiceStatus.RECONCILED:
            parent.status = InvoiceStatus.SPLIT.value
            self._touch(parent, actor)
            self.activity.record(ENTITY_TYPE, parent.id, "split_reopened", actor, {"child_id": child.id})
            logger.info("split_parent_reopened", extra={"invoice_id": str(parent.id), "child_id": str(child.id)})

    def _compensate(self, invoice: InvoiceModel, state: dict, undone: str, actor: str) -> None:
        if invoice.parent_invoice_id is not None and state.get("deleted_at") is None:
            self._reopen_split_parent(invoice, actor)

        if undone == InvoiceStatus.SPLIT.value and invoice.is_split_parent:
            self.splits.unsplit(invoice, actor)

        current = normalize_status(invoice.status)
        prior = normalize_status(state["status"])
        if current is InvoiceStatus.PAID and prior is not InvoiceStatus.PAID:
            self.draws.reverse_payment(invoice.id, actor)

        prior_draw = snapshot_draw_id(state)
        current_draw = self._draw_id(invoice)
        if current_draw is not None and current_draw != prior_draw:
            self.draws.detach_invoice(invoice.id, actor)
            current_draw = None

        restore_fields(invoice, state)
        self.allocations.replace(invoice, allocation_inputs(state), actor)

        if prior_draw is not None and current_draw is None:
            self.draws.attach_invoice(prior_draw, invoice, actor)

        for child_state in state.get("children", []):
            child = self.session.get(InvoiceModel, UUID(child_state["id"]))
            if child is None:
                continue
            restore_fields(child, child_state)
            self.allocations.replace(child, allocation_inputs(child_state), actor)
            self._touch(child, actor)
        self.session.flush()

    # =========================================================================
    # Vendor payment marks
    # =========================================================================

    def mark_paid_to_vendor(self, invoice_id: UUID, request: PaymentRequest) -> Invoice:
        invoice = self._load(invoice_id)
        if invoice.paid_to_vendor:
            raise ValidationFailedError([{
                "field": "paid_to_vendor",
                "message": "Invoice is already marked as paid to the vendor",
            }])
        self._gate(invoice, request.actor, request.expected_version)
        with self.session.begin_nested():
            self._capture(invoice, "paid_to_vendor", request.actor)
            invoice.paid_to_vendor = True
            invoice.paid_to_vendor_at = self.clock.now()
            invoice.paid_to_vendor_by = request.actor
            invoice.payment_method = request.method.value
            invoice.payment_reference = request.reference
            invoice.paid_to_vendor_on = request.paid_on or self.clock.today()
            self._touch(invoice, request.actor)
            self.activity.record(
                ENTITY_TYPE,
                invoice.id,
                "paid_to_vendor",
                request.actor,
                {
                    "payment_method": request.method.value,
                    "payment_reference": request.reference,
                    "payment_date": invoice.paid_to_vendor_on,
                },
            )
        logger.info(
            "invoice_paid_to_vendor",
            extra={"invoice_id": str(invoice.id), "payment_method": request.method.value},
        )
        self._publish("invoice_paid_to_vendor", invoice)
        return invoice.to_dto()

    def unmark_paid_to_vendor(self, invoice_id: UUID, actor: str, expected_version: int | None = None) -> Invoice:
        invoice = self._load(invoice_id)
        if not invoice.paid_to_vendor:
            raise ValidationFailedError([{
                "field": "paid_to_vendor",
                "message": "Invoice is not marked as paid to the vendor",
            }])
        self._gate(invoice, actor, expected_version)
        with self.session.begin_nested():
            self._capture(invoice, "unpaid_to_vendor", actor)
            invoice.paid_to_vendor = False
            invoice.paid_to_vendor_at = None
            invoice.paid_to_vendor_by = None
            invoice.payment_method = None
            invoice.payment_reference = None
            invoice.paid_to_vendor_on = None
            self._touch(invoice, actor)
            self.activity.record(ENTITY_TYPE, invoice.id, "unpaid_to_vendor", actor)
        self._publish("invoice_unpaid_to_vendor", invoice)
        return invoice.to_dto()

    # =========================================================================
    # Draw funding
    # =========================================================================

    def fund_draw(self, draw_id: UUID, funded_amount: Decimal | None, actor: str) -> DrawFundingResult:
        """
        Fund a submitted draw and move each member ``in_draw`` invoice to
        ``paid``, one SAVEPOINT per invoice.  Invoices that fail are
        reported, not raised.
        """
        draw = self.draws.fund(draw_id, funded_amount, actor)
        member_ids = [m.invoice_id for m in draw.members]
        in_draw = self.session.scalars(
            select(InvoiceModel.id).where(
                InvoiceModel.id.in_(member_ids),
                InvoiceModel.status == InvoiceStatus.IN_DRAW.value,
                InvoiceModel.deleted_at.is_(None),
            )
        ).all() if member_ids else []

        paid: list[UUID] = []
        failed: dict[UUID, dict] = {}
        for invoice_id in in_draw:
            try:
                with self.session.begin_nested():
                    self.transition(invoice_id, TransitionRequest(InvoiceStatus.PAID, actor))
                paid.append(invoice_id)
            except JobCostError as exc:
                failed[invoice_id] = exc.to_dict()
                logger.warning(
                    "draw_invoice_payment_failed",
                    extra={"draw_id": str(draw.id), "invoice_id": str(invoice_id), "error_code": exc.code},
                )
        publish_after_commit(
            self.session,
            "draw_funded",
            {"draw_id": draw.id, "status": draw.status, "paid_invoice_ids": paid},
        )
        return DrawFundingResult(draw=draw.to_dto(), paid_invoice_ids=tuple(paid), failed=failed)
