"""
SplitManager -- dividing one invoice across jobs, and putting it back.

Responsibility
--------------
* ``split``: validates the groups and creates one child invoice per group
  in ``needs_review``; the parent becomes a ``split`` parent holding its
  ``original_amount``.  The parent's allocations are cleared (their
  counters reversed); the children carry the money from here on.
* ``unsplit``: soft-deletes every live child and returns the parent to
  ``needs_review``, unless a child has been committed (approved, in a draw
  or paid).
* ``reconcile_parent``: after a child changes, settles the parent once all
  children are finished.  Best-effort: it logs and never raises.

Version bumps, activity, undo snapshots and lock checks for the parent are
the lifecycle service's job; this class does the structural work.
"""

from __future__ import annotations

from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from jobcost_config.schema import JobCostConfig
from jobcost_kernel.domain.clock import Clock
from jobcost_kernel.domain.ledger import ZERO, matches_polarity, polarity_of, split_sums_to, total
from jobcost_kernel.exceptions import (
    SplitNotAllowedError,
    UnsplitBlockedError,
    ValidationFailedError,
)
from jobcost_kernel.logging_config import get_logger
from jobcost_kernel.services.activity_service import ActivityRecorder
from jobcost_kernel.services.base import BaseService
from jobcost_modules.invoices.allocation import AllocationReconciler
from jobcost_modules.invoices.models import (
    InvoiceStatus,
    ReviewFlag,
    SplitGroup,
    invoice_type_for,
    normalize_status,
)
from jobcost_modules.invoices.orm import InvoiceModel
from jobcost_modules.invoices.workflows import (
    CHILD_FINAL_STATUSES,
    COMMITTED_STATUSES,
    SPLITTABLE_STATUSES,
)
from jobcost_modules.jobs.orm import JobModel

logger = get_logger("modules.invoices.split")


class SplitManager(BaseService):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: JobCostConfig | None = None,
    ):
        super().__init__(session, clock)
        self.config = config or JobCostConfig()
        self.allocations = AllocationReconciler(session, self.clock)
        self.activity = ActivityRecorder(session, self.clock)

    def children(self, parent_id: UUID, include_deleted: bool = False) -> list[InvoiceModel]:
        stmt = select(InvoiceModel).where(InvoiceModel.parent_invoice_id == parent_id)
        if not include_deleted:
            stmt = stmt.where(InvoiceModel.deleted_at.is_(None))
        return list(self.session.scalars(stmt.order_by(InvoiceModel.split_index)))

    # ------------------------------------------------------------------
    # Split
    # ------------------------------------------------------------------

    def _check_groups(self, parent: InvoiceModel, groups: Sequence[SplitGroup]) -> None:
        if len(groups) < 2:
            raise SplitNotAllowedError(parent.id, "At least 2 splits required")
        if parent.is_split_parent or parent.parent_invoice_id is not None:
            raise SplitNotAllowedError(parent.id, "Invoice is already part of a split")
        status = normalize_status(parent.status)
        if status not in SPLITTABLE_STATUSES:
            raise SplitNotAllowedError(parent.id, f"Cannot split invoice in {status.value} status")

        polarity = polarity_of(parent.amount)
        errors: list[dict[str, str]] = []
        for i, group in enumerate(groups):
            if group.amount == ZERO:
                errors.append({"field": f"groups[{i}].amount", "message": "cannot be zero"})
            elif not matches_polarity(group.amount, polarity):
                errors.append({
                    "field": f"groups[{i}].amount",
                    "message": "must have the same sign as the invoice amount",
                })
            if group.job_id is not None and self.session.get(JobModel, group.job_id) is None:
                errors.append({"field": f"groups[{i}].job_id", "message": "does not exist"})
        if not split_sums_to(parent.amount, [g.amount for g in groups], self.config.ledger.tolerance):
            errors.append({
                "field": "groups",
                "message": (
                    f"Split amounts ({total(g.amount for g in groups)}) must equal "
                    f"original amount ({parent.amount})"
                ),
            })
        if errors:
            raise ValidationFailedError(errors)

    def split(self, parent: InvoiceModel, groups: Sequence[SplitGroup], actor: str) -> list[InvoiceModel]:
        self._check_groups(parent, groups)
        base_number = parent.invoice_number or "INV"
        count = len(groups)
        children: list[InvoiceModel] = []

        for index, group in enumerate(groups, start=1):
            flags = [ReviewFlag.SPLIT_CHILD.value]
            if group.job_id is None:
                flags.append(ReviewFlag.NO_JOB.value)
            child = InvoiceModel(
                invoice_number=f"{base_number}-{index}",
                amount=group.amount,
                invoice_type=invoice_type_for(group.amount).value,
                status=InvoiceStatus.NEEDS_REVIEW.value,
                version=1,
                invoice_date=parent.invoice_date,
                due_date=parent.due_date,
                vendor_id=parent.vendor_id,
                job_id=group.job_id,
                po_id=parent.po_id,
                parent_invoice_id=parent.id,
                split_index=index,
                original_amount=group.amount,
                document_url=parent.document_url,
                notes=group.notes or f"Split {index} of {count} from {parent.invoice_number}",
                review_flags=flags,
                created_by=actor,
            )
            self.session.add(child)
            children.append(child)
        self.session.flush()

        for child in children:
            self.activity.record(
                "invoice",
                child.id,
                "created_from_split",
                actor,
                {"parent_invoice_id": parent.id, "split_index": child.split_index, "amount": child.amount},
            )

        self.allocations.replace(parent, [], actor)
        parent.is_split_parent = True
        parent.original_amount = parent.amount
        parent.status = InvoiceStatus.SPLIT.value
        parent.notes = f"Split into {count} invoices on {self.clock.today().isoformat()}"
        parent.updated_by = actor
        self.session.flush()

        logger.info(
            "invoice_split",
            extra={
                "invoice_id": str(parent.id),
                "child_count": count,
                "child_ids": [str(c.id) for c in children],
            },
        )
        return children

    # ------------------------------------------------------------------
    # Unsplit
    # ------------------------------------------------------------------

    def unsplit(self, parent: InvoiceModel, actor: str) -> list[InvoiceModel]:
        """Soft-delete the live children.  Returns the children deleted."""
        if not parent.is_split_parent:
            raise SplitNotAllowedError(parent.id, "Invoice is not a split parent")
        children = self.children(parent.id)
        blocking = [
            {"invoice_id": str(c.id), "invoice_number": c.invoice_number or "", "status": c.status}
            for c in children
            if normalize_status(c.status) in COMMITTED_STATUSES
        ]
        if blocking:
            raise UnsplitBlockedError(
                parent.id,
                blocking,
                f"Cannot unsplit: {len(blocking)} child invoice(s) have been approved",
            )

        now = self.clock.now()
        for child in children:
            self.allocations.replace(child, [], actor)
            child.deleted_at = now
            child.updated_by = actor
            child.version += 1
        parent.is_split_parent = False
        parent.status = InvoiceStatus.NEEDS_REVIEW.value
        parent.updated_by = actor
        self.session.flush()

        logger.info(
            "invoice_unsplit",
            extra={"invoice_id": str(parent.id), "deleted_child_count": len(children)},
        )
        return children

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile_parent(self, parent_id: UUID | None, actor: str) -> InvoiceStatus | None:
        """
        Settle a split parent once its children are finished.

        Returns the parent's new status, or None when nothing changed.
        Never raises: a failure is logged and the parent left as it was.
        """
        if parent_id is None:
            return None
        try:
            with self.session.begin_nested():
                return self._reconcile(parent_id, actor)
        except Exception:
            logger.error(
                "split_reconciliation_failed",
                exc_info=True,
                extra={"invoice_id": str(parent_id)},
            )
            return None

    def _reconcile(self, parent_id: UUID, actor: str) -> InvoiceStatus | None:
        parent = self.session.get(InvoiceModel, parent_id)
        if parent is None or not parent.is_split_parent:
            return None
        if normalize_status(parent.status) is not InvoiceStatus.SPLIT:
            return None
        children = self.children(parent_id, include_deleted=True)
        if not children:
            return None

        live = [c for c in children if c.deleted_at is None]
        if any(normalize_status(c.status) not in CHILD_FINAL_STATUSES for c in live):
            return None

        if not live:
            parent.is_split_parent = False
            parent.status = InvoiceStatus.NEEDS_REVIEW.value
            parent.version += 1
            parent.updated_by = actor
            self.session.flush()
            self.activity.record("invoice", parent.id, "auto_unsplit", actor, {"deleted_child_count": len(children)})
            logger.info("split_parent_restored", extra={"invoice_id": str(parent.id)})
            return InvoiceStatus.NEEDS_REVIEW

        paid = sum(1 for c in live if normalize_status(c.status) is InvoiceStatus.PAID)
        denied = len(live) - paid
        deleted = len(children) - len(live)
        parent.status = InvoiceStatus.RECONCILED.value
        parent.notes = (
            f"Split reconciled on {self.clock.today().isoformat()}\n"
            f"Paid: {paid}, Denied: {denied}, Deleted: {deleted}"
        )
        parent.version += 1
        parent.updated_by = actor
        self.session.flush()
        counts = {"paid": paid, "denied": denied, "deleted": deleted}
        self.activity.record("invoice", parent.id, "split_reconciled", actor, counts)
        logger.info("split_parent_reconciled", extra={"invoice_id": str(parent.id), **counts})
        return InvoiceStatus.RECONCILED

    def family(self, invoice: InvoiceModel) -> tuple[InvoiceModel, list[InvoiceModel]]:
        """The split root of ``invoice`` and its live children."""
        root = invoice
        if invoice.parent_invoice_id is not None:
            root = self.session.get(InvoiceModel, invoice.parent_invoice_id) or invoice
        if not root.is_split_parent and root.id == invoice.id:
            return root, []
        return root, self.children(root.id)
