"""
UndoStore -- short-lived, single-use snapshots of pre-mutation state.

Responsibility:
    Captures an entity's state immediately before a mutating operation and
    hands it back exactly once, within a fixed window, so the owning module
    can restore it.  The store knows nothing about how to restore; it only
    keeps, expires and consumes snapshots.

Invariants enforced:
    - Only the newest snapshot of an entity is usable: capturing a new one
      consumes any earlier unconsumed snapshot of the same entity.
    - ``consume`` succeeds at most once per snapshot.
    - After the window, ``consume`` fails with UndoExpiredError (not
      UndoNotFoundError) so callers can say "too late" rather than
      "nothing to undo".
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from jobcost_kernel.domain.clock import Clock
from jobcost_kernel.exceptions import UndoExpiredError, UndoNotFoundError
from jobcost_kernel.logging_config import get_logger
from jobcost_kernel.models.undo_snapshot import UndoSnapshot
from jobcost_kernel.services.base import BaseService
from jobcost_kernel.utils.hashing import to_json_safe

logger = get_logger("services.undo")

DEFAULT_UNDO_SECONDS = 30


class UndoStore(BaseService):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        window_seconds: int = DEFAULT_UNDO_SECONDS,
    ):
        super().__init__(session, clock)
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.window = timedelta(seconds=window_seconds)

    def capture(
        self,
        entity_type: str,
        entity_id: UUID,
        target_state: str,
        state: dict[str, Any],
        actor: str,
    ) -> UndoSnapshot:
        now = self.clock.now()
        self.session.execute(
            update(UndoSnapshot)
            .where(
                UndoSnapshot.entity_type == entity_type,
                UndoSnapshot.entity_id == entity_id,
                UndoSnapshot.consumed_at.is_(None),
            )
            .values(consumed_at=now)
            .execution_options(synchronize_session="fetch")
        )
        snapshot = UndoSnapshot(
            entity_type=entity_type,
            entity_id=entity_id,
            target_state=target_state,
            snapshot=to_json_safe(state),
            performed_by=actor,
            captured_at=now,
            expires_at=now + self.window,
        )
        self.session.add(snapshot)
        self.session.flush()
        logger.debug(
            "undo_snapshot_captured",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "target_state": target_state,
                "expires_at": snapshot.expires_at,
            },
        )
        return snapshot

    def _latest_unconsumed(self, entity_type: str, entity_id: UUID) -> UndoSnapshot | None:
        stmt = (
            select(UndoSnapshot)
            .where(
                UndoSnapshot.entity_type == entity_type,
                UndoSnapshot.entity_id == entity_id,
                UndoSnapshot.consumed_at.is_(None),
            )
            .order_by(UndoSnapshot.captured_at.desc())
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    def available(self, entity_type: str, entity_id: UUID) -> UndoSnapshot | None:
        """The usable snapshot, or None when nothing is undoable right now."""
        snapshot = self._latest_unconsumed(entity_type, entity_id)
        if snapshot is None or snapshot.expires_at <= self.clock.now():
            return None
        return snapshot

    def consume(self, entity_type: str, entity_id: UUID) -> UndoSnapshot:
        """
        Mark the latest snapshot used and return it.

        Raises:
            UndoNotFoundError: no unconsumed snapshot exists.
            UndoExpiredError: the latest snapshot is past its window.
        """
        snapshot = self._latest_unconsumed(entity_type, entity_id)
        if snapshot is None:
            raise UndoNotFoundError(entity_type, entity_id)
        now = self.clock.now()
        if snapshot.expires_at <= now:
            raise UndoExpiredError(entity_type, entity_id, snapshot.expires_at)
        snapshot.consumed_at = now
        self.session.flush()
        logger.info(
            "undo_snapshot_consumed",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "target_state": snapshot.target_state,
            },
        )
        return snapshot

    def recent(self, actor: str, limit: int = 10) -> list[UndoSnapshot]:
        """Live snapshots captured by ``actor``, newest first."""
        stmt = (
            select(UndoSnapshot)
            .where(
                UndoSnapshot.performed_by == actor,
                UndoSnapshot.consumed_at.is_(None),
                UndoSnapshot.expires_at > self.clock.now(),
            )
            .order_by(UndoSnapshot.captured_at.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))
