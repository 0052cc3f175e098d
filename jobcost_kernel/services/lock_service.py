"""
LockManager -- advisory, time-boxed edit locks keyed by (entity type, id).

Responsibility:
    Lets one actor at a time claim an entity for editing.  Locks expire a
    fixed duration after the last acquisition; re-acquisition by the owner
    refreshes the expiry instead of failing.

Architecture position:
    Kernel > Services.  Used by edit entry points and, as a gate, by the
    invoice lifecycle service.

Invariants enforced:
    - One lock per entity (database unique constraint).  When two callers
      race to create the same lock, the loser observes the winner's lock.
    - Expired locks are swept at the start of every acquire and check.
    - Only the owner may release; ``force_release`` is the logged
      administrative override.

Failure modes:
    - EntityLockedError: another owner holds a live lock.
    - LockNotFoundError / LockOwnershipError on release misuse.

Non-goals:
    Locks are advisory.  They do not survive as guarantees across process
    crashes and callers that skip them can still race.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from jobcost_kernel.domain.clock import Clock
from jobcost_kernel.exceptions import (
    EntityLockedError,
    LockNotFoundError,
    LockOwnershipError,
)
from jobcost_kernel.logging_config import get_logger
from jobcost_kernel.models.entity_lock import EntityLock
from jobcost_kernel.services.activity_service import ActivityRecorder
from jobcost_kernel.services.base import BaseService

logger = get_logger("services.locks")

DEFAULT_LOCK_SECONDS = 5 * 60


@dataclass(frozen=True)
class LockInfo:
    lock_id: UUID
    entity_type: str
    entity_id: UUID
    locked_by: str
    locked_at: datetime
    expires_at: datetime
    refreshed: bool = False

    @classmethod
    def from_model(cls, lock: EntityLock, refreshed: bool = False) -> LockInfo:
        return cls(
            lock_id=lock.id,
            entity_type=lock.entity_type,
            entity_id=lock.entity_id,
            locked_by=lock.locked_by,
            locked_at=lock.locked_at,
            expires_at=lock.expires_at,
            refreshed=refreshed,
        )


@dataclass(frozen=True)
class LockStatus:
    is_locked: bool
    lock: LockInfo | None = None
    remaining_seconds: float = 0.0


class LockManager(BaseService):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        lock_seconds: int = DEFAULT_LOCK_SECONDS,
    ):
        super().__init__(session, clock)
        if lock_seconds <= 0:
            raise ValueError("lock_seconds must be positive")
        self.lock_duration = timedelta(seconds=lock_seconds)
        self._activity = ActivityRecorder(session, self.clock)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _find(self, entity_type: str, entity_id: UUID) -> EntityLock | None:
        return self.session.scalars(
            select(EntityLock).where(
                EntityLock.entity_type == entity_type,
                EntityLock.entity_id == entity_id,
            )
        ).one_or_none()

    def sweep_expired(self) -> int:
        """Delete every expired lock.  Returns the number removed."""
        result = self.session.execute(
            delete(EntityLock)
            .where(EntityLock.expires_at <= self.clock.now())
            .execution_options(synchronize_session="fetch")
        )
        removed = result.rowcount or 0
        if removed:
            logger.debug("expired_locks_swept", extra={"count": removed})
        return removed

    def check(self, entity_type: str, entity_id: UUID) -> LockStatus:
        self.sweep_expired()
        lock = self._find(entity_type, entity_id)
        if lock is None:
            return LockStatus(is_locked=False)
        remaining = (lock.expires_at - self.clock.now()).total_seconds()
        return LockStatus(
            is_locked=True,
            lock=LockInfo.from_model(lock),
            remaining_seconds=max(remaining, 0.0),
        )

    def list_active(self) -> list[LockInfo]:
        self.sweep_expired()
        locks = self.session.scalars(
            select(EntityLock).order_by(EntityLock.locked_at)
        )
        return [LockInfo.from_model(lock) for lock in locks]

    def ensure_editable(self, entity_type: str, entity_id: UUID, actor: str) -> None:
        """Raise EntityLockedError when someone other than ``actor`` holds a live lock."""
        status = self.check(entity_type, entity_id)
        if status.is_locked and status.lock.locked_by != actor:
            raise EntityLockedError(
                entity_type, entity_id, status.lock.locked_by, status.lock.expires_at
            )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def acquire(self, entity_type: str, entity_id: UUID, actor: str) -> LockInfo:
        """
        Acquire or refresh the lock on an entity.

        Postconditions:
            ``expires_at`` is exactly the lock duration after now.

        Raises:
            EntityLockedError: another owner holds a live lock.
        """
        self.sweep_expired()
        now = self.clock.now()
        existing = self._find(entity_type, entity_id)

        if existing is not None:
            if existing.locked_by != actor:
                logger.info(
                    "lock_denied",
                    extra={
                        "entity_type": entity_type,
                        "entity_id": str(entity_id),
                        "requested_by": actor,
                        "locked_by": existing.locked_by,
                    },
                )
                raise EntityLockedError(
                    entity_type, entity_id, existing.locked_by, existing.expires_at
                )
            existing.locked_at = now
            existing.expires_at = now + self.lock_duration
            self.session.flush()
            logger.info(
                "lock_refreshed",
                extra={
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                    "locked_by": actor,
                    "expires_at": existing.expires_at,
                },
            )
            return LockInfo.from_model(existing, refreshed=True)

        lock = EntityLock(
            entity_type=entity_type,
            entity_id=entity_id,
            locked_by=actor,
            locked_at=now,
            expires_at=now + self.lock_duration,
        )
        try:
            with self.session.begin_nested():
                self.session.add(lock)
        except IntegrityError:
            # Lost the creation race: report whoever won.
            winner = self._find(entity_type, entity_id)
            if winner is None:
                raise
            if winner.locked_by == actor:
                return LockInfo.from_model(winner)
            logger.info(
                "lock_race_lost",
                extra={
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                    "requested_by": actor,
                    "locked_by": winner.locked_by,
                },
            )
            raise EntityLockedError(
                entity_type, entity_id, winner.locked_by, winner.expires_at
            ) from None

        logger.info(
            "lock_acquired",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "locked_by": actor,
                "expires_at": lock.expires_at,
            },
        )
        return LockInfo.from_model(lock)

    def release(self, lock_id: UUID, actor: str) -> None:
        lock = self.session.get(EntityLock, lock_id)
        if lock is None:
            raise LockNotFoundError(lock_id)
        if lock.locked_by != actor:
            raise LockOwnershipError(lock.id, lock.locked_by, actor)
        self.session.delete(lock)
        self.session.flush()
        logger.info(
            "lock_released",
            extra={
                "entity_type": lock.entity_type,
                "entity_id": str(lock.entity_id),
                "locked_by": actor,
            },
        )

    def release_entity(self, entity_type: str, entity_id: UUID, actor: str) -> bool:
        """Release the caller's lock on an entity.  No lock is not an error."""
        lock = self._find(entity_type, entity_id)
        if lock is None:
            return False
        self.release(lock.id, actor)
        return True

    def force_release(self, entity_type: str, entity_id: UUID, actor: str) -> bool:
        """Administrative override.  Returns whether a lock existed."""
        lock = self._find(entity_type, entity_id)
        if lock is None:
            return False
        previous_owner = lock.locked_by
        self.session.delete(lock)
        self.session.flush()
        self._activity.record(
            entity_type,
            entity_id,
            "lock_force_released",
            actor,
            {"previous_owner": previous_owner},
        )
        logger.warning(
            "lock_force_released",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "previous_owner": previous_owner,
                "released_by": actor,
            },
        )
        return True
