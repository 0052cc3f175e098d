"""
Module: jobcost_kernel.models.entity_lock
Responsibility: ORM persistence for advisory, time-boxed edit locks.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one lock row per (entity_type, entity_id), enforced by a
      unique constraint so that concurrent creators collide in the database.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from jobcost_kernel.db.base import Base, UUIDString


class EntityLock(Base):
    """An exclusive editing claim on one entity until ``expires_at``."""

    __tablename__ = "entity_locks"

    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_entity_locks_entity"),
        Index("idx_entity_locks_expires", "expires_at"),
        Index("idx_entity_locks_owner", "locked_by"),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    locked_by: Mapped[str] = mapped_column(String(100), nullable=False)
    locked_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<EntityLock {self.entity_type}:{self.entity_id} by {self.locked_by}>"

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now
