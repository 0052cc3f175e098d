"""
Module: jobcost_kernel.models.undo_snapshot
Responsibility: ORM persistence for short-lived, single-use undo snapshots.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - ``snapshot`` holds JSON-safe pre-mutation state only.
    - A snapshot is usable once: ``consumed_at`` is set on use or when a
      newer snapshot supersedes it.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from jobcost_kernel.db.base import Base, UUIDString


class UndoSnapshot(Base):
    """Pre-mutation copy of an entity, valid until ``expires_at``."""

    __tablename__ = "undo_snapshots"

    __table_args__ = (
        Index("idx_undo_snapshots_entity", "entity_type", "entity_id"),
        Index("idx_undo_snapshots_actor", "performed_by"),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    # Status or action the mutation moved the entity to (e.g. "approved", "deleted")
    target_state: Mapped[str] = mapped_column(String(50), nullable=False)
    snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
    performed_by: Mapped[str] = mapped_column(String(100), nullable=False)
    captured_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    consumed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<UndoSnapshot {self.entity_type}:{self.entity_id} -> {self.target_state}>"

    @property
    def is_consumed(self) -> bool:
        return self.consumed_at is not None
