"""
Module: jobcost_kernel.models.activity
Responsibility: Append-only activity log of every mutation performed
    through the core (transitions, allocations, splits, undo, overrides).
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from jobcost_kernel.db.base import Base, UUIDString


class ActivityEntry(Base):
    __tablename__ = "activity_log"

    __table_args__ = (
        Index("idx_activity_entity", "entity_type", "entity_id"),
        Index("idx_activity_action", "action"),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(100), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<ActivityEntry {self.action} on {self.entity_type}:{self.entity_id}>"
