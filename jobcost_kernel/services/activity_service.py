"""
ActivityRecorder -- append-only activity log for core mutations.

Every transition, allocation change, split, deletion, undo and PO override
is written here in the caller's transaction, so the trail commits or rolls
back together with the change it describes.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select

from jobcost_kernel.logging_config import get_logger
from jobcost_kernel.models.activity import ActivityEntry
from jobcost_kernel.services.base import BaseService
from jobcost_kernel.utils.hashing import to_json_safe

logger = get_logger("services.activity")


class ActivityRecorder(BaseService):
    def record(
        self,
        entity_type: str,
        entity_id: UUID,
        action: str,
        actor: str,
        details: dict[str, Any] | None = None,
    ) -> ActivityEntry:
        entry = ActivityEntry(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            performed_by=actor,
            occurred_at=self.clock.now(),
            details=to_json_safe(details) if details else None,
        )
        self.session.add(entry)
        self.session.flush()
        logger.debug(
            "activity_recorded",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action,
                "actor": actor,
            },
        )
        return entry

    def history(self, entity_type: str, entity_id: UUID) -> list[ActivityEntry]:
        """Entries for one entity, oldest first."""
        stmt = (
            select(ActivityEntry)
            .where(
                ActivityEntry.entity_type == entity_type,
                ActivityEntry.entity_id == entity_id,
            )
            .order_by(ActivityEntry.occurred_at, ActivityEntry.id)
        )
        return list(self.session.scalars(stmt))
