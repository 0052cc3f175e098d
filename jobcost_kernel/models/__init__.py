"""Kernel ORM models: locks, undo snapshots and the activity log."""

from jobcost_kernel.models.activity import ActivityEntry
from jobcost_kernel.models.entity_lock import EntityLock
from jobcost_kernel.models.undo_snapshot import UndoSnapshot

__all__ = ["ActivityEntry", "EntityLock", "UndoSnapshot"]
