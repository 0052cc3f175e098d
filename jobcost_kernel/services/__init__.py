"""Kernel services: locks, undo snapshots and the activity log."""

from jobcost_kernel.services.activity_service import ActivityRecorder
from jobcost_kernel.services.base import BaseService
from jobcost_kernel.services.lock_service import LockInfo, LockManager, LockStatus
from jobcost_kernel.services.undo_service import UndoStore

__all__ = [
    "ActivityRecorder",
    "BaseService",
    "LockInfo",
    "LockManager",
    "LockStatus",
    "UndoStore",
]
