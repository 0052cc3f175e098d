"""
BaseService -- abstract base for every service.

Services receive the caller's SQLAlchemy ``Session`` and a ``Clock``.
They ``flush()`` and never ``commit()`` or ``rollback()`` the outer
transaction; multi-step operations that must be all-or-nothing run inside
``session.begin_nested()``.
"""

from abc import ABC

from sqlalchemy.orm import Session

from jobcost_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
