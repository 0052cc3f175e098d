"""
Module ORM Registry (``jobcost_modules._orm_registry``).

Responsibility
--------------
Import every SQLAlchemy ORM module so that ``Base.metadata`` holds all
table definitions before ``create_tables()`` runs.

Architecture position
---------------------
**Modules layer** -- utility.  Called lazily by
``jobcost_kernel.db.engine.create_tables``; MUST NOT be imported at
module level by ``jobcost_kernel``.
"""


def import_all_orm_models() -> None:
    """Import kernel models, then each ``jobcost_modules.*.orm``.  Idempotent."""
    # Kernel tables first (locks, undo snapshots, activity log)
    import jobcost_kernel.models  # noqa: F401
    # fmt: off
    import jobcost_modules.jobs.orm  # noqa: F401
    import jobcost_modules.purchasing.orm  # noqa: F401
    import jobcost_modules.invoices.orm  # noqa: F401
    import jobcost_modules.draws.orm  # noqa: F401
    # fmt: on
