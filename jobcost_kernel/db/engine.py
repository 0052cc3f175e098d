"""
Module: jobcost_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  The single point of database
    connection configuration for the whole system.
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from models/, services/, domain/, or outer layers (except
    create_tables, which pulls in every ORM module through the registry).

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED behind a pre-pinging QueuePool.
    - SQLite (tests, local tooling) runs with driver-level autocommit
      disabled and SQLAlchemy emitting BEGIN itself, so SAVEPOINTs nest
      correctly inside the caller's transaction.
    - Services never commit.  ``session_scope()`` owns commit/rollback.

Failure modes:
    - RuntimeError if get_engine/get_session is called
      before init_engine_from_url().
"""

import atexit
import os
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from jobcost_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///:memory:"

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _install_sqlite_savepoint_support(engine: Engine) -> None:
    """pysqlite transaction handling, as documented by SQLAlchemy."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_engine_from_url(
    database_url: str | None = None,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 5,
    pool_pre_ping: bool = True,
) -> Engine:
    """
    Initialize the engine.  ``database_url`` defaults to ``DATABASE_URL``
    from the environment, then to an in-memory SQLite database.

    A second call replaces the first engine.
    """
    global _engine, _SessionFactory

    url = database_url or os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)

    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/").endswith("sqlite:"):
            kwargs["poolclass"] = StaticPool
        _engine = create_engine(url, echo=echo, **kwargs)
        _install_sqlite_savepoint_support(_engine)
    else:
        _engine = create_engine(
            url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            isolation_level="READ COMMITTED",
        )

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo},
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Commits on normal exit; rolls back, logs and re-raises on exception.

    Usage:
        with session_scope() as session:
            service = InvoiceLifecycleService(session)
            service.transition(invoice_id, request)
    """
    session = get_session()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create every table registered on ``Base.metadata``."""
    from jobcost_kernel.db.base import Base
    from jobcost_modules._orm_registry import import_all_orm_models

    import_all_orm_models()
    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    """Drop all tables. Primarily for testing."""
    from jobcost_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None
    _SessionFactory = None


def _atexit_dispose():
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)
