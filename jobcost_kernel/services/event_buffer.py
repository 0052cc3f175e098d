"""
Post-commit event buffer.

Services call ``publish_after_commit(session, name, payload)`` when a
mutation has succeeded.  Events wait in ``session.info`` and are handed to
every registered sink only after the session's outermost transaction
commits.  Rolling back a SAVEPOINT drops the events published inside it;
rolling back the outermost transaction drops them all.  A sink that raises
is logged and skipped, never propagated into the committed caller.
"""

from __future__ import annotations

from typing import Any, Callable

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from jobcost_kernel.logging_config import get_logger
from jobcost_kernel.utils.hashing import to_json_safe

logger = get_logger("services.event_buffer")

EventSink = Callable[[str, dict[str, Any]], None]

_PENDING_KEY = "jobcost_pending_events"
_MARKS_KEY = "jobcost_savepoint_marks"
_sinks: list[EventSink] = []


def register_sink(sink: EventSink) -> None:
    if sink not in _sinks:
        _sinks.append(sink)


def unregister_sink(sink: EventSink) -> None:
    if sink in _sinks:
        _sinks.remove(sink)


def clear_sinks() -> None:
    """Remove every sink. FOR TESTING ONLY."""
    _sinks.clear()


def publish_after_commit(session: Session, event_name: str, payload: dict[str, Any]) -> None:
    session.info.setdefault(_PENDING_KEY, []).append((event_name, to_json_safe(payload)))


def pending_events(session: Session) -> list[tuple[str, dict[str, Any]]]:
    return list(session.info.get(_PENDING_KEY, []))


@event.listens_for(Session, "after_transaction_create")
def _mark_savepoint(session: Session, transaction: SessionTransaction) -> None:
    if transaction.nested:
        marks = session.info.setdefault(_MARKS_KEY, {})
        marks[transaction] = len(session.info.get(_PENDING_KEY, []))


@event.listens_for(Session, "after_commit")
def _deliver_pending(session: Session) -> None:
    # Also fired when a SAVEPOINT is released; wait for the outermost commit.
    if session.in_nested_transaction():
        session.info.get(_MARKS_KEY, {}).pop(session.get_nested_transaction(), None)
        return
    session.info.pop(_MARKS_KEY, None)
    events = session.info.pop(_PENDING_KEY, [])
    for event_name, payload in events:
        for sink in list(_sinks):
            try:
                sink(event_name, payload)
            except Exception:
                logger.error(
                    "event_delivery_failed",
                    exc_info=True,
                    extra={"event_name": event_name},
                )
    if events:
        logger.debug("events_delivered", extra={"event_count": len(events)})


@event.listens_for(Session, "after_soft_rollback")
def _discard_pending(session: Session, previous_transaction: SessionTransaction) -> None:
    pending = session.info.get(_PENDING_KEY, [])
    if previous_transaction.nested:
        mark = session.info.get(_MARKS_KEY, {}).pop(previous_transaction, None)
        if mark is None or mark >= len(pending):
            return
        dropped = len(pending) - mark
        del pending[mark:]
    elif previous_transaction.parent is None:
        session.info.pop(_MARKS_KEY, None)
        dropped = len(session.info.pop(_PENDING_KEY, []))
    else:
        return
    if dropped:
        logger.debug("events_discarded", extra={"event_count": dropped})
