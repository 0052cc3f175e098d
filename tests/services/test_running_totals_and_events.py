"""
Running-total writes and the post-commit event buffer.

Tests cover:
- Floored counter updates on a persisted row, and CRITICAL on a failed write
- Events delivered only after the outermost commit
- Events dropped with the transaction or SAVEPOINT they were published in
- A failing sink never reaches the caller
"""

from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from jobcost_kernel.exceptions import LedgerUpdateError
from jobcost_kernel.services.event_buffer import (
    pending_events,
    publish_after_commit,
    register_sink,
    unregister_sink,
)
from jobcost_kernel.services.running_totals import apply_running_total


class TestRunningTotals:
    def test_apply_delta(self, session, job, make_change_order):
        co = make_change_order(job.id)
        assert apply_running_total(session, co, "invoiced_amount", Decimal("250")) == Decimal("250")
        assert apply_running_total(session, co, "invoiced_amount", Decimal("-100")) == Decimal("150")
        assert co.invoiced_amount == Decimal("150")

    def test_floored_at_zero(self, session, job, make_change_order):
        co = make_change_order(job.id)
        apply_running_total(session, co, "invoiced_amount", Decimal("100"))
        assert apply_running_total(session, co, "invoiced_amount", Decimal("-400")) == Decimal("0")

    def test_zero_delta_is_noop(self, session, job, make_change_order, captured_logs):
        co = make_change_order(job.id)
        apply_running_total(session, co, "invoiced_amount", Decimal("0"))
        assert not any(r["message"] == "ledger_total_updated" for r in captured_logs())

    def test_update_is_logged(self, session, job, make_change_order, captured_logs):
        co = make_change_order(job.id)
        apply_running_total(session, co, "invoiced_amount", Decimal("75"))
        record = next(r for r in captured_logs() if r["message"] == "ledger_total_updated")
        assert record["target_type"] == "ChangeOrderModel"
        assert record["delta"] == "75"
        assert record["after"] == "75"

    def test_failed_write_raises(self, session, job, make_change_order, captured_logs, monkeypatch):
        co = make_change_order(job.id)
        co_id = co.id
        real_flush = session.flush

        def failing_flush(*args, **kwargs):
            if co in session.dirty:
                raise SQLAlchemyError("disk I/O error")
            return real_flush(*args, **kwargs)

        monkeypatch.setattr(session, "flush", failing_flush)
        with pytest.raises(LedgerUpdateError) as exc_info:
            apply_running_total(session, co, "invoiced_amount", Decimal("75"))
        assert exc_info.value.target_id == co_id
        assert exc_info.value.to_dict()["retry"] is True
        record = next(r for r in captured_logs() if r["message"] == "ledger_total_update_failed")
        assert record["level"] == "CRITICAL"
        assert record["exc_type"] == "SQLAlchemyError"


class TestEventBuffer:
    @pytest.fixture
    def received(self):
        events: list[tuple[str, dict]] = []

        def sink(name, payload):
            events.append((name, payload))

        register_sink(sink)
        yield events
        unregister_sink(sink)

    def test_delivered_on_commit(self, session, received):
        publish_after_commit(session, "invoice_created", {"amount": Decimal("10")})
        assert received == []
        assert pending_events(session) == [("invoice_created", {"amount": "10"})]
        session.commit()
        assert received == [("invoice_created", {"amount": "10"})]
        assert pending_events(session) == []

    def test_savepoint_release_does_not_deliver(self, session, received):
        with session.begin_nested():
            publish_after_commit(session, "invoice_allocated", {})
        assert received == []
        session.commit()
        assert [name for name, _ in received] == ["invoice_allocated"]

    def test_rollback_discards(self, session, received):
        publish_after_commit(session, "invoice_created", {})
        session.rollback()
        session.commit()
        assert received == []
        assert pending_events(session) == []

    def test_savepoint_rollback_drops_only_its_events(self, session, received):
        publish_after_commit(session, "before", {})
        with pytest.raises(RuntimeError):
            with session.begin_nested():
                publish_after_commit(session, "inside", {})
                raise RuntimeError("boom")
        publish_after_commit(session, "after", {})
        session.commit()
        assert [name for name, _ in received] == ["before", "after"]

    def test_inner_release_then_outer_rollback(self, session, received):
        with pytest.raises(RuntimeError):
            with session.begin_nested():
                with session.begin_nested():
                    publish_after_commit(session, "inner", {})
                raise RuntimeError("boom")
        session.commit()
        assert received == []

    def test_failing_sink_is_logged(self, session, received, captured_logs):
        def broken(name, payload):
            raise ValueError("sink down")

        register_sink(broken)
        publish_after_commit(session, "invoice_created", {})
        session.commit()
        unregister_sink(broken)
        assert [name for name, _ in received] == ["invoice_created"]
        failure = next(r for r in captured_logs() if r["message"] == "event_delivery_failed")
        assert failure["event_name"] == "invoice_created"
        assert failure["exc_type"] == "ValueError"
