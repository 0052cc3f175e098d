"""
UndoStore tests.

Tests cover:
- Capture and single-use consume
- Only the newest snapshot is usable
- Expiry reported distinctly from absence
- Recent snapshots per actor
"""

from uuid import uuid4

import pytest

from jobcost_kernel.exceptions import UndoExpiredError, UndoNotFoundError
from jobcost_kernel.services.undo_service import UndoStore


@pytest.fixture
def store(session, deterministic_clock):
    return UndoStore(session, deterministic_clock, window_seconds=30)


class TestCaptureAndConsume:
    def test_consume_returns_state(self, store):
        entity_id = uuid4()
        store.capture("invoice", entity_id, "approved", {"status": "ready_for_approval"}, "alice")
        snapshot = store.consume("invoice", entity_id)
        assert snapshot.target_state == "approved"
        assert snapshot.snapshot == {"status": "ready_for_approval"}
        assert snapshot.is_consumed

    def test_consume_is_single_use(self, store):
        entity_id = uuid4()
        store.capture("invoice", entity_id, "approved", {}, "alice")
        store.consume("invoice", entity_id)
        with pytest.raises(UndoNotFoundError):
            store.consume("invoice", entity_id)

    def test_newer_capture_supersedes(self, store, deterministic_clock):
        entity_id = uuid4()
        store.capture("invoice", entity_id, "ready_for_approval", {"status": "needs_review"}, "alice")
        deterministic_clock.advance(1)
        store.capture("invoice", entity_id, "approved", {"status": "ready_for_approval"}, "alice")
        assert store.consume("invoice", entity_id).target_state == "approved"
        with pytest.raises(UndoNotFoundError):
            store.consume("invoice", entity_id)

    def test_nothing_to_undo(self, store):
        with pytest.raises(UndoNotFoundError):
            store.consume("invoice", uuid4())

    def test_state_is_json_safe(self, store):
        from decimal import Decimal

        entity_id = uuid4()
        store.capture("invoice", entity_id, "allocated", {"amount": Decimal("10.50"), "id": entity_id}, "alice")
        state = store.consume("invoice", entity_id).snapshot
        assert state == {"amount": "10.5", "id": str(entity_id)}


class TestExpiry:
    def test_expired_after_window(self, store, deterministic_clock):
        entity_id = uuid4()
        store.capture("invoice", entity_id, "approved", {}, "alice")
        deterministic_clock.advance(31)
        with pytest.raises(UndoExpiredError):
            store.consume("invoice", entity_id)

    def test_available_within_window(self, store, deterministic_clock):
        entity_id = uuid4()
        store.capture("invoice", entity_id, "approved", {}, "alice")
        deterministic_clock.advance(29)
        assert store.available("invoice", entity_id) is not None
        deterministic_clock.advance(2)
        assert store.available("invoice", entity_id) is None

    def test_non_positive_window_rejected(self, session):
        with pytest.raises(ValueError):
            UndoStore(session, window_seconds=0)


class TestRecent:
    def test_recent_for_actor(self, store, deterministic_clock):
        first, second = uuid4(), uuid4()
        store.capture("invoice", first, "approved", {}, "alice")
        deterministic_clock.advance(1)
        store.capture("invoice", second, "denied", {}, "alice")
        store.capture("invoice", uuid4(), "approved", {}, "bob")
        assert [s.entity_id for s in store.recent("alice")] == [second, first]
