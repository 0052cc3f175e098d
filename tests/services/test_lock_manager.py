"""
LockManager tests.

Tests cover:
- Acquire, refresh by the owner, denial for another actor
- Losing the insert race to a concurrent acquirer
- Expiry after the lock duration, and sweeping
- Release by owner only; force release is recorded
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from jobcost_kernel.exceptions import (
    EntityLockedError,
    LockNotFoundError,
    LockOwnershipError,
)
from jobcost_kernel.models.entity_lock import EntityLock
from jobcost_kernel.services.activity_service import ActivityRecorder
from jobcost_kernel.services.lock_service import LockManager


@pytest.fixture
def locks(session, deterministic_clock):
    return LockManager(session, deterministic_clock, lock_seconds=300)


class TestAcquire:
    def test_acquire_sets_expiry(self, locks, deterministic_clock):
        entity_id = uuid4()
        info = locks.acquire("invoice", entity_id, "alice")
        assert info.locked_by == "alice"
        assert info.expires_at == deterministic_clock.now() + timedelta(seconds=300)
        assert not info.refreshed

    def test_owner_reacquire_refreshes(self, locks, deterministic_clock):
        entity_id = uuid4()
        first = locks.acquire("invoice", entity_id, "alice")
        deterministic_clock.advance(120)
        second = locks.acquire("invoice", entity_id, "alice")
        assert second.refreshed
        assert second.lock_id == first.lock_id
        assert second.expires_at == deterministic_clock.now() + timedelta(seconds=300)

    def test_other_actor_denied(self, locks):
        entity_id = uuid4()
        locks.acquire("invoice", entity_id, "alice")
        with pytest.raises(EntityLockedError) as exc_info:
            locks.acquire("invoice", entity_id, "bob")
        assert exc_info.value.locked_by == "alice"
        assert exc_info.value.retry is True

    def test_expired_lock_can_be_taken(self, locks, deterministic_clock):
        entity_id = uuid4()
        locks.acquire("invoice", entity_id, "alice")
        deterministic_clock.advance(301)
        info = locks.acquire("invoice", entity_id, "bob")
        assert info.locked_by == "bob"

    def test_locks_are_per_entity_type(self, locks):
        entity_id = uuid4()
        locks.acquire("invoice", entity_id, "alice")
        info = locks.acquire("draw", entity_id, "bob")
        assert info.locked_by == "bob"

    def test_non_positive_duration_rejected(self, session):
        with pytest.raises(ValueError):
            LockManager(session, lock_seconds=0)


class TestCreationRace:
    """Another session inserts the lock row between our lookup and insert."""

    @pytest.fixture
    def competing_lock(self, session, deterministic_clock):
        def insert(entity_id, owner):
            now = deterministic_clock.now()
            row = EntityLock(
                entity_type="invoice",
                entity_id=entity_id,
                locked_by=owner,
                locked_at=now,
                expires_at=now + timedelta(seconds=300),
            )
            session.add(row)
            session.flush()
            return row

        return insert

    @pytest.fixture
    def stale_lookup(self, locks, monkeypatch):
        """The first lookup misses, as if the row was not committed yet."""
        real_find = locks._find
        calls = []

        def find(entity_type, entity_id):
            calls.append(entity_id)
            if len(calls) == 1:
                return None
            return real_find(entity_type, entity_id)

        monkeypatch.setattr(locks, "_find", find)
        return calls

    def test_losing_to_another_owner(self, locks, competing_lock, stale_lookup, captured_logs):
        entity_id = uuid4()
        competing_lock(entity_id, "bob")
        with pytest.raises(EntityLockedError) as exc_info:
            locks.acquire("invoice", entity_id, "alice")
        assert exc_info.value.locked_by == "bob"
        assert len(stale_lookup) == 2
        assert any(r["message"] == "lock_race_lost" for r in captured_logs())
        assert locks.check("invoice", entity_id).lock.locked_by == "bob"

    def test_same_owner_winner_is_returned(self, locks, competing_lock, stale_lookup):
        entity_id = uuid4()
        row = competing_lock(entity_id, "alice")
        info = locks.acquire("invoice", entity_id, "alice")
        assert info.lock_id == row.id
        assert info.locked_by == "alice"
        assert not info.refreshed
        assert len(stale_lookup) == 2


class TestCheck:
    def test_unlocked(self, locks):
        status = locks.check("invoice", uuid4())
        assert not status.is_locked
        assert status.lock is None

    def test_remaining_seconds(self, locks, deterministic_clock):
        entity_id = uuid4()
        locks.acquire("invoice", entity_id, "alice")
        deterministic_clock.advance(100)
        status = locks.check("invoice", entity_id)
        assert status.is_locked
        assert status.remaining_seconds == pytest.approx(200)

    def test_sweep_removes_expired(self, locks, session, deterministic_clock):
        locks.acquire("invoice", uuid4(), "alice")
        locks.acquire("invoice", uuid4(), "bob")
        deterministic_clock.advance(301)
        assert all(lock.is_expired(deterministic_clock.now()) for lock in session.query(EntityLock))
        assert locks.sweep_expired() == 2
        assert session.query(EntityLock).count() == 0

    def test_ensure_editable(self, locks):
        entity_id = uuid4()
        locks.acquire("invoice", entity_id, "alice")
        locks.ensure_editable("invoice", entity_id, "alice")
        with pytest.raises(EntityLockedError):
            locks.ensure_editable("invoice", entity_id, "bob")


class TestRelease:
    def test_owner_releases(self, locks):
        entity_id = uuid4()
        info = locks.acquire("invoice", entity_id, "alice")
        locks.release(info.lock_id, "alice")
        assert not locks.check("invoice", entity_id).is_locked

    def test_non_owner_cannot_release(self, locks):
        info = locks.acquire("invoice", uuid4(), "alice")
        with pytest.raises(LockOwnershipError):
            locks.release(info.lock_id, "bob")

    def test_release_missing_lock(self, locks):
        with pytest.raises(LockNotFoundError):
            locks.release(uuid4(), "alice")

    def test_release_entity_without_lock(self, locks):
        assert locks.release_entity("invoice", uuid4(), "alice") is False

    def test_force_release_is_recorded(self, locks, session, deterministic_clock):
        entity_id = uuid4()
        locks.acquire("invoice", entity_id, "alice")
        assert locks.force_release("invoice", entity_id, "admin") is True
        assert not locks.check("invoice", entity_id).is_locked
        history = ActivityRecorder(session, deterministic_clock).history("invoice", entity_id)
        assert [h.action for h in history] == ["lock_force_released"]
        assert history[0].details == {"previous_owner": "alice"}

    def test_list_active(self, locks, deterministic_clock):
        locks.acquire("invoice", uuid4(), "alice")
        deterministic_clock.advance(10)
        locks.acquire("invoice", uuid4(), "bob")
        assert [info.locked_by for info in locks.list_active()] == ["alice", "bob"]
