"""
Tests for the background session sweeper.

This module tests the cleanup ticks, overlap protection, failure handling and
scheduling provided by the session_core.cleanup module.
"""
import datetime
import threading
import time

from session_core.cleanup import CleanupSweeper
from session_core.errors import InternalError
from session_core.models import SessionToken, utcnow


def _seed_rows(token_store, database, identity_source):
    """One row of each kind: expired, invalid, active and very old."""
    users = [identity_source.create(f"sweep{i}@acme.io", "hash") for i in range(4)]
    expired, invalid, active, ancient = (u.id for u in users)
    future = utcnow() + datetime.timedelta(days=7)

    token_store.upsert_session(expired, "expired", utcnow() - datetime.timedelta(minutes=5))
    token_store.upsert_session(invalid, "invalid", future)
    token_store.invalidate_all(invalid)
    token_store.upsert_session(active, "active", future)
    token_store.upsert_session(ancient, "ancient", future)
    with database.session_scope() as session:
        session.query(SessionToken).filter_by(user_id=ancient).update(
            {SessionToken.created_at: utcnow() - datetime.timedelta(days=45)}
        )
    return active


def test_sweep_removes_stale_rows(token_store, database, identity_source):
    """One tick leaves only the unexpired valid row."""
    active = _seed_rows(token_store, database, identity_source)
    sweeper = CleanupSweeper(token_store, retention_days=30)

    report = sweeper.run_once()

    assert report.expired_or_invalid == 2
    assert report.older_than_retention == 1
    assert report.total_deleted == 3
    with database.session_scope() as session:
        rows = session.query(SessionToken).all()
        assert [(row.user_id, row.token) for row in rows] == [(active, "active")]


def test_sweep_with_nothing_to_do(token_store):
    """An empty store yields an empty report."""
    report = CleanupSweeper(token_store).run_once()

    assert report.total_deleted == 0


def test_housekeeping_runs_after_sweep(token_store):
    """Housekeeping tasks run on every tick, and one failing does not stop the others."""
    calls = []

    def failing():
        raise RuntimeError("boom")

    sweeper = CleanupSweeper(token_store, housekeeping=[failing, lambda: calls.append("ran")])
    report = sweeper.run_once()

    assert report is not None
    assert calls == ["ran"]


class FailingStore:
    def delete_expired_or_invalid(self):
        raise InternalError("Failed to delete expired sessions")


def test_failed_tick_is_recorded():
    """A failing tick is logged and reported in the status, not raised."""
    sweeper = CleanupSweeper(FailingStore())

    assert sweeper.run_once() is None
    assert sweeper.get_status()["last_error"] == "Failed to delete expired sessions"


class BlockingStore:
    """Store whose first sweep blocks until released."""

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()
        self.sweeps = 0

    def delete_expired_or_invalid(self):
        self.sweeps += 1
        self.entered.set()
        self.release.wait(5)
        return 0

    def delete_older_than(self, ceiling):
        return 0

    def count_active(self):
        return 0

    def oldest_active_created_at(self):
        return None


def test_overlapping_tick_is_skipped():
    """A tick that comes due while another is running is skipped."""
    store = BlockingStore()
    sweeper = CleanupSweeper(store)
    results = []
    first = threading.Thread(target=lambda: results.append(sweeper.run_once()))
    first.start()
    assert store.entered.wait(5)

    # Second tick while the first still holds the lock
    assert sweeper.run_once() is None

    store.release.set()
    first.join(5)
    assert store.sweeps == 1
    assert results[0] is not None


def test_start_runs_first_tick_and_stop(token_store, database, identity_source):
    """Starting the sweeper runs a tick right away; stopping ends the thread."""
    _seed_rows(token_store, database, identity_source)
    sweeper = CleanupSweeper(token_store, interval_seconds=3600)

    sweeper.start()
    try:
        deadline = time.monotonic() + 5
        while sweeper.last_report is None and time.monotonic() < deadline:
            time.sleep(0.01)
        status = sweeper.get_status()
        assert status["is_running"] is True
        assert status["last_deleted"] == 3
    finally:
        sweeper.stop()

    assert sweeper.is_running is False
    assert sweeper.get_status()["next_cleanup"] is None


def test_manual_cleanup(token_store, database, identity_source):
    """Test running a tick out of band."""
    _seed_rows(token_store, database, identity_source)
    sweeper = CleanupSweeper(token_store)

    assert sweeper.manual_cleanup().total_deleted == 3


def test_user_token_helpers(token_store, test_user):
    """Test invalidating and deleting the tokens of one user."""
    token_store.upsert_session(test_user.id, "refresh-1", utcnow() + datetime.timedelta(days=1))
    sweeper = CleanupSweeper(token_store)

    assert sweeper.invalidate_user_tokens(test_user.id) == 1
    assert token_store.find_active_session("refresh-1", test_user.id) is None
    assert sweeper.cleanup_user_tokens(test_user.id) == 1
    assert token_store.get_session(test_user.id) is None
