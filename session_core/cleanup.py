"""
Background session sweeper for the Session Core service.

Every tick deletes session rows that are expired or invalidated, then deletes
every row older than the retention ceiling as a safety net. Ticks never
overlap: a tick that comes due while another is still running is skipped.
A failing tick is logged and the schedule carries on.
"""
import datetime
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from session_core.metrics import TOKEN_CLEANUP_DELETED, TOKEN_CLEANUP_RUNS
from session_core.models import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CleanupReport:
    expired_or_invalid: int
    older_than_retention: int
    duration_seconds: float

    @property
    def total_deleted(self) -> int:
        return self.expired_or_invalid + self.older_than_retention


class CleanupSweeper:
    """Periodic purge of stale rows from the token store."""

    def __init__(self, token_store, interval_seconds: float = 3600, retention_days: int = 30,
                 housekeeping: Optional[List[Callable[[], Any]]] = None):
        """
        Args:
            token_store: :class:`~session_core.token_store.TokenStore` to sweep.
            interval_seconds: Time between ticks.
            retention_days: Rows created longer ago than this are always deleted.
            housekeeping: Extra callables run after each store sweep, such as
                purging expired in-memory rate-limit windows.
        """
        self.token_store = token_store
        self.interval_seconds = interval_seconds
        self.retention_days = retention_days
        self.housekeeping = list(housekeeping or [])
        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._next_run_at: Optional[datetime.datetime] = None
        self.last_report: Optional[CleanupReport] = None
        self.last_error: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # PUBLIC_INTERFACE
    def start(self) -> None:
        """Start the sweeper; the first tick runs immediately."""
        if self.is_running:
            logger.warning("Token cleanup service is already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="token-cleanup", daemon=True)
        self._thread.start()
        logger.info(
            f"Starting token cleanup service (interval={self.interval_seconds}s, "
            f"retention={self.retention_days}d)"
        )

    # PUBLIC_INTERFACE
    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop scheduling ticks; a tick in progress finishes first."""
        if not self.is_running:
            return
        self._stop_event.set()
        self._thread.join(timeout)
        self._thread = None
        self._next_run_at = None
        logger.info("Token cleanup service stopped")

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._next_run_at = utcnow() + datetime.timedelta(seconds=self.interval_seconds)
            if self._stop_event.wait(self.interval_seconds):
                break

    # PUBLIC_INTERFACE
    def run_once(self) -> Optional[CleanupReport]:
        """
        Run a single tick.

        Returns:
            The report of the tick, or None if it was skipped because another
            tick was in progress or if it failed.
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.info("Token cleanup tick skipped, previous tick still running")
            TOKEN_CLEANUP_RUNS.labels(result="skipped").inc()
            return None
        try:
            return self._sweep()
        except Exception as e:
            self.last_error = str(e)
            logger.error(f"Token cleanup failed: {str(e)}", exc_info=True)
            TOKEN_CLEANUP_RUNS.labels(result="failed").inc()
            return None
        finally:
            self._tick_lock.release()

    def _sweep(self) -> CleanupReport:
        started = utcnow()
        expired = self.token_store.delete_expired_or_invalid()
        ceiling = started - datetime.timedelta(days=self.retention_days)
        old = self.token_store.delete_older_than(ceiling)
        report = CleanupReport(
            expired_or_invalid=expired,
            older_than_retention=old,
            duration_seconds=(utcnow() - started).total_seconds(),
        )
        self.last_report = report
        self.last_error = None
        TOKEN_CLEANUP_RUNS.labels(result="success").inc()
        TOKEN_CLEANUP_DELETED.labels(reason="expired_or_invalid").inc(expired)
        TOKEN_CLEANUP_DELETED.labels(reason="retention").inc(old)

        if report.total_deleted > 0:
            logger.info(
                f"Token cleanup completed: expired={expired} old={old} "
                f"total={report.total_deleted} duration={report.duration_seconds:.3f}s"
            )
        self._log_stats()
        self._run_housekeeping()
        return report

    def _log_stats(self) -> None:
        try:
            active = self.token_store.count_active()
            oldest = self.token_store.oldest_active_created_at()
        except Exception as e:
            logger.error(f"Failed to log cleanup stats: {str(e)}")
            return
        age = f"{(utcnow() - oldest).days} days" if oldest else "N/A"
        logger.debug(f"Token cleanup stats: active={active} oldest={age}")

    def _run_housekeeping(self) -> None:
        for task in self.housekeeping:
            try:
                task()
            except Exception as e:
                logger.error(f"Cleanup housekeeping task failed: {str(e)}")

    # PUBLIC_INTERFACE
    def manual_cleanup(self) -> Optional[CleanupReport]:
        """Out-of-band tick, for admin operations and tests."""
        logger.info("Manual token cleanup triggered")
        return self.run_once()

    # PUBLIC_INTERFACE
    def get_status(self) -> Dict[str, Any]:
        """Running state, schedule and the outcome of the last tick."""
        return {
            "is_running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "retention_days": self.retention_days,
            "next_cleanup": self._next_run_at.isoformat() if self.is_running and self._next_run_at else None,
            "last_deleted": self.last_report.total_deleted if self.last_report else None,
            "last_error": self.last_error,
        }

    # PUBLIC_INTERFACE
    def invalidate_user_tokens(self, user_id: int) -> int:
        """Mark every session of a user invalid; the next tick deletes them."""
        count = self.token_store.invalidate_all(user_id)
        logger.info(f"User tokens invalidated: user={user_id} count={count}")
        return count

    # PUBLIC_INTERFACE
    def cleanup_user_tokens(self, user_id: int) -> int:
        """Delete every session of a user, usually on account deletion."""
        count = self.token_store.delete_all(user_id)
        logger.info(f"User tokens cleaned up: user={user_id} count={count}")
        return count
