"""
Request throttling for the Session Core service.

This module provides the per-category fixed-window rate limiter and the
failed-login lockout tracker. Both keep their state in process memory only;
every read-modify-write on a key happens under a lock, so concurrent request
handlers never lose an increment.
"""
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from session_core.config import Settings
from session_core.errors import RateLimitedError

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("session_core.audit")

# Endpoint categories
CATEGORY_LOGIN = "login"
CATEGORY_REGISTER = "register"
CATEGORY_REFRESH = "refresh"
CATEGORY_GENERAL = "general"


@dataclass(frozen=True)
class RateLimitRule:
    """Window configuration for one endpoint category."""
    window_seconds: float
    max_requests: int
    message: str = "Too many requests, please try again later"
    skip_successful: bool = False


@dataclass
class RateLimitWindow:
    count: int
    window_start: float


@dataclass(frozen=True)
class RateLimitTicket:
    """Proof that a request was counted in a window."""
    category: str
    key: str
    window_start: float


def default_rules(app_settings: Settings) -> Dict[str, RateLimitRule]:
    """Build the rate-limit rules for every endpoint category from settings."""
    return {
        CATEGORY_LOGIN: RateLimitRule(
            window_seconds=app_settings.LOGIN_RATE_WINDOW_SECONDS,
            max_requests=app_settings.LOGIN_RATE_MAX,
            message="Too many login attempts, please try again later",
            skip_successful=True,
        ),
        CATEGORY_REGISTER: RateLimitRule(
            window_seconds=app_settings.REGISTER_RATE_WINDOW_SECONDS,
            max_requests=app_settings.REGISTER_RATE_MAX,
            message="Too many registration attempts, please try again later",
        ),
        CATEGORY_REFRESH: RateLimitRule(
            window_seconds=app_settings.REFRESH_RATE_WINDOW_SECONDS,
            max_requests=app_settings.REFRESH_RATE_MAX,
            message="Too many token refresh attempts, please try again later",
        ),
        CATEGORY_GENERAL: RateLimitRule(
            window_seconds=app_settings.GENERAL_RATE_WINDOW_SECONDS,
            max_requests=app_settings.GENERAL_RATE_MAX,
            message="Too many requests, please slow down",
        ),
    }


class RateLimiter:
    """
    Fixed-window rate limiter with one independent window per endpoint category.

    Keys are a client address optionally combined with a submitted identifier.
    For categories that skip successful requests, the caller hands the ticket
    back through :meth:`record_success` and the hit is removed from the window.
    """

    def __init__(self, rules: Dict[str, RateLimitRule], enabled: bool = True,
                 clock: Callable[[], float] = time.monotonic, on_reject: Optional[Callable[[str], None]] = None):
        """
        Initialize the rate limiter.

        Args:
            rules: Window configuration per category.
            enabled: When False every request is admitted.
            clock: Monotonic time source in seconds.
            on_reject: Optional callback invoked with the category of each rejection.
        """
        self.rules = dict(rules)
        self.enabled = enabled
        self._clock = clock
        self._on_reject = on_reject
        self._windows: Dict[str, Dict[str, RateLimitWindow]] = {name: {} for name in self.rules}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, app_settings: Settings, **kwargs) -> "RateLimiter":
        return cls(default_rules(app_settings), enabled=app_settings.RATE_LIMIT_ENABLED, **kwargs)

    @staticmethod
    def make_key(client_address: Optional[str], identifier: Optional[str] = None) -> str:
        """Combine a client address and an optional identifier into a window key."""
        address = client_address or "unknown"
        if identifier:
            return f"{address}:{identifier.strip().lower()}"
        return address

    # PUBLIC_INTERFACE
    def hit(self, category: str, key: str) -> RateLimitTicket:
        """
        Count one request against the window of ``key`` in ``category``.

        Args:
            category: Endpoint category.
            key: Window key, see :meth:`make_key`.

        Returns:
            A ticket identifying the window the request was counted in.

        Raises:
            KeyError: If the category is not configured.
            RateLimitedError: If the window is already full.
        """
        rule = self.rules[category]
        if not self.enabled:
            return RateLimitTicket(category, key, 0.0)

        with self._lock:
            now = self._clock()
            windows = self._windows[category]
            window = windows.get(key)
            if window is None or now - window.window_start >= rule.window_seconds:
                window = RateLimitWindow(count=0, window_start=now)
                windows[key] = window

            if window.count >= rule.max_requests:
                retry_after = max(1, math.ceil(window.window_start + rule.window_seconds - now))
            else:
                window.count += 1
                return RateLimitTicket(category, key, window.window_start)

        audit_logger.warning(f"Rate limit exceeded for {key} on {category} (retry after {retry_after}s)")
        if self._on_reject is not None:
            self._on_reject(category)
        raise RateLimitedError(rule.message, retry_after=retry_after)

    # PUBLIC_INTERFACE
    def record_success(self, ticket: RateLimitTicket) -> None:
        """
        Report that the counted request succeeded.

        Only categories configured with ``skip_successful`` give the hit back,
        and only while the window that counted it is still active.
        """
        rule = self.rules[ticket.category]
        if not self.enabled or not rule.skip_successful:
            return
        with self._lock:
            window = self._windows[ticket.category].get(ticket.key)
            if window is not None and window.window_start == ticket.window_start and window.count > 0:
                window.count -= 1

    # PUBLIC_INTERFACE
    def remaining(self, category: str, key: str) -> int:
        """Number of requests still admitted in the current window."""
        rule = self.rules[category]
        with self._lock:
            window = self._windows[category].get(key)
            if window is None or self._clock() - window.window_start >= rule.window_seconds:
                return rule.max_requests
            return max(0, rule.max_requests - window.count)

    # PUBLIC_INTERFACE
    def purge_expired(self) -> int:
        """Drop windows that have fully elapsed. Returns the number removed."""
        removed = 0
        with self._lock:
            now = self._clock()
            for category, windows in self._windows.items():
                window_seconds = self.rules[category].window_seconds
                stale = [k for k, w in windows.items() if now - w.window_start >= window_seconds]
                for k in stale:
                    del windows[k]
                removed += len(stale)
        return removed

    def reset(self) -> None:
        """Forget every window."""
        with self._lock:
            for windows in self._windows.values():
                windows.clear()


@dataclass
class FailedLoginCounter:
    count: int
    first_attempt_at: float
    lock_until: Optional[float] = None


@dataclass(frozen=True)
class LockoutStatus:
    count: int
    locked: bool
    lock_until: Optional[float] = None


class LockoutTracker:
    """
    Tracks consecutive failed logins per identifier.

    Once ``max_failures`` failures accumulate within ``duration_seconds`` the
    identifier is reported as locked until ``duration_seconds`` after the
    failure that crossed the threshold. Entries expire on their own; a
    successful login clears the entry immediately.
    """

    def __init__(self, max_failures: int = 10, duration_seconds: float = 30 * 60,
                 clock: Callable[[], float] = time.monotonic):
        self.max_failures = max_failures
        self.duration_seconds = duration_seconds
        self._clock = clock
        self._counters: Dict[str, FailedLoginCounter] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, app_settings: Settings, **kwargs) -> "LockoutTracker":
        return cls(
            max_failures=app_settings.MAX_FAILED_LOGINS,
            duration_seconds=app_settings.LOCKOUT_DURATION_MINUTES * 60,
            **kwargs
        )

    def _expired(self, counter: FailedLoginCounter, now: float) -> bool:
        if counter.lock_until is not None:
            return now >= counter.lock_until
        return now - counter.first_attempt_at >= self.duration_seconds

    # PUBLIC_INTERFACE
    def record_failure(self, identifier: str) -> LockoutStatus:
        """
        Count one failed login for ``identifier``.

        Returns:
            The counter state after the increment.
        """
        with self._lock:
            now = self._clock()
            counter = self._counters.get(identifier)
            if counter is None or self._expired(counter, now):
                counter = FailedLoginCounter(count=0, first_attempt_at=now)
                self._counters[identifier] = counter
            counter.count += 1
            newly_locked = False
            if counter.count >= self.max_failures and counter.lock_until is None:
                counter.lock_until = now + self.duration_seconds
                newly_locked = True
            status = LockoutStatus(counter.count, counter.lock_until is not None, counter.lock_until)

        if newly_locked:
            audit_logger.warning(f"Identifier {identifier} temporarily locked after {status.count} failed logins")
        return status

    # PUBLIC_INTERFACE
    def reset(self, identifier: str) -> None:
        """Clear the failure counter for ``identifier``."""
        with self._lock:
            self._counters.pop(identifier, None)

    # PUBLIC_INTERFACE
    def get_status(self, identifier: str) -> LockoutStatus:
        """Current counter state; an absent or expired entry reads as zero."""
        with self._lock:
            counter = self._counters.get(identifier)
            if counter is None or self._expired(counter, self._clock()):
                return LockoutStatus(0, False)
            return LockoutStatus(counter.count, counter.lock_until is not None, counter.lock_until)

    # PUBLIC_INTERFACE
    def purge_expired(self) -> int:
        """Drop expired counters. Returns the number removed."""
        with self._lock:
            now = self._clock()
            stale = [k for k, c in self._counters.items() if self._expired(c, now)]
            for k in stale:
                del self._counters[k]
        return len(stale)
