"""
Verification cache for the Session Core service.

Read-through LRU cache from user id to identity projection, consulted only
while verifying access tokens. Entries live for the access-token TTL, and a
hit slides the entry's expiry forward. The cache is never a source of truth:
a missing entry is always resolved by reading the identity source again.
"""
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from session_core.errors import IdentityNotFoundError
from session_core.identity import IdentityProjection

logger = logging.getLogger(__name__)


@dataclass
class CachedIdentity:
    user_id: int
    projection: IdentityProjection
    inserted_at: float


class VerificationCache:
    """
    Thread-safe, bounded, TTL based read-through cache.

    The lock guards the entry map and the counters. Loads from the identity
    source happen outside the lock so a slow source never blocks other keys.
    """

    def __init__(self, loader: Callable[[int], Optional[IdentityProjection]], max_size: int = 1000,
                 ttl_seconds: float = 15 * 60, clock: Callable[[], float] = time.monotonic,
                 on_event: Optional[Callable[[str], None]] = None):
        """
        Args:
            loader: Reads a projection from the identity source; returns None if absent.
            max_size: Maximum number of entries before the least recently used is evicted.
            ttl_seconds: Entry lifetime, refreshed on every hit.
            clock: Monotonic time source in seconds.
            on_event: Optional callback receiving ``hit``, ``miss``, ``set``, ``delete`` or ``eviction``.
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.loader = loader
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._on_event = on_event
        self._entries: "OrderedDict[int, CachedIdentity]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.sets = 0
        self.deletes = 0
        self.evictions = 0

    def _emit(self, event: str) -> None:
        if self._on_event is not None:
            self._on_event(event)

    def _lookup(self, user_id: int) -> Optional[IdentityProjection]:
        """Return a live entry and refresh its age. Caller holds the lock."""
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        now = self._clock()
        if now - entry.inserted_at >= self.ttl_seconds:
            del self._entries[user_id]
            return None
        entry.inserted_at = now
        self._entries.move_to_end(user_id)
        return entry.projection

    def _store(self, user_id: int, projection: IdentityProjection) -> int:
        """Insert an entry and evict overflow. Caller holds the lock. Returns evictions."""
        self._entries.pop(user_id, None)
        self._entries[user_id] = CachedIdentity(user_id, projection, self._clock())
        self.sets += 1
        evicted = 0
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
            evicted += 1
        self.evictions += evicted
        return evicted

    # PUBLIC_INTERFACE
    def get(self, user_id: int) -> IdentityProjection:
        """
        Return the projection of a user, loading it on a miss.

        Args:
            user_id: User ID.

        Returns:
            The cached or freshly loaded projection.

        Raises:
            IdentityNotFoundError: If the identity source has no such user.
                The absence is not cached.
        """
        with self._lock:
            projection = self._lookup(user_id)
            if projection is not None:
                self.hits += 1
            else:
                self.misses += 1
        if projection is not None:
            logger.debug(f"User cache hit for {user_id}")
            self._emit("hit")
            return projection

        self._emit("miss")
        projection = self.loader(user_id)
        if projection is None:
            raise IdentityNotFoundError(user_id)
        self.set(user_id, projection)
        return projection

    # PUBLIC_INTERFACE
    def peek(self, user_id: int) -> Optional[IdentityProjection]:
        """Return a live entry without loading, counting, or refreshing it."""
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None or self._clock() - entry.inserted_at >= self.ttl_seconds:
                return None
            return entry.projection

    # PUBLIC_INTERFACE
    def set(self, user_id: int, projection: IdentityProjection) -> None:
        """Insert or replace an entry, used to warm the cache at login."""
        with self._lock:
            evicted = self._store(user_id, projection)
        logger.debug(f"User {user_id} cached")
        self._emit("set")
        for _ in range(evicted):
            self._emit("eviction")

    # PUBLIC_INTERFACE
    def evict_one(self, user_id: int) -> bool:
        """Remove one entry, used at logout. Returns whether it was present."""
        with self._lock:
            removed = self._entries.pop(user_id, None) is not None
            if removed:
                self.deletes += 1
        if removed:
            logger.debug(f"User {user_id} removed from cache")
            self._emit("delete")
        return removed

    # PUBLIC_INTERFACE
    def clear_all(self) -> None:
        """Drop every entry, used for bulk invalidation."""
        with self._lock:
            self.deletes += len(self._entries)
            self._entries.clear()
        logger.info("User cache cleared")

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    # PUBLIC_INTERFACE
    def get_stats(self) -> Dict[str, Any]:
        """Counters for observability."""
        with self._lock:
            lookups = self.hits + self.misses
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "ttl_seconds": self.ttl_seconds,
                "hits": self.hits,
                "misses": self.misses,
                "sets": self.sets,
                "deletes": self.deletes,
                "evictions": self.evictions,
                "hit_rate": (self.hits / lookups) if lookups else 0.0,
            }
