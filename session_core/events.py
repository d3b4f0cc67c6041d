"""
Outbound event publishing for the Session Core service.

Events are handed to a bounded in-process queue and delivered by a worker
thread with bounded retry. Publishing never raises into the caller: a full
queue or an exhausted retry budget is logged and counted, and the operation
that produced the event is unaffected.
"""
import datetime
import logging
import queue
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Optional

import httpx

from session_core.metrics import EVENTS_PUBLISHED

logger = logging.getLogger(__name__)

# Event types
USER_LOGGED_IN = "user.logged_in"
USER_REGISTERED = "user.registered"
USER_LOGGED_OUT = "user.logged_out"
USER_SESSIONS_TERMINATED = "user.sessions_terminated"


@dataclass
class Event:
    type: str
    payload: Dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: str = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc).isoformat()
    )
    attempts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        body = asdict(self)
        body.pop("attempts")
        return body


class LoggingTransport:
    """Transport that only writes events to the log."""

    def __call__(self, event: Event) -> None:
        logger.info(f"Event {event.type} {event.id}: {event.payload}")


class HttpTransport:
    """Transport posting events as JSON to a webhook."""

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.client = client or httpx.Client(timeout=timeout)

    def __call__(self, event: Event) -> None:
        response = self.client.post(self.url, json=event.to_dict())
        response.raise_for_status()

    def close(self) -> None:
        self.client.close()


class EventPublisher:
    """
    Fire-and-forget publisher backed by a bounded queue and one worker thread.
    """

    def __init__(self, transport: Callable[[Event], None], max_queue_size: int = 1000,
                 max_attempts: int = 5, backoff_seconds: float = 0.3, enabled: bool = True):
        """
        Args:
            transport: Delivers one event; any exception counts as a failed attempt.
            max_queue_size: Events beyond this many pending ones are dropped.
            max_attempts: Delivery attempts per event before it is dropped.
            backoff_seconds: Base delay between attempts, doubled after each failure.
            enabled: When False, publish is a no-op.
        """
        self.transport = transport
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.enabled = enabled
        self._queue: "queue.Queue[Optional[Event]]" = queue.Queue(maxsize=max_queue_size)
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self.poll_interval = 0.1

    # PUBLIC_INTERFACE
    def publish(self, event_type: str, payload: Dict[str, Any]) -> bool:
        """
        Queue an event for delivery.

        Returns:
            True if the event was queued, False if it was dropped.
        """
        if not self.enabled:
            return False
        event = Event(type=event_type, payload=payload)
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.warning(f"Event queue full, dropping {event_type} {event.id}")
            EVENTS_PUBLISHED.labels(event_type=event_type, result="dropped").inc()
            return False
        return True

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # PUBLIC_INTERFACE
    def start(self) -> None:
        """Start the delivery worker."""
        if self.running:
            logger.warning("Event publisher is already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="event-publisher", daemon=True)
        self._thread.start()
        logger.info("Event publisher started")

    # PUBLIC_INTERFACE
    def stop(self, timeout: float = 5.0) -> None:
        """Deliver what is already queued, then stop the worker."""
        if not self.running:
            return
        self._stop_event.set()
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            # The worker polls the stop flag between reads
            pass
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning(f"Event publisher did not stop within {timeout}s, {self.pending} events pending")
            return
        self._thread = None
        close = getattr(self.transport, "close", None)
        if close is not None:
            close()
        logger.info("Event publisher stopped")

    # PUBLIC_INTERFACE
    def drain(self) -> int:
        """Deliver every queued event on the calling thread. Returns the number processed."""
        processed = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                return processed
            if event is not None:
                self._deliver(event)
                processed += 1
            self._queue.task_done()

    def _run(self) -> None:
        while True:
            try:
                event = self._queue.get(timeout=self.poll_interval)
            except queue.Empty:
                if self._stop_event.is_set():
                    break
                continue
            try:
                if event is None:
                    if self._stop_event.is_set():
                        break
                    continue
                self._deliver(event)
            finally:
                self._queue.task_done()
        # Flush anything queued before the stop marker was seen
        self.drain()

    def _deliver(self, event: Event) -> bool:
        delay = self.backoff_seconds
        while event.attempts < self.max_attempts:
            event.attempts += 1
            try:
                self.transport(event)
            except Exception as e:
                logger.warning(
                    f"Delivery of {event.type} {event.id} failed "
                    f"(attempt {event.attempts}/{self.max_attempts}): {str(e)}"
                )
                if event.attempts < self.max_attempts and delay > 0:
                    time.sleep(delay)
                    delay *= 2
                continue
            EVENTS_PUBLISHED.labels(event_type=event.type, result="delivered").inc()
            return True
        logger.error(f"Giving up on event {event.type} {event.id} after {event.attempts} attempts")
        EVENTS_PUBLISHED.labels(event_type=event.type, result="failed").inc()
        return False
