"""
Tests for outbound event publishing.

This module tests queueing, retry and delivery provided by the
session_core.events module.
"""
import threading
import time

import httpx

from session_core.events import USER_LOGGED_IN, Event, EventPublisher, HttpTransport


class FlakyTransport:
    """Transport that fails a fixed number of times before succeeding."""

    def __init__(self, failures):
        self.failures = failures
        self.attempts = 0
        self.delivered = []

    def __call__(self, event):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("webhook unavailable")
        self.delivered.append(event)


def test_publish_and_drain(publisher, transport):
    """Test queueing and delivering events."""
    assert publisher.publish(USER_LOGGED_IN, {"userId": 1}) is True
    assert publisher.pending == 1

    assert publisher.drain() == 1
    assert transport.types == [USER_LOGGED_IN]
    assert transport.events[0].payload == {"userId": 1}
    assert publisher.pending == 0


def test_retry_until_delivered():
    """Failed deliveries are retried within the attempt budget."""
    transport = FlakyTransport(failures=2)
    publisher = EventPublisher(transport, max_attempts=3, backoff_seconds=0)
    publisher.publish(USER_LOGGED_IN, {"userId": 1})

    publisher.drain()

    assert transport.attempts == 3
    assert len(transport.delivered) == 1
    assert transport.delivered[0].attempts == 3


def test_gives_up_after_max_attempts():
    """An event that never gets through is dropped after the last attempt."""
    transport = FlakyTransport(failures=100)
    publisher = EventPublisher(transport, max_attempts=3, backoff_seconds=0)
    publisher.publish(USER_LOGGED_IN, {"userId": 1})

    assert publisher.drain() == 1
    assert transport.attempts == 3
    assert transport.delivered == []


def test_full_queue_drops_event(transport):
    """Publishing into a full queue drops the event without raising."""
    publisher = EventPublisher(transport, max_queue_size=1)

    assert publisher.publish(USER_LOGGED_IN, {"userId": 1}) is True
    assert publisher.publish(USER_LOGGED_IN, {"userId": 2}) is False
    assert publisher.pending == 1


def test_disabled_publisher(transport):
    """A disabled publisher queues nothing."""
    publisher = EventPublisher(transport, enabled=False)

    assert publisher.publish(USER_LOGGED_IN, {"userId": 1}) is False
    assert publisher.pending == 0


def test_worker_delivers_in_background(transport):
    """The worker thread delivers queued events and flushes them on stop."""
    publisher = EventPublisher(transport, backoff_seconds=0)
    publisher.start()
    try:
        publisher.publish(USER_LOGGED_IN, {"userId": 1})
        deadline = time.monotonic() + 5
        while not transport.events and time.monotonic() < deadline:
            time.sleep(0.01)
        publisher.publish(USER_LOGGED_IN, {"userId": 2})
    finally:
        publisher.stop()

    assert publisher.running is False
    assert [event.payload["userId"] for event in transport.events] == [1, 2]


class GatedTransport:
    """Transport that blocks every delivery until the gate opens."""

    def __init__(self):
        self.gate = threading.Event()
        self.entered = threading.Event()
        self.delivered = []
        self.closed = False

    def __call__(self, event):
        self.entered.set()
        self.gate.wait(10)
        self.delivered.append(event)

    def close(self):
        self.closed = True


def test_stop_returns_when_queue_is_full_and_transport_blocked():
    """Stopping with a stuck delivery and a full queue honours the timeout."""
    transport = GatedTransport()
    publisher = EventPublisher(transport, max_queue_size=1, backoff_seconds=0)
    publisher.start()
    try:
        publisher.publish(USER_LOGGED_IN, {"userId": 1})
        assert transport.entered.wait(5)
        # The worker is busy with the first event, so the second one fills the queue
        assert publisher.publish(USER_LOGGED_IN, {"userId": 2}) is True

        started = time.monotonic()
        publisher.stop(timeout=1.0)
        elapsed = time.monotonic() - started

        assert elapsed < 3.0
        # Verify the transport stays open while the worker is still delivering
        assert publisher.running is True
        assert transport.closed is False
    finally:
        transport.gate.set()
        publisher.stop(timeout=5.0)

    assert publisher.running is False
    assert transport.closed is True
    assert [event.payload["userId"] for event in transport.delivered] == [1, 2]


def test_event_body():
    """Serialized events carry id, type, payload and timestamp only."""
    body = Event(type=USER_LOGGED_IN, payload={"userId": 1}).to_dict()

    assert set(body) == {"id", "type", "payload", "occurred_at"}


def test_http_transport_posts_json():
    """The webhook transport posts the event body and raises on error status."""
    received = []

    def handler(request):
        received.append(request)
        return httpx.Response(202)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    transport = HttpTransport("http://hooks.local/events", client=client)
    event = Event(type=USER_LOGGED_IN, payload={"userId": 1})

    transport(event)

    assert received[0].method == "POST"
    assert received[0].url == "http://hooks.local/events"
    assert b'"user.logged_in"' in received[0].content
    transport.close()


def test_http_transport_error_counts_as_failed_attempt():
    """Non-2xx answers are failed deliveries."""
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    publisher = EventPublisher(HttpTransport("http://hooks.local/events", client=client),
                               max_attempts=2, backoff_seconds=0)
    publisher.publish(USER_LOGGED_IN, {"userId": 1})

    assert publisher.drain() == 1
