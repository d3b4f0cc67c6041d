"""
Test fixtures for the Session Core Component.

This module provides pytest fixtures for database, component and API
testing, including in-memory database setup, a controllable clock, a
recording event transport, the test client, and a test user.
"""
import pytest
from fastapi.testclient import TestClient

from session_core.app import create_app
from session_core.auth import AuthenticationManager
from session_core.cache import VerificationCache
from session_core.config import Settings
from session_core.database import Database
from session_core.events import EventPublisher
from session_core.identity import SqlIdentitySource
from session_core.security import PasswordManager
from session_core.throttling import LockoutTracker
from session_core.token import TokenIssuer
from session_core.token_store import TokenStore

TEST_EMAIL = "alice@acme.io"
TEST_PASSWORD = "Correct-Horse1"


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingTransport:
    """Event transport that keeps every delivered event."""

    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    @property
    def types(self):
        return [event.type for event in self.events]


@pytest.fixture(scope="function")
def test_settings():
    """Settings with fixed secrets, cheap hashing and generous rate limits."""
    return Settings(
        ACCESS_TOKEN_SECRET="access-secret-for-the-test-suite-0123456789",
        REFRESH_TOKEN_SECRET="refresh-secret-for-the-test-suite-0123456789",
        DATABASE_URL="sqlite://",
        BCRYPT_ROUNDS=4,
        LOGIN_RATE_MAX=1000,
        REGISTER_RATE_MAX=1000,
        REFRESH_RATE_MAX=1000,
        GENERAL_RATE_MAX=1000,
        CLEANUP_ENABLED=False,
        EVENTS_ENABLED=True,
        EVENT_RETRY_BACKOFF_SECONDS=0,
        EVENT_WEBHOOK_URL=None,
        USER_SERVICE_URL=None,
    )


@pytest.fixture(scope="function")
def database():
    """Create an in-memory test database."""
    db = Database("sqlite://", echo=False)
    db.create_all()
    yield db
    db.drop_all()
    db.dispose()


@pytest.fixture(scope="function")
def clock():
    return FakeClock()


@pytest.fixture(scope="function")
def transport():
    return RecordingTransport()


@pytest.fixture(scope="function")
def identity_source(database):
    return SqlIdentitySource(database)


@pytest.fixture(scope="function")
def password_manager():
    return PasswordManager(rounds=4)


@pytest.fixture(scope="function")
def issuer(test_settings):
    return TokenIssuer(test_settings)


@pytest.fixture(scope="function")
def token_store(database):
    return TokenStore(database)


@pytest.fixture(scope="function")
def cache(identity_source, clock):
    return VerificationCache(identity_source.find_by_id, max_size=100, ttl_seconds=900, clock=clock)


@pytest.fixture(scope="function")
def lockout_tracker(clock):
    return LockoutTracker(max_failures=3, duration_seconds=60, clock=clock)


@pytest.fixture(scope="function")
def publisher(transport):
    """Publisher whose queue the tests drain by hand."""
    return EventPublisher(transport, max_queue_size=100, max_attempts=3, backoff_seconds=0)


@pytest.fixture(scope="function")
def auth_manager(identity_source, password_manager, issuer, token_store, cache, lockout_tracker, publisher):
    """Authentication manager over the in-memory components."""
    return AuthenticationManager(
        identity_source=identity_source,
        password_manager=password_manager,
        issuer=issuer,
        token_store=token_store,
        cache=cache,
        lockout_tracker=lockout_tracker,
        publisher=publisher,
    )


@pytest.fixture(scope="function")
def test_user(identity_source, password_manager):
    """Create a test user."""
    return identity_source.create(TEST_EMAIL, password_manager.hash_password(TEST_PASSWORD))


@pytest.fixture(scope="function")
def app(test_settings, database, transport):
    """Application wired to the test database."""
    return create_app(test_settings, database=database, event_transport=transport)


@pytest.fixture(scope="function")
def client(app):
    """Create a FastAPI test client."""
    return TestClient(app)


@pytest.fixture(scope="function")
def api_user(app):
    """Create a test user through the application's own identity source."""
    manager = app.state.auth_manager
    return manager.identity_source.create(TEST_EMAIL, manager.password_manager.hash_password(TEST_PASSWORD))
