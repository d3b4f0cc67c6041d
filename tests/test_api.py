"""
Tests for the API endpoints.

This module tests the FastAPI endpoints for login, verification, refresh,
logout and registration provided by the session_core.api module, and the
health and metrics endpoints of the application.
"""
import pytest
from fastapi import status
from fastapi.testclient import TestClient

from session_core.app import create_app
from session_core.user_service import UserServiceError

from conftest import TEST_EMAIL, TEST_PASSWORD


def _login(client, email=TEST_EMAIL, password=TEST_PASSWORD):
    return client.post("/auth/login", json={"email": email, "password": password})


def test_login_success(client, api_user):
    """Test successful login."""
    response = _login(client)

    # Verify response
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["user"] == {"id": api_user.id, "email": TEST_EMAIL}
    assert data["accessToken"]
    assert "refreshToken" not in data

    # Verify the refresh cookie
    assert response.cookies.get("jwt")
    set_cookie = response.headers["set-cookie"].lower()
    assert "httponly" in set_cookie
    assert "samesite=strict" in set_cookie
    assert "max-age=604800" in set_cookie


def test_login_failures_look_the_same(client, api_user):
    """Unknown user and wrong password give the same status and body."""
    unknown = _login(client, email="nobody@acme.io")
    wrong = _login(client, password="Wrong-Password1")

    assert unknown.status_code == wrong.status_code == status.HTTP_401_UNAUTHORIZED
    assert unknown.json() == wrong.json() == {"detail": "Invalid credentials", "code": "INVALID_CREDENTIALS"}
    assert "jwt" not in wrong.cookies


def test_login_missing_field(client):
    """Missing fields are a 400 with field details."""
    response = client.post("/auth/login", json={"email": TEST_EMAIL})

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    data = response.json()
    assert data["code"] == "VALIDATION_ERROR"
    assert data["details"][0]["field"] == "password"


def test_login_empty_field(client):
    """Empty strings are a 400 as well."""
    response = client.post("/auth/login", json={"email": "", "password": ""})

    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_login_lockout_annotation(client, api_user, test_settings):
    """The failure that reaches the lockout threshold is annotated."""
    for _ in range(test_settings.MAX_FAILED_LOGINS - 1):
        response = _login(client, password="Wrong-Password1")
        assert "locked" not in response.json()

    response = _login(client, password="Wrong-Password1")

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["locked"] is True


def test_login_rate_limit(test_settings, database, transport, api_user):
    """Failed logins beyond the window budget are rejected with 429."""
    app = create_app(test_settings.model_copy(update={"LOGIN_RATE_MAX": 2}), database=database,
                     event_transport=transport)
    client = TestClient(app)

    for _ in range(2):
        assert _login(client, password="Wrong-Password1").status_code == status.HTTP_401_UNAUTHORIZED

    response = _login(client, password="Wrong-Password1")

    assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
    data = response.json()
    assert data["code"] == "RATE_LIMIT_EXCEEDED"
    assert 0 < data["retry_after"] <= test_settings.LOGIN_RATE_WINDOW_SECONDS
    assert response.headers["retry-after"] == str(data["retry_after"])


def test_successful_logins_do_not_consume_budget(test_settings, database, transport, api_user):
    """Only failed logins count towards the login window."""
    client = TestClient(create_app(test_settings.model_copy(update={"LOGIN_RATE_MAX": 2}), database=database,
                                   event_transport=transport))

    for _ in range(5):
        assert _login(client).status_code == status.HTTP_200_OK


def test_verify(client, api_user):
    """Test verifying an access token."""
    access_token = _login(client).json()["accessToken"]

    response = client.post("/auth/verify", headers={"Authorization": f"Bearer {access_token}"})

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"valid": True, "user": {"id": api_user.id, "email": TEST_EMAIL}}


@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer garbage"}, {"Authorization": "Basic abc"}])
def test_verify_rejected(client, headers):
    """Every verification failure is the same 401."""
    response = client.post("/auth/verify", headers=headers)

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json() == {"valid": False}


def test_refresh(client, api_user):
    """Test refreshing with the cookie set at login."""
    first = _login(client).json()["accessToken"]

    response = client.post("/auth/refresh")

    assert response.status_code == status.HTTP_200_OK
    second = response.json()["accessToken"]
    assert second != first
    # The refresh token is not rotated
    assert "jwt" not in response.cookies


def test_refresh_without_cookie(client):
    """No cookie is a 401."""
    response = client.post("/auth/refresh")

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["code"] == "TOKEN_REJECTED"


def test_refresh_with_bad_cookie(client):
    """A cookie that is not a refresh token is a 403."""
    client.cookies.set("jwt", "garbage")

    response = client.post("/auth/refresh")

    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_logout(client, api_user, app):
    """Test logging out clears the cookie and the session row."""
    _login(client)

    response = client.post("/auth/logout")

    assert response.status_code == status.HTTP_204_NO_CONTENT
    assert "jwt=" in response.headers["set-cookie"]
    assert app.state.auth_manager.token_store.get_session(api_user.id) is None


def test_logout_without_credentials(client):
    """Logging out without any credential counts as already logged out."""
    response = client.post("/auth/logout")

    assert response.status_code == status.HTTP_204_NO_CONTENT


def test_logout_store_failure(client, api_user, database):
    """A failing store delete is a 500 and still clears the cookie."""
    _login(client)
    database.drop_all()

    response = client.post("/auth/logout")

    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert response.json()["detail"] == "Server error"
    assert "jwt=" in response.headers["set-cookie"]

    database.create_all()


def test_logout_with_superseded_refresh_token_keeps_newer_session(client, app, api_user):
    """Logging out on an old device leaves the session of the newer device alone."""
    old_device = client
    _login(old_device)
    new_device = TestClient(app)
    _login(new_device)

    assert old_device.post("/auth/refresh").status_code == status.HTTP_403_FORBIDDEN
    logout = old_device.post("/auth/logout")

    assert logout.status_code == status.HTTP_204_NO_CONTENT
    assert "jwt=" in logout.headers["set-cookie"]
    assert new_device.post("/auth/refresh").status_code == status.HTTP_200_OK


def test_end_to_end_session(client, api_user):
    """Login, refresh, logout, then the old refresh token is refused."""
    login = _login(client)
    assert login.status_code == status.HTTP_200_OK
    access_1 = login.json()["accessToken"]
    refresh_1 = login.cookies.get("jwt")
    assert refresh_1

    refreshed = client.post("/auth/refresh")
    assert refreshed.status_code == status.HTTP_200_OK
    assert refreshed.json()["accessToken"] != access_1

    logout = client.post("/auth/logout")
    assert logout.status_code in (status.HTTP_200_OK, status.HTTP_204_NO_CONTENT)

    client.cookies.set("jwt", refresh_1)
    replay = client.post("/auth/refresh")
    assert replay.status_code == status.HTTP_403_FORBIDDEN

    # The access token issued before logout still verifies until it expires
    verify = client.post("/auth/verify", headers={"Authorization": f"Bearer {access_1}"})
    assert verify.status_code == status.HTTP_200_OK


def test_register(client):
    """Test registering a new user."""
    response = client.post(
        "/auth/register",
        json={"email": "carol@acme.io", "password": "Str0ng-Password", "username": "carol"},
    )

    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    assert data["user"]["email"] == "carol@acme.io"
    assert data["accessToken"]
    assert "warning" not in data
    assert response.cookies.get("jwt")


def test_register_existing_user(client, api_user):
    """Registering an existing email is a 400."""
    response = client.post("/auth/register", json={"email": TEST_EMAIL, "password": "Str0ng-Password"})

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["code"] == "USER_EXISTS"


def test_register_invalid_email(client):
    """Malformed emails are a 400."""
    response = client.post("/auth/register", json={"email": "not-an-email", "password": "Str0ng-Password"})

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["details"][0]["field"] == "email"


def test_register_weak_password(client):
    """Weak passwords are a 400 listing the failed rules."""
    response = client.post("/auth/register", json={"email": "dave@acme.io", "password": "weak"})

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["details"]["errors"]


class FailingUserService:
    def create_profile(self, auth_user_id, username):
        raise UserServiceError("User service unavailable")

    def close(self):
        pass


def test_register_partial_success(test_settings, database, transport):
    """A downstream failure still answers 201, with a warning."""
    client = TestClient(create_app(test_settings, database=database, event_transport=transport,
                                   user_service=FailingUserService()))

    response = client.post("/auth/register", json={"email": "erin@acme.io", "password": "Str0ng-Password"})

    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    assert data["warning"] == "User service unavailable"
    assert "partially successful" in data["message"]


def test_auth_responses_are_not_cacheable(client, api_user):
    """Token-bearing auth responses forbid caching, errors included."""
    responses = [
        _login(client),
        client.post("/auth/refresh"),
        client.post("/auth/register", json={"email": "frank@acme.io", "password": "Str0ng-Password"}),
        _login(client, password="Wrong-Password1"),
    ]

    for response in responses:
        assert response.headers["cache-control"] == "no-store"
        assert response.headers["pragma"] == "no-cache"

    # Verify non-auth routes are untouched
    assert "pragma" not in client.get("/health").headers


def test_health(client):
    """Test the health endpoints."""
    assert client.get("/health").json()["status"] == "healthy"

    detailed = client.get("/health/detailed").json()
    assert detailed["cache"]["max_size"] == 1000
    assert detailed["cleanup"]["is_running"] is False
    assert "pending" in detailed["events"]


def test_metrics(client, api_user):
    """Metrics are exposed in the Prometheus text format."""
    _login(client)

    response = client.get("/metrics")

    assert response.status_code == status.HTTP_200_OK
    assert "auth_operations_total" in response.text


def test_lifecycle_starts_and_stops_background_workers(test_settings, database, transport):
    """Startup creates the schema and starts the workers; shutdown stops them."""
    app = create_app(test_settings.model_copy(update={"CLEANUP_ENABLED": True}), database=database,
                     event_transport=transport)

    with TestClient(app) as client:
        assert client.get("/health").status_code == status.HTTP_200_OK
        assert app.state.sweeper.is_running is True
        assert app.state.publisher.running is True

    assert app.state.sweeper.is_running is False
    assert app.state.publisher.running is False
