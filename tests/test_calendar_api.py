from datetime import datetime, timedelta, timezone
from unittest.mock import Mock
from urllib.parse import parse_qs, urlparse
import uuid

import pytest
from fastapi.testclient import TestClient

from app.api.dependencies import get_calendar_service
from app.config.database import get_db
from app.core.exceptions import TransportError, UpstreamAuthError
from app.main import create_app
from app.models import CalendarConnection, CalendarProvider
from app.schemas.calendar import CalendarEvent, CalendarInfo, Platform
from app.services.calendar.base_provider import CalendarProviderAdapter, OAuthAccountInfo, OAuthTokens
from app.services.calendar.calendar_connection_service import (
    RECONNECT_MESSAGE,
    CalendarConnectionService,
    RefreshLockRegistry,
)
from app.services.calendar.oauth_state import encode_state
from tests.factories import create_access_token, make_connection, minutes_from_now

TOKEN_FIELDS = {"access_token", "refresh_token", "token_expires_at"}


@pytest.fixture
def adapter():
    adapter = Mock(spec=CalendarProviderAdapter)
    adapter.provider = CalendarProvider.GOOGLE
    adapter.build_authorize_url.side_effect = lambda callback_url, state: (
        f"https://accounts.google.test/auth?state={state}"
    )
    adapter.exchange_code.return_value = OAuthTokens("at-1", "rt-1", minutes_from_now(60))
    adapter.fetch_account_info.return_value = OAuthAccountInfo(email="a@x.com", name="Ada")
    adapter.refresh_token.return_value = OAuthTokens("at-new", "refresh-1", minutes_from_now(60))
    adapter.list_calendars.return_value = [CalendarInfo(id="primary", name="Primary", is_primary=True)]
    adapter.list_events.return_value = [
        CalendarEvent(
            id="evt-1",
            calendar_id="primary",
            title="Standup",
            start_time=datetime(2025, 1, 6, 9, tzinfo=timezone.utc),
            end_time=datetime(2025, 1, 6, 9, 30, tzinfo=timezone.utc),
        )
    ]
    return adapter


@pytest.fixture
def app(db, settings, adapter):
    app = create_app()

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_calendar_service] = lambda: CalendarConnectionService(
        db,
        settings=settings,
        providers={CalendarProvider.GOOGLE: adapter},
        locks=RefreshLockRegistry(),
    )
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def auth_headers(user_id="user-a"):
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


# ----------------------------------------------------------------------
# Authentication
# ----------------------------------------------------------------------

def test_requires_bearer_token(client):
    response = client.get("/api/v1/calendar/connections")
    assert response.status_code in (401, 403)


def test_rejects_invalid_token(client):
    response = client.get("/api/v1/calendar/connections", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_rejects_non_access_token(client):
    token = create_access_token({"sub": "user-a"}, token_type="refresh")

    response = client.get("/api/v1/calendar/connections", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


def test_rejects_expired_token(client):
    token = create_access_token({"sub": "user-a"}, expires_delta=timedelta(minutes=-1))

    response = client.get("/api/v1/calendar/connections", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


# ----------------------------------------------------------------------
# Connect flow
# ----------------------------------------------------------------------

def test_connect_returns_url_and_state(client, adapter):
    response = client.post(
        "/api/v1/calendar/connect",
        json={"provider": "google", "redirect_url": "k7notes://calendar/callback"},
        headers=auth_headers(),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["state"].startswith("google:mobile:user-a:")
    assert body["url"] == f"https://accounts.google.test/auth?state={body['state']}"
    callback_url = adapter.build_authorize_url.call_args.args[0]
    assert callback_url == "https://api.notes.test/api/v1/calendar/oauth/callback"


def test_connect_unknown_provider_is_422(client):
    response = client.post("/api/v1/calendar/connect", json={"provider": "yahoo"}, headers=auth_headers())
    assert response.status_code == 422


def test_connect_configured_provider_missing_is_400(client):
    response = client.post("/api/v1/calendar/connect", json={"provider": "microsoft"}, headers=auth_headers())

    assert response.status_code == 400
    assert "Unsupported calendar provider" in response.json()["detail"]


def test_callback_stores_connection_without_secrets(client, db, settings):
    state = encode_state("google", Platform.WEB, "user-a", secret=settings.SECRET_KEY)

    response = client.post(
        "/api/v1/calendar/callback",
        json={"provider": "google", "code": "code123", "state": state},
        headers=auth_headers(),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["account_email"] == "a@x.com"
    assert body["is_active"] is True
    assert not TOKEN_FIELDS & set(body)
    assert db.query(CalendarConnection).count() == 1


def test_callback_with_other_users_state_is_400(client, adapter, settings):
    state = encode_state("google", Platform.WEB, "user-b", secret=settings.SECRET_KEY)

    response = client.post(
        "/api/v1/calendar/callback",
        json={"provider": "google", "code": "code123", "state": state},
        headers=auth_headers(),
    )

    assert response.status_code == 400
    assert response.json() == {"detail": "Invalid OAuth state: user mismatch"}
    adapter.exchange_code.assert_not_called()


def test_callback_requires_code(client):
    response = client.post(
        "/api/v1/calendar/callback", json={"provider": "google", "code": ""}, headers=auth_headers()
    )
    assert response.status_code == 422


def test_callback_rejected_by_vendor_is_502(client, adapter):
    adapter.exchange_code.side_effect = UpstreamAuthError("google rejected the request to exchange the authorization code")

    response = client.post(
        "/api/v1/calendar/callback", json={"provider": "google", "code": "stale"}, headers=auth_headers()
    )

    assert response.status_code == 502


# ----------------------------------------------------------------------
# Connections
# ----------------------------------------------------------------------

def test_list_connections_only_returns_callers(client, db):
    mine = make_connection(db, user_id="user-a")
    make_connection(db, user_id="user-b", account_email="b@x.com")

    response = client.get("/api/v1/calendar/connections", headers=auth_headers())

    assert response.status_code == 200
    body = response.json()
    assert [c["id"] for c in body] == [str(mine.id)]
    assert not TOKEN_FIELDS & set(body[0])


def test_disconnect_then_not_found(client, db):
    connection = make_connection(db)

    first = client.delete(f"/api/v1/calendar/connections/{connection.id}", headers=auth_headers())
    second = client.delete(f"/api/v1/calendar/connections/{connection.id}", headers=auth_headers())

    assert first.status_code == 200
    assert first.json() == {"success": True}
    assert second.status_code == 404
    assert second.json() == {"detail": "Calendar connection not found"}


def test_disconnect_bad_id_is_422(client):
    response = client.delete("/api/v1/calendar/connections/not-a-uuid", headers=auth_headers())
    assert response.status_code == 422


def test_list_calendars(client, db):
    connection = make_connection(db)

    response = client.get(f"/api/v1/calendar/connections/{connection.id}/calendars", headers=auth_headers())

    assert response.status_code == 200
    assert response.json()[0]["id"] == "primary"
    assert response.json()[0]["is_primary"] is True


def test_list_calendars_failed_refresh_asks_to_reconnect(client, db, adapter):
    connection = make_connection(db, expires_at=minutes_from_now(-1))
    adapter.refresh_token.side_effect = UpstreamAuthError("google rejected the request")

    first = client.get(f"/api/v1/calendar/connections/{connection.id}/calendars", headers=auth_headers())
    second = client.get(f"/api/v1/calendar/connections/{connection.id}/calendars", headers=auth_headers())

    assert first.status_code == 400
    assert first.json() == {"detail": RECONNECT_MESSAGE}
    assert second.status_code == 404


def test_list_calendars_vendor_failure_is_502(client, db, adapter):
    connection = make_connection(db)
    adapter.list_calendars.side_effect = TransportError("Failed to retrieve calendars from google")

    response = client.get(f"/api/v1/calendar/connections/{connection.id}/calendars", headers=auth_headers())

    assert response.status_code == 502
    assert response.json() == {"detail": "Failed to retrieve calendars from google"}


# ----------------------------------------------------------------------
# Events
# ----------------------------------------------------------------------

def events_payload(connection_id, **overrides):
    payload = {
        "connection_id": str(connection_id),
        "start_date": "2025-01-06T00:00:00Z",
        "end_date": "2025-01-13T00:00:00Z",
    }
    payload.update(overrides)
    return payload


def test_list_events_uses_defaults(client, db, adapter):
    connection = make_connection(db)

    response = client.post("/api/v1/calendar/events", json=events_payload(connection.id), headers=auth_headers())

    assert response.status_code == 200
    assert response.json()[0]["title"] == "Standup"
    access_token, calendar_id, start, end, max_results = adapter.list_events.call_args.args
    assert access_token == "access-1"
    assert calendar_id == "primary"
    assert start == datetime(2025, 1, 6, tzinfo=timezone.utc)
    assert max_results == 50


@pytest.mark.parametrize("max_results", [0, 101])
def test_list_events_rejects_out_of_range_max_results(client, max_results):
    response = client.post(
        "/api/v1/calendar/events",
        json=events_payload(uuid.uuid4(), max_results=max_results),
        headers=auth_headers(),
    )
    assert response.status_code == 422


def test_list_events_rejects_inverted_range(client):
    response = client.post(
        "/api/v1/calendar/events",
        json=events_payload(uuid.uuid4(), start_date="2025-01-13T00:00:00Z", end_date="2025-01-06T00:00:00Z"),
        headers=auth_headers(),
    )
    assert response.status_code == 422


def test_list_events_unknown_connection_is_404(client):
    response = client.post("/api/v1/calendar/events", json=events_payload(uuid.uuid4()), headers=auth_headers())

    assert response.status_code == 404
    assert response.json() == {"detail": "Calendar connection not found or inactive"}


# ----------------------------------------------------------------------
# Vendor redirect
# ----------------------------------------------------------------------

def redirect_target(response):
    assert response.status_code == 302
    location = urlparse(response.headers["location"])
    return location, parse_qs(location.query)


def test_oauth_redirect_to_mobile_app(client, settings):
    state = encode_state("google", Platform.MOBILE, "user-a", secret=settings.SECRET_KEY)

    response = client.get(
        "/api/v1/calendar/oauth/callback", params={"code": "abc", "state": state}, follow_redirects=False
    )

    location, query = redirect_target(response)
    assert location.scheme == "k7notes"
    assert location.netloc == "calendar"
    assert query == {"code": ["abc"], "state": [state]}


def test_oauth_redirect_to_web_app(client, settings):
    state = encode_state("microsoft", Platform.WEB, "user-a", secret=settings.SECRET_KEY)

    response = client.get(
        "/api/v1/calendar/oauth/callback", params={"code": "abc", "state": state}, follow_redirects=False
    )

    location, query = redirect_target(response)
    assert response.headers["location"].startswith(settings.CALENDAR_WEB_CALLBACK_URL + "?")
    assert query["code"] == ["abc"]


def test_oauth_redirect_forwards_vendor_error(client, settings):
    state = encode_state("google", Platform.MOBILE, "user-a", secret=settings.SECRET_KEY)

    response = client.get(
        "/api/v1/calendar/oauth/callback",
        params={"error": "access_denied", "state": state},
        follow_redirects=False,
    )

    location, query = redirect_target(response)
    assert location.scheme == "k7notes"
    assert query == {"error": ["access_denied"]}


def test_oauth_redirect_missing_code(client):
    response = client.get("/api/v1/calendar/oauth/callback", follow_redirects=False)

    location, query = redirect_target(response)
    assert query == {"error": ["Missing authorization code"]}


def test_oauth_redirect_is_rate_limited(client, settings):
    statuses = [
        client.get("/api/v1/calendar/oauth/callback", follow_redirects=False).status_code
        for _ in range(settings.CALENDAR_CALLBACK_RATE_LIMIT + 1)
    ]

    assert statuses[:-1] == [302] * settings.CALENDAR_CALLBACK_RATE_LIMIT
    assert statuses[-1] == 429


# ----------------------------------------------------------------------
# Monitoring
# ----------------------------------------------------------------------

def test_health(client):
    assert client.get("/health/").json()["status"] == "healthy"


def test_detailed_health_reports_database_and_mode(client):
    body = client.get("/health/detailed").json()

    assert body["database"] == "healthy"
    assert body["calendar_providers"] == "live"
    assert body["overall"] == "healthy"


def test_correlation_id_is_echoed(client):
    response = client.get("/health/", headers={"X-Correlation-ID": "abc-123"})
    assert response.headers["X-Correlation-ID"] == "abc-123"
