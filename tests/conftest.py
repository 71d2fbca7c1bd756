import os
from unittest.mock import Mock
from urllib.parse import urlencode

from cryptography.fernet import Fernet

# Settings are read once at import time; configure them before any app import
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-state-secret"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["CALENDAR_ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["USE_CALENDAR_MOCKS"] = "false"
os.environ["CALENDAR_REQUIRE_OAUTH_STATE"] = "false"
os.environ["BASE_URL"] = "https://api.notes.test"
os.environ["GOOGLE_CALENDAR_CLIENT_ID"] = "google-client-id"
os.environ["GOOGLE_CALENDAR_CLIENT_SECRET"] = "google-client-secret"
os.environ["MICROSOFT_CALENDAR_CLIENT_ID"] = "microsoft-client-id"
os.environ["MICROSOFT_CALENDAR_CLIENT_SECRET"] = "microsoft-client-secret"

import pytest  # noqa: E402

from app.config.settings import get_settings  # noqa: E402

get_settings.cache_clear()

from tests.factories import setup_db  # noqa: E402


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def db():
    session = setup_db()()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def msal_app(monkeypatch):
    """MSAL discovers authority metadata over the network; hand every test an offline client."""
    from app.services.calendar import outlook_service

    def authorization_request_url(scopes, state=None, redirect_uri=None):
        query = urlencode({"client_id": "microsoft-client-id", "scope": " ".join(scopes),
                           "redirect_uri": redirect_uri, "state": state})
        return f"{outlook_service.OutlookCalendarService.AUTHORITY}/oauth2/v2.0/authorize?{query}"

    app = Mock()
    app.get_authorization_request_url.side_effect = authorization_request_url
    monkeypatch.setattr(outlook_service.msal, "ConfidentialClientApplication", Mock(return_value=app))
    outlook_service._confidential_client.cache_clear()
    yield app
    outlook_service._confidential_client.cache_clear()
