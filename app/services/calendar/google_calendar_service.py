# app/services/calendar/google_calendar_service.py
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote
import logging

import requests
from google.auth.exceptions import RefreshError, TransportError as GoogleTransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from app.core.exceptions import TransportError, UpstreamAuthError
from app.models.calendar_connection import CalendarProvider
from app.schemas.calendar import (
    AccessRole,
    CalendarEvent,
    CalendarInfo,
    EventAttendee,
    EventPerson,
    EventStatus,
    ResponseStatus,
)
from app.services.calendar.base_provider import (
    CalendarProviderAdapter,
    OAuthAccountInfo,
    OAuthTokens,
    to_utc_iso,
)

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"

_ACCESS_ROLES = {role.value: role for role in AccessRole}
_EVENT_STATUSES = {s.value: s for s in EventStatus}
_RESPONSE_STATUSES = {
    "accepted": ResponseStatus.ACCEPTED,
    "declined": ResponseStatus.DECLINED,
    "tentative": ResponseStatus.TENTATIVE,
}


def _parse_google_time(value: Dict[str, Any]) -> datetime:
    """Google sends either ``dateTime`` (RFC3339) or ``date`` (all-day)."""
    raw = value.get("dateTime") or value.get("date") or ""
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class TimeoutRequest(Request):
    """google-auth transport that applies our vendor timeout to token refreshes"""

    def __init__(self, timeout: float):
        super().__init__()
        self.timeout = timeout

    def __call__(self, url, method="GET", body=None, headers=None, timeout=None, **kwargs):
        return super().__call__(
            url, method=method, body=body, headers=headers, timeout=timeout or self.timeout, **kwargs
        )


def _tokens_from_credentials(credentials: Credentials, previous_refresh_token: Optional[str] = None) -> OAuthTokens:
    expiry = credentials.expiry
    # google-auth keeps expiry as naive UTC
    if expiry is not None and expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return OAuthTokens(
        access_token=credentials.token,
        refresh_token=credentials.refresh_token or previous_refresh_token,
        expires_at=expiry,
    )


class GoogleCalendarService(CalendarProviderAdapter):
    provider = CalendarProvider.GOOGLE
    SCOPES = [
        "openid",
        "https://www.googleapis.com/auth/calendar.readonly",
        "https://www.googleapis.com/auth/userinfo.email",
        "https://www.googleapis.com/auth/userinfo.profile",
    ]

    @property
    def client_id(self) -> str:
        return self.settings.GOOGLE_CALENDAR_CLIENT_ID

    @property
    def client_secret(self) -> str:
        return self.settings.GOOGLE_CALENDAR_CLIENT_SECRET

    def _client_config(self, callback_url: str) -> Dict[str, Any]:
        return {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uris": [callback_url],
                "auth_uri": GOOGLE_AUTH_URL,
                "token_uri": GOOGLE_TOKEN_URL,
            }
        }

    def _flow(self, callback_url: str) -> Flow:
        flow = Flow.from_client_config(
            self._client_config(callback_url),
            scopes=self.SCOPES,
            redirect_uri=callback_url,
        )
        # No PKCE: the flow object does not survive between connect and callback
        flow.autogenerate_code_verifier = False
        flow.code_verifier = None
        return flow

    def build_authorize_url(self, callback_url: str, state: str) -> str:
        """Step 1: OAuth URL the user visits to grant calendar access"""
        authorization_url, _ = self._flow(callback_url).authorization_url(
            access_type="offline",  # Gets refresh token
            prompt="consent",  # Force consent screen to get refresh token
            state=state,
        )
        return authorization_url

    def exchange_code(self, code: str, callback_url: str) -> OAuthTokens:
        """Step 2: Exchange authorization code for tokens"""
        flow = self._flow(callback_url)
        try:
            flow.fetch_token(code=code, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"google: code exchange request failed: {e}")
            raise TransportError("Could not reach google to exchange the authorization code") from e
        except (OAuth2Error, ValueError) as e:
            logger.error(f"google: code exchange rejected: {e}")
            raise UpstreamAuthError("google rejected the request to exchange the authorization code") from e

        tokens = _tokens_from_credentials(flow.credentials)
        if not tokens.access_token:
            raise UpstreamAuthError("google rejected the request to exchange the authorization code")
        logger.info("Successfully exchanged Google authorization code for tokens")
        return tokens

    def refresh_token(self, refresh_token: str) -> OAuthTokens:
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=GOOGLE_TOKEN_URL,
            client_id=self.client_id,
            client_secret=self.client_secret,
        )
        try:
            credentials.refresh(TimeoutRequest(self.timeout))
        except GoogleTransportError as e:
            logger.error(f"google: token refresh request failed: {e}")
            raise TransportError("Could not reach google to refresh the access token") from e
        except RefreshError as e:
            logger.error(f"google: token refresh rejected: {e}")
            raise UpstreamAuthError("google rejected the request to refresh the access token") from e

        tokens = _tokens_from_credentials(credentials, previous_refresh_token=refresh_token)
        if not tokens.access_token:
            raise UpstreamAuthError("google rejected the request to refresh the access token")
        return tokens

    def fetch_account_info(self, access_token: str) -> OAuthAccountInfo:
        data = self._get_json(GOOGLE_USERINFO_URL, access_token, action="retrieve account information")
        return OAuthAccountInfo(email=data["email"], name=data.get("name") or None)

    def list_calendars(self, access_token: str) -> List[CalendarInfo]:
        data = self._get_json(
            f"{GOOGLE_CALENDAR_API}/users/me/calendarList",
            access_token,
            action="retrieve calendars",
        )
        return [
            CalendarInfo(
                id=cal["id"],
                name=cal.get("summary") or "Untitled",
                description=cal.get("description") or None,
                is_primary=cal.get("primary") is True,
                access_role=_ACCESS_ROLES.get(cal.get("accessRole") or "reader", AccessRole.READER),
                background_color=cal.get("backgroundColor") or None,
            )
            for cal in data.get("items", [])
        ]

    def list_events(
            self,
            access_token: str,
            calendar_id: str,
            start_date: datetime,
            end_date: datetime,
            max_results: int
    ) -> List[CalendarEvent]:
        params = {
            "timeMin": to_utc_iso(start_date),
            "timeMax": to_utc_iso(end_date),
            "maxResults": str(max_results),
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        data = self._get_json(
            f"{GOOGLE_CALENDAR_API}/calendars/{quote(calendar_id, safe='')}/events",
            access_token,
            action="retrieve events",
            params=params,
        )
        return [self._map_event(item, calendar_id) for item in data.get("items", [])]

    @staticmethod
    def _map_event(event: Dict[str, Any], calendar_id: str) -> CalendarEvent:
        start = event.get("start") or {}
        end = event.get("end") or {}
        organizer: Optional[Dict[str, Any]] = event.get("organizer")

        return CalendarEvent(
            id=event["id"],
            calendar_id=calendar_id,
            title=event.get("summary") or "Untitled",
            description=event.get("description") or None,
            location=event.get("location") or None,
            start_time=_parse_google_time(start),
            end_time=_parse_google_time(end),
            # All-day events carry a date without time of day
            is_all_day=bool(start.get("date")),
            status=_EVENT_STATUSES.get(event.get("status") or "confirmed", EventStatus.CONFIRMED),
            organizer=(
                EventPerson(email=organizer["email"], name=organizer.get("displayName") or None)
                if organizer and organizer.get("email") else None
            ),
            attendees=[
                EventAttendee(
                    email=attendee.get("email") or "",
                    name=attendee.get("displayName") or None,
                    response_status=_RESPONSE_STATUSES.get(
                        attendee.get("responseStatus"), ResponseStatus.NEEDS_ACTION
                    ),
                )
                for attendee in event.get("attendees", [])
            ],
            html_link=event.get("htmlLink") or None,
        )
