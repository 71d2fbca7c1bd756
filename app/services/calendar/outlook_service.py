# app/services/calendar/outlook_service.py
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List
from urllib.parse import quote
import logging
import re

import msal
import requests

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

_FRACTION = re.compile(r"\.(\d{6})\d+")

# showAs values collapse onto the three-way event status
_SHOW_AS_STATUS = {
    "busy": EventStatus.CONFIRMED,
    "oof": EventStatus.CONFIRMED,
    "workingElsewhere": EventStatus.CONFIRMED,
    "tentative": EventStatus.TENTATIVE,
    "free": EventStatus.CANCELLED,
}

_RESPONSE_STATUSES = {
    "accepted": ResponseStatus.ACCEPTED,
    "declined": ResponseStatus.DECLINED,
    "tentativelyAccepted": ResponseStatus.TENTATIVE,
}


def _parse_graph_time(value: Dict[str, Any]) -> datetime:
    """Graph returns ``2025-01-01T10:00:00.0000000`` with no offset; the zone is UTC."""
    raw = _FRACTION.sub(r".\1", value.get("dateTime") or "")
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@lru_cache(maxsize=8)
def _confidential_client(
        client_id: str, client_secret: str, authority: str, timeout: float
) -> msal.ConfidentialClientApplication:
    # Authority metadata is fetched on first use and kept with the client
    return msal.ConfidentialClientApplication(
        client_id,
        authority=authority,
        client_credential=client_secret,
        timeout=timeout,
    )


class OutlookCalendarService(CalendarProviderAdapter):
    provider = CalendarProvider.MICROSOFT
    # MSAL adds openid, profile and offline_access itself and rejects them here
    SCOPES = ["email", "Calendars.Read"]
    AUTHORITY = "https://login.microsoftonline.com/common"
    GRAPH_ENDPOINT = "https://graph.microsoft.com/v1.0"
    PRIMARY_CALENDAR = "primary"

    @property
    def client_id(self) -> str:
        return self.settings.MICROSOFT_CALENDAR_CLIENT_ID

    @property
    def client_secret(self) -> str:
        return self.settings.MICROSOFT_CALENDAR_CLIENT_SECRET

    def _app(self) -> msal.ConfidentialClientApplication:
        try:
            return _confidential_client(self.client_id, self.client_secret, self.AUTHORITY, self.timeout)
        except requests.RequestException as e:
            logger.error(f"microsoft: authority discovery failed: {e}")
            raise TransportError("Could not reach microsoft") from e

    def _acquire(self, action: str, call, *args, **kwargs) -> Dict[str, Any]:
        """Run an MSAL token call; an ``error`` in the result is a vendor rejection"""
        try:
            result = call(*args, **kwargs)
        except requests.RequestException as e:
            logger.error(f"microsoft: {action} request failed: {e}")
            raise TransportError(f"Could not reach microsoft to {action}") from e
        except ValueError as e:
            logger.error(f"microsoft: {action} returned an unreadable response: {e}")
            raise UpstreamAuthError(f"microsoft rejected the request to {action}") from e

        if not result or "error" in result:
            error = (result or {}).get("error_description") or (result or {}).get("error")
            logger.error(f"microsoft: {action} rejected: {error}")
            raise UpstreamAuthError(f"microsoft rejected the request to {action}")
        return result

    def build_authorize_url(self, callback_url: str, state: str) -> str:
        """Generate Microsoft OAuth URL"""
        return self._app().get_authorization_request_url(
            self.SCOPES,
            state=state,
            redirect_uri=callback_url,
        )

    def exchange_code(self, code: str, callback_url: str) -> OAuthTokens:
        """Exchange code for tokens"""
        action = "exchange the authorization code"
        result = self._acquire(
            action,
            self._app().acquire_token_by_authorization_code,
            code,
            self.SCOPES,
            redirect_uri=callback_url,
        )
        logger.info("Successfully exchanged Microsoft authorization code for tokens")
        return self._tokens_from(result, action)

    def refresh_token(self, refresh_token: str) -> OAuthTokens:
        """Refresh expired access token"""
        action = "refresh the access token"
        result = self._acquire(
            action,
            self._app().acquire_token_by_refresh_token,
            refresh_token,
            scopes=self.SCOPES,
        )
        return self._tokens_from(result, action, previous_refresh_token=refresh_token)

    def fetch_account_info(self, access_token: str) -> OAuthAccountInfo:
        data = self._get_json(f"{self.GRAPH_ENDPOINT}/me", access_token, action="get user info")
        return OAuthAccountInfo(
            email=data.get("mail") or data["userPrincipalName"],
            name=data.get("displayName") or None,
        )

    def list_calendars(self, access_token: str) -> List[CalendarInfo]:
        data = self._get_json(f"{self.GRAPH_ENDPOINT}/me/calendars", access_token, action="list calendars")
        return [
            CalendarInfo(
                id=cal["id"],
                name=cal.get("name") or "Untitled",
                description=None,  # not part of the Graph calendar resource
                is_primary=cal.get("isDefaultCalendar") is True,
                access_role=AccessRole.WRITER if cal.get("canEdit") is True else AccessRole.READER,
                background_color=cal.get("hexColor") or None,
            )
            for cal in data.get("value", [])
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
            "startDateTime": to_utc_iso(start_date),
            "endDateTime": to_utc_iso(end_date),
            "$top": str(max_results),
            "$orderby": "start/dateTime",
            "$select": "id,subject,body,location,start,end,isAllDay,showAs,organizer,attendees,webLink",
        }
        data = self._get_json(
            self._calendar_view_url(calendar_id),
            access_token,
            action="list events",
            params=params,
        )
        return [self._map_event(item, calendar_id) for item in data.get("value", [])]

    def _calendar_view_url(self, calendar_id: str) -> str:
        # Graph has no calendar called "primary"; /me/calendar is the default one
        if calendar_id == self.PRIMARY_CALENDAR:
            return f"{self.GRAPH_ENDPOINT}/me/calendar/calendarView"
        return f"{self.GRAPH_ENDPOINT}/me/calendars/{quote(calendar_id, safe='')}/calendarView"

    @staticmethod
    def _map_event(event: Dict[str, Any], calendar_id: str) -> CalendarEvent:
        organizer_address = (event.get("organizer") or {}).get("emailAddress") or {}

        return CalendarEvent(
            id=event["id"],
            calendar_id=calendar_id,
            title=event.get("subject") or "Untitled",
            description=(event.get("body") or {}).get("content") or None,
            location=(event.get("location") or {}).get("displayName") or None,
            start_time=_parse_graph_time(event.get("start") or {}),
            end_time=_parse_graph_time(event.get("end") or {}),
            is_all_day=event.get("isAllDay") is True,
            status=_SHOW_AS_STATUS.get(event.get("showAs") or "busy", EventStatus.CONFIRMED),
            organizer=(
                EventPerson(email=organizer_address["address"], name=organizer_address.get("name") or None)
                if organizer_address.get("address") else None
            ),
            attendees=[
                EventAttendee(
                    email=(attendee.get("emailAddress") or {}).get("address") or "",
                    name=(attendee.get("emailAddress") or {}).get("name") or None,
                    response_status=_RESPONSE_STATUSES.get(
                        (attendee.get("status") or {}).get("response"), ResponseStatus.NEEDS_ACTION
                    ),
                )
                for attendee in event.get("attendees", [])
            ],
            html_link=event.get("webLink") or None,
        )
