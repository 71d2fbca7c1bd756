# app/services/calendar/mock_calendar_service.py
"""In-memory calendar provider for local development and tests without vendor credentials"""
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import List, Optional
from urllib.parse import urlencode
import logging
import math

from app.config.settings import Settings
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
from app.services.calendar.base_provider import CalendarProviderAdapter, OAuthAccountInfo, OAuthTokens

logger = logging.getLogger(__name__)

MOCK_CALENDARS = [
    CalendarInfo(
        id="primary",
        name="My Calendar",
        description="Primary calendar for work and personal events",
        is_primary=True,
        access_role=AccessRole.OWNER,
        background_color="#4285f4",
    ),
    CalendarInfo(
        id="work",
        name="Work",
        description="Work-related meetings and deadlines",
        access_role=AccessRole.WRITER,
        background_color="#0f9d58",
    ),
    CalendarInfo(
        id="personal",
        name="Personal",
        description="Personal appointments and reminders",
        access_role=AccessRole.WRITER,
        background_color="#db4437",
    ),
]

# (title, duration in minutes, all day)
EVENT_TEMPLATES = [
    ("Team Standup", 30, False),
    ("Project Review", 60, False),
    ("Lunch with Client", 90, False),
    ("Sprint Planning", 120, False),
    ("Company Holiday", 0, True),
    ("One-on-One", 30, False),
    ("Workshop", 180, False),
    ("Deadline", 0, True),
]

MOCK_ORGANIZER = EventPerson(email="mock@example.com", name="Mock User")
TOKEN_LIFETIME = timedelta(hours=1)


def generate_mock_events(
        calendar_id: str,
        start_date: datetime,
        end_date: datetime,
        max_results: int
) -> List[CalendarEvent]:
    """Two events per day of the range, cycling through EVENT_TEMPLATES"""
    if start_date.tzinfo is None:
        start_date = start_date.replace(tzinfo=timezone.utc)
    if end_date.tzinfo is None:
        end_date = end_date.replace(tzinfo=timezone.utc)

    days = math.ceil((end_date - start_date) / timedelta(days=1))
    events: List[CalendarEvent] = []

    for i in range(min(days * 2, max_results)):
        title, duration, all_day = EVENT_TEMPLATES[i % len(EVENT_TEMPLATES)]
        event_date = start_date + timedelta(days=i // 2)
        if event_date > end_date:
            break

        event_id = f"mock-{calendar_id}-{i}"
        day_start = event_date.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)

        if all_day:
            events.append(CalendarEvent(
                id=event_id,
                calendar_id=calendar_id,
                title=title,
                description=f"Mock event for testing: {title}",
                start_time=day_start,
                end_time=day_start + timedelta(days=1),
                is_all_day=True,
                status=EventStatus.CONFIRMED,
                organizer=MOCK_ORGANIZER,
            ))
            continue

        event_start = day_start.replace(hour=9 + (i % 8))  # between 9 AM and 5 PM
        events.append(CalendarEvent(
            id=event_id,
            calendar_id=calendar_id,
            title=title,
            description=f"Mock event for testing: {title}",
            location="Conference Room A" if i % 3 == 0 else None,
            start_time=event_start,
            end_time=event_start + timedelta(minutes=duration),
            is_all_day=False,
            status=EventStatus.TENTATIVE if i % 5 == 0 else EventStatus.CONFIRMED,
            organizer=MOCK_ORGANIZER,
            attendees=[
                EventAttendee(email="colleague@example.com", name="Colleague",
                              response_status=ResponseStatus.ACCEPTED),
                EventAttendee(email="manager@example.com", name="Manager",
                              response_status=ResponseStatus.TENTATIVE),
            ] if i % 2 == 0 else [],
            html_link=f"https://calendar.example.com/event/{event_id}",
        ))

    return events


class MockCalendarService(CalendarProviderAdapter):
    """Deterministic stand-in for a real vendor; never touches the network."""

    def __init__(self, provider: CalendarProvider, settings: Optional[Settings] = None):
        super().__init__(settings)
        self.provider = CalendarProvider(provider)
        self._sequence = count(1)
        logger.info(f"Mock calendar provider initialized for: {self.provider.value}")

    def _issue_tokens(self, refresh_token: Optional[str] = None) -> OAuthTokens:
        n = next(self._sequence)
        return OAuthTokens(
            access_token=f"mock_access_token_{self.provider.value}_{n}",
            refresh_token=refresh_token or f"mock_refresh_token_{self.provider.value}_{n}",
            expires_at=datetime.now(timezone.utc) + TOKEN_LIFETIME,
        )

    def build_authorize_url(self, callback_url: str, state: str) -> str:
        # Points straight back at our own callback
        params = {
            "mock": "true",
            "provider": self.provider.value,
            "state": state,
            "code": f"mock_code_{self.provider.value}",
        }
        return f"{callback_url}?{urlencode(params)}"

    def exchange_code(self, code: str, callback_url: str) -> OAuthTokens:
        logger.info("Mock: exchanging code for tokens")
        return self._issue_tokens()

    def refresh_token(self, refresh_token: str) -> OAuthTokens:
        logger.info("Mock: refreshing access token")
        return self._issue_tokens(refresh_token=refresh_token)

    def fetch_account_info(self, access_token: str) -> OAuthAccountInfo:
        if self.provider == CalendarProvider.GOOGLE:
            return OAuthAccountInfo(email="mock.user@gmail.com", name="Mock Google User")
        return OAuthAccountInfo(email="mock.user@outlook.com", name="Mock Microsoft User")

    def list_calendars(self, access_token: str) -> List[CalendarInfo]:
        return [calendar.model_copy() for calendar in MOCK_CALENDARS]

    def list_events(
            self,
            access_token: str,
            calendar_id: str,
            start_date: datetime,
            end_date: datetime,
            max_results: int
    ) -> List[CalendarEvent]:
        logger.info(f"Mock: listing events for calendar {calendar_id} from {start_date} to {end_date}")
        return generate_mock_events(calendar_id, start_date, end_date, max_results)
