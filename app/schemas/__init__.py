# app/schemas/__init__.py
from .calendar import (
    Platform,
    AccessRole,
    EventStatus,
    ResponseStatus,
    CalendarInfo,
    EventPerson,
    EventAttendee,
    CalendarEvent,
    CalendarConnectionOut,
    ConnectCalendarRequest,
    OAuthUrlResponse,
    OAuthCallbackRequest,
    ListEventsRequest,
    DisconnectResponse
)
