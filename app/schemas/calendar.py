# app/schemas/calendar.py
"""
Pydantic schemas for the calendar connection API.

None of the connection schemas carry OAuth tokens or token expiry.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.calendar_connection import CalendarProvider


class Platform(str, Enum):
    WEB = "web"
    MOBILE = "mobile"


class AccessRole(str, Enum):
    OWNER = "owner"
    WRITER = "writer"
    READER = "reader"
    FREE_BUSY_READER = "freeBusyReader"


class EventStatus(str, Enum):
    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


class ResponseStatus(str, Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"
    TENTATIVE = "tentative"
    NEEDS_ACTION = "needsAction"


# ============================================================================
# Normalized vendor data
# ============================================================================

class CalendarInfo(BaseModel):
    """A calendar as every provider adapter reports it"""
    id: str
    name: str
    description: Optional[str] = None
    is_primary: bool = False
    access_role: AccessRole = AccessRole.READER
    background_color: Optional[str] = None


class EventPerson(BaseModel):
    email: str
    name: Optional[str] = None


class EventAttendee(EventPerson):
    response_status: ResponseStatus = ResponseStatus.NEEDS_ACTION


class CalendarEvent(BaseModel):
    """A calendar event as every provider adapter reports it"""
    id: str
    calendar_id: str
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: datetime
    end_time: datetime
    is_all_day: bool = False
    status: EventStatus = EventStatus.CONFIRMED
    organizer: Optional[EventPerson] = None
    attendees: List[EventAttendee] = Field(default_factory=list)
    html_link: Optional[str] = None


# ============================================================================
# Connection projection (secret-free)
# ============================================================================

class CalendarConnectionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str
    provider: CalendarProvider
    account_email: str
    account_name: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


# ============================================================================
# Request / Response Schemas
# ============================================================================

class ConnectCalendarRequest(BaseModel):
    provider: CalendarProvider
    redirect_url: Optional[str] = Field(
        None, description="Client redirect, e.g. k7notes://calendar/callback; only used to detect the platform"
    )


class OAuthUrlResponse(BaseModel):
    url: str
    state: str


class OAuthCallbackRequest(BaseModel):
    provider: CalendarProvider
    code: str = Field(..., min_length=1)
    state: Optional[str] = None


class ListEventsRequest(BaseModel):
    connection_id: UUID
    calendar_id: Optional[str] = None
    start_date: datetime
    end_date: datetime
    max_results: int = Field(50, ge=1, le=100)

    @model_validator(mode="after")
    def end_after_start(self) -> "ListEventsRequest":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class DisconnectResponse(BaseModel):
    success: bool = True
