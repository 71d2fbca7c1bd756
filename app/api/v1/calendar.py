# ============================================================================
# FILE: app/api/v1/calendar.py
# Calendar connection endpoints - thin HTTP layer
# IMPORTANT: Specific routes MUST come before parameterized routes
# ============================================================================
from typing import List, Optional
from urllib.parse import urlencode
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, Path, Query
from fastapi.responses import RedirectResponse

from app.api.dependencies import CurrentUser, get_calendar_service, get_current_user
from app.config.settings import Settings, get_settings
from app.core.exceptions import ValidationError
from app.schemas.calendar import (
    CalendarConnectionOut,
    CalendarEvent,
    CalendarInfo,
    ConnectCalendarRequest,
    DisconnectResponse,
    ListEventsRequest,
    OAuthCallbackRequest,
    OAuthUrlResponse,
    Platform,
)
from app.services.calendar.calendar_connection_service import CalendarConnectionService
from app.services.calendar.oauth_state import decode_state

logger = logging.getLogger(__name__)

router = APIRouter(tags=["calendar"])


# ========== VENDOR REDIRECT ==========

def _client_redirect(settings: Settings, platform: Optional[Platform], params: dict) -> RedirectResponse:
    if platform == Platform.MOBILE:
        target = f"{settings.CALENDAR_MOBILE_SCHEME}://calendar/callback"
    else:
        target = settings.CALENDAR_WEB_CALLBACK_URL
    return RedirectResponse(url=f"{target}?{urlencode(params)}", status_code=302)


@router.get("/oauth/callback")
def oauth_redirect(
        code: Optional[str] = Query(None),
        state: Optional[str] = Query(None),
        error: Optional[str] = Query(None),
        settings: Settings = Depends(get_settings)
):
    """
    Google/Microsoft redirect here after consent.
    No authentication: the browser arrives from the vendor. The code and state
    are handed to the client app, which completes the flow via POST /callback.
    """
    platform = None
    if state:
        try:
            platform = decode_state(state).platform
        except ValidationError:
            logger.warning("OAuth redirect carried an unreadable state value")

    if error:
        logger.error(f"OAuth error from provider: {error}")
        return _client_redirect(settings, platform, {"error": error})

    if not code or not state:
        logger.error("Missing code or state in OAuth callback")
        return _client_redirect(settings, platform, {"error": "Missing authorization code"})

    logger.info(f"Redirecting OAuth callback to {(platform or Platform.WEB).value} app")
    return _client_redirect(settings, platform, {"code": code, "state": state})


# ========== CONNECTIONS ==========

@router.get("/connections", response_model=List[CalendarConnectionOut])
def list_connections(
        current_user: CurrentUser = Depends(get_current_user),
        service: CalendarConnectionService = Depends(get_calendar_service)
):
    return service.list_connections(current_user.id)


@router.post("/connect", response_model=OAuthUrlResponse)
def start_connect(
        payload: ConnectCalendarRequest,
        current_user: CurrentUser = Depends(get_current_user),
        service: CalendarConnectionService = Depends(get_calendar_service)
):
    """Returns the vendor authorization URL for the user to visit"""
    return service.get_oauth_url(current_user.id, payload.provider, payload.redirect_url)


@router.post("/callback", response_model=CalendarConnectionOut)
def complete_connect(
        payload: OAuthCallbackRequest,
        current_user: CurrentUser = Depends(get_current_user),
        service: CalendarConnectionService = Depends(get_calendar_service)
):
    """Exchange the code the vendor issued and store the connection"""
    return service.handle_oauth_callback(current_user.id, payload.provider, payload.code, payload.state)


@router.delete("/connections/{connection_id}", response_model=DisconnectResponse)
def disconnect(
        connection_id: UUID = Path(..., description="The connection ID"),
        current_user: CurrentUser = Depends(get_current_user),
        service: CalendarConnectionService = Depends(get_calendar_service)
):
    service.disconnect(current_user.id, connection_id)
    return DisconnectResponse(success=True)


@router.get("/connections/{connection_id}/calendars", response_model=List[CalendarInfo])
def list_calendars(
        connection_id: UUID = Path(..., description="The connection ID"),
        current_user: CurrentUser = Depends(get_current_user),
        service: CalendarConnectionService = Depends(get_calendar_service)
):
    return service.list_calendars(current_user.id, connection_id)


# ========== EVENTS ==========

@router.post("/events", response_model=List[CalendarEvent])
def list_events(
        payload: ListEventsRequest,
        current_user: CurrentUser = Depends(get_current_user),
        service: CalendarConnectionService = Depends(get_calendar_service)
):
    return service.list_events(
        current_user.id,
        payload.connection_id,
        payload.calendar_id,
        payload.start_date,
        payload.end_date,
        payload.max_results,
    )
