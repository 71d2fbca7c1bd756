"""
API v1 router setup
"""
from fastapi import APIRouter

from app.api.v1 import calendar

api_v1_router = APIRouter()

# ============================================================================
# CALENDAR ROUTES (JWT authentication required, except the vendor redirect)
# ============================================================================
api_v1_router.include_router(
    calendar.router,
    prefix="/calendar",
    tags=["Calendar"]
)


# ============================================================================
# ROOT ENDPOINT - API Info
# ============================================================================
@api_v1_router.get("/", tags=["Info"])
async def api_info():
    """
    API information and available endpoints.
    """
    return {
        "version": "1.0",
        "authentication": "JWT bearer token issued by the notes auth service",
        "endpoints": {
            "connections": "GET /api/v1/calendar/connections",
            "connect": "POST /api/v1/calendar/connect",
            "callback": "POST /api/v1/calendar/callback",
            "disconnect": "DELETE /api/v1/calendar/connections/{id}",
            "calendars": "GET /api/v1/calendar/connections/{id}/calendars",
            "events": "POST /api/v1/calendar/events",
            "oauth_redirect": "GET /api/v1/calendar/oauth/callback",
        },
    }
