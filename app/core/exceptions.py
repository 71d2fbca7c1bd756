# app/core/exceptions.py
"""Calendar error taxonomy and its HTTP rendering"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class CalendarError(Exception):
    """Base class for errors raised by the calendar integration."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CalendarError):
    """Bad input: unknown provider, malformed or mismatched OAuth state, reconnect required."""
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(CalendarError):
    """Connection missing, owned by another user, or inactive."""
    status_code = status.HTTP_404_NOT_FOUND


class UpstreamAuthError(CalendarError):
    """Vendor rejected a code exchange or token refresh."""
    status_code = status.HTTP_502_BAD_GATEWAY


class TransportError(CalendarError):
    """Any other failed vendor call (non-2xx or network failure). Never retried."""
    status_code = status.HTTP_502_BAD_GATEWAY


async def calendar_error_handler(request: Request, exc: CalendarError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Calendar request failed on %s: %s", request.url.path, exc.message)
    else:
        logger.warning("Calendar request rejected on %s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CalendarError, calendar_error_handler)
