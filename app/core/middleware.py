# app/core/middleware.py
"""Request-scoped middleware: correlation ids and access logging"""
import contextvars
import logging
import time
import uuid

from starlette.requests import Request

logger = logging.getLogger(__name__)

# Read by the logging filter so every line written while serving a request carries its id
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="-")

QUIET_PATHS = ("/health",)


async def correlation_id_middleware(request: Request, call_next):
    """Tag the request, its response and its log lines with a correlation id"""
    correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
    request.state.correlation_id = correlation_id
    token = correlation_id_var.set(correlation_id)
    try:
        response = await call_next(request)
    finally:
        correlation_id_var.reset(token)

    response.headers["X-Correlation-ID"] = correlation_id
    return response


async def request_logging_middleware(request: Request, call_next):
    """Access log by path only; the vendor redirect carries OAuth codes in its query string"""
    if request.url.path.startswith(QUIET_PATHS):
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration_ms = round((time.time() - start_time) * 1000, 2)

    level = logging.WARNING if response.status_code >= 500 else logging.INFO
    logger.log(level, f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms}ms)")
    return response
