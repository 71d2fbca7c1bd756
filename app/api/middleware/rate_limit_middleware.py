# ===== app/api/middleware/rate_limit_middleware.py =====
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
import time


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding-window rate limit for unauthenticated paths, keyed by client IP.

    Guards the vendor OAuth redirect, which anyone can hit.
    """

    def __init__(self, app, paths: tuple = (), requests_per_window: int = 10, window_seconds: float = 60.0):
        super().__init__(app)
        self.paths = tuple(paths)
        self.requests_per_window = requests_per_window
        self.window_seconds = window_seconds
        self.request_times = {}  # In-process only; one window per worker
        self._last_sweep = 0.0

    def _prune(self, current_time: float):
        """Drop clients whose whole window has expired; runs at most once per window"""
        if current_time - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = current_time
        stale = [
            client_id for client_id, times in self.request_times.items()
            if not times or current_time - times[-1] >= self.window_seconds
        ]
        for client_id in stale:
            del self.request_times[client_id]

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self.paths):
            return await call_next(request)

        client_id = request.client.host if request.client else "unknown"
        current_time = time.time()
        self._prune(current_time)

        # Remove timestamps outside the window
        window = [
            t for t in self.request_times.get(client_id, [])
            if current_time - t < self.window_seconds
        ]

        if len(window) >= self.requests_per_window:
            self.request_times[client_id] = window
            retry_after = int(self.window_seconds - (current_time - window[0])) + 1
            return JSONResponse(
                status_code=429,
                content={
                    "detail": "Rate limit exceeded. Too many requests.",
                    "retry_after": retry_after
                },
                headers={"Retry-After": str(retry_after)}
            )

        window.append(current_time)
        self.request_times[client_id] = window
        return await call_next(request)
