"""
Middleware that turns every completed request into an activity log entry.
"""

import time
from typing import Iterable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from shared.logging import clear_context, get_logger, set_request_id
from .bus import ActivityEventBus


# Probe endpoints scraped by infrastructure, not user activity.
UNRECORDED_PATHS = frozenset({"/health", "/metrics"})


class ActivityLogMiddleware(BaseHTTPMiddleware):
    """Records one activity entry per request, on success and on failure."""

    def __init__(self, app, bus: ActivityEventBus, skip_paths: Optional[Iterable[str]] = None):
        super().__init__(app)
        self.bus = bus
        self.skip_paths = frozenset(skip_paths) if skip_paths is not None else UNRECORDED_PATHS
        self.logger = get_logger("gateway.activity")

    async def dispatch(self, request: Request, call_next):
        request_id = set_request_id(request.headers.get("X-Request-ID"))
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception as e:
            self._record(request, 500, start_time)
            self.logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
            )
            raise
        else:
            self._record(request, response.status_code, start_time)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_context()

    def _record(self, request: Request, status_code: int, start_time: float) -> None:
        path = request.url.path
        if path in self.skip_paths:
            return

        # The auth gate leaves the verified identity on the request state.
        identity = getattr(request.state, "identity", None)
        self.bus.record(
            method=request.method,
            path=path,
            status_code=status_code,
            duration_ms=int((time.time() - start_time) * 1000),
            user_id=identity.user_id if identity else None,
            username=identity.username if identity else None,
        )
