"""
Library API Backend — Rate Limiting Middleware
===============================================

What:  Per-IP sliding-window rate limiter, in memory.
How:   Keeps the timestamps of each IP's requests inside the window. A
       request that would exceed `max_requests` gets a 429 with Retry-After
       set to when the oldest counted request leaves the window.

Single-process only: each uvicorn worker counts on its own.
"""

import logging
import time
from collections import defaultdict
from typing import Dict, List

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response


logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Args:
        max_requests: Requests allowed per IP inside one window
        window_seconds: Window length

    /health and the API docs are never limited.
    """

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}
    CLEANUP_EVERY = 1000

    def __init__(self, app, max_requests: int = 1000, window_seconds: int = 3600):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._seen = 0

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.time()
        window_start = now - self.window_seconds

        recent = [ts for ts in self._requests[client_ip] if ts > window_start]
        self._requests[client_ip] = recent

        if len(recent) >= self.max_requests:
            retry_after = int(recent[0] + self.window_seconds - now) + 1
            logger.warning(
                "Rate limit exceeded for IP %s: %d requests in %ds window",
                client_ip,
                len(recent),
                self.window_seconds,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": f"Too many requests. Please wait {retry_after} seconds before retrying.",
                    "details": {"retry_after": retry_after},
                },
                headers={"Retry-After": str(retry_after)},
            )

        recent.append(now)

        self._seen += 1
        if self._seen % self.CLEANUP_EVERY == 0:
            self._cleanup_inactive_ips(window_start)

        return await call_next(request)

    def _cleanup_inactive_ips(self, window_start: float) -> None:
        """Drop IPs with no request inside the window so the dict stays bounded."""
        inactive_ips = [
            ip for ip, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] < window_start
        ]
        for ip in inactive_ips:
            del self._requests[ip]

        if inactive_ips:
            logger.debug("Cleaned up %d inactive IP entries", len(inactive_ips))
