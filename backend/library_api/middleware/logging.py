"""
Library API Backend — Request Logging Middleware
=================================================

What:  One access-log line per HTTP request.
How:   Times the downstream call and logs method, path, status, duration,
       request id and client address on the "library_api.access" logger.
       Level follows the status: 5xx ERROR, 4xx WARNING, else INFO.

Not logged: request bodies, Authorization headers, X-User-Id values.
/health is skipped so health checks don't flood the log.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from library_api.middleware.request_id import request_id_var

logger = logging.getLogger("library_api.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    SKIPPED_PATHS = {"/health"}

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in self.SKIPPED_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        rid = request_id_var.get("")
        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
