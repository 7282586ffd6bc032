"""
CardSnap — Request Logging Middleware
======================================

What:  One access log line per request on the `cardsnap.access` logger.
How:   Measures the time spent below this middleware and picks the level
       from the status code (5xx ERROR, 4xx WARNING, otherwise INFO).

Logged:       method, path, status, duration, request id, user id, client IP
Never logged: bodies (card contents are personal data), uploaded images,
              identity header values other than the user id

Typical durations:
    GET  /health        1-5ms (not logged)
    GET  /api/cards     10-50ms
    POST /api/capture   300-3000ms (OCR dominates)
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from cardsnap.middleware.request_id import request_id_var

logger = logging.getLogger("cardsnap.access")

QUIET_PATHS = {"/health"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
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

        rid = request_id_var.get("") or getattr(request.state, "request_id", "")
        user_id = getattr(request.state, "user_id", "-")
        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] user=%s from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            user_id,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "user_id": user_id,
                "client_ip": client_ip,
            },
        )
        return response
