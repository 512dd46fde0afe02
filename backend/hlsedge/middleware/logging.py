"""
HLS Edge Proxy — Request Logging Middleware
=============================================

What:  One access-log line per request: method, path, status, duration,
       edge cache outcome, request ID and client IP.
How:   Times the downstream call and picks the log level from the status
       class (5xx → ERROR, 4xx → WARNING, otherwise INFO). The health path
       is not logged.

Duration is time-to-headers: for streamed segments the body is still
flowing when the line is written.

Privacy: query strings (which often carry playback tokens) and request
headers are not logged.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from hlsedge.middleware.request_id import request_id_var

logger = logging.getLogger("hlsedge.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Args:
        app:         Downstream ASGI app
        health_path: Path excluded from access logging (probes are noisy)
    """

    def __init__(self, app: ASGIApp, health_path: str = "/health"):
        super().__init__(app)
        self.health_path = health_path

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path == self.health_path:
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = getattr(request.client, "host", "unknown") if request.client else "unknown"
        method = request.method
        rid = request_id_var.get("")

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        cache = response.headers.get("x-edge-cache", "-")
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            "%s %s %d %.1fms cache=%s [%s] from %s",
            method,
            path,
            status,
            duration_ms,
            cache,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "edge_cache": cache,
                "client_ip": client_ip,
            },
        )
        return response
