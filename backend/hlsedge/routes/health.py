"""
HLS Edge Proxy — Health Check Route
=====================================

What:  Liveness endpoint for load balancers and container probes.
How:   Constant "ok" with 200; it never touches the origin, so an origin
       outage does not take the edge out of rotation (viewers still get
       cached segments and diagnosable 502s).

Mounted by create_app() at settings.health_path (default /health).
"""

from starlette.responses import PlainTextResponse


async def health_check() -> PlainTextResponse:
    return PlainTextResponse("ok", status_code=200)
