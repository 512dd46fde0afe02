"""
HLS Edge Proxy — Proxy Route
==============================

What:  Catch-all route feeding every request to ProxyService.
How:   Extracts method, path, query string and headers; everything else
       (prefix check, classification, caching, rewriting) is the service's job.

Path and query come straight from the ASGI scope. request.url re-parses the
decoded path, so a name containing an encoded "?" (a%3Fb.ts) would be split
into path and query there.

Registered last, so the health route wins for its own path.
Every method is accepted here so the service can apply its scope check (404)
before its method check (405).
"""

from fastapi import APIRouter, Request
from starlette.responses import Response

router = APIRouter(tags=["Proxy"])

ROUTED_METHODS = ["GET", "HEAD", "OPTIONS", "POST", "PUT", "PATCH", "DELETE"]


@router.api_route(
    "/{full_path:path}",
    methods=ROUTED_METHODS,
    include_in_schema=False,
)
async def proxy(request: Request, full_path: str) -> Response:
    service = request.app.state.proxy_service
    return await service.handle(
        method=request.method,
        path=request.scope["path"],
        query=request.scope.get("query_string", b"").decode("latin-1"),
        headers=request.headers,
    )
