"""
HLS Edge Proxy — FastAPI Application Factory
==============================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() wires settings → OriginClient →
       EdgeCacheGateway → ProxyService, registers middleware, exception
       handlers and routes, and returns the app.
Who:   uvicorn (uvicorn hlsedge.main:app) and the test suite.

Application Architecture:
    ┌─────────────────────────────────────────────────────────────┐
    │                        FastAPI App                          │
    │                                                             │
    │  Middleware Chain:                                          │
    │  ┌──────────────┐ ┌──────────────────┐                      │
    │  │  Request ID  │→│  Access Logging  │                      │
    │  └──────────────┘ └──────────────────┘                      │
    │                                                             │
    │  Routes:                                                    │
    │  ┌──────────────┐ ┌──────────────────────────────────────┐  │
    │  │ GET /health  │ │ GET|HEAD|OPTIONS /{path} → ProxyService│ │
    │  └──────────────┘ └──────────────────────────────────────┘  │
    │                                                             │
    │  Exception Handlers:                                        │
    │  ┌───────────────────────────────────────────────────────┐  │
    │  │ NotFound→404 │ UpstreamError→502 │ Exception→500      │  │
    │  └───────────────────────────────────────────────────────┘  │
    └─────────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  configure logging, sanity-check configuration, log the origin
    Shutdown: close the shared httpx client (releases pooled connections)
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import FastAPI, Request
from starlette.responses import PlainTextResponse

from hlsedge import __version__
from hlsedge.config import Settings, settings as default_settings
from hlsedge.exceptions import EdgeProxyError, NotFoundError, UpstreamError
from hlsedge.middleware.logging import RequestLoggingMiddleware
from hlsedge.middleware.request_id import RequestIDMiddleware, request_id_var
from hlsedge.routes import health, proxy
from hlsedge.services.cache_policy import error_headers
from hlsedge.services.cache_store import CacheStore, InMemoryCacheStore
from hlsedge.services.edge_cache import EdgeCacheGateway
from hlsedge.services.origin_client import OriginClient
from hlsedge.services.proxy_service import ProxyService

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure process-wide logging once, at startup.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s on stdout.
    """
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),  # Docker captures stdout
        ],
        force=True,
    )

    # One line per upstream call from httpx is too much at segment rates
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    cfg: Settings = app.state.settings

    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging(cfg.log_level)
    logger.info("=" * 60)
    logger.info("HLS Edge Proxy %s starting up...", __version__)

    try:
        cfg.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))

    logger.info(
        "Proxying %s/* → %s%s (timeout=%dms)",
        cfg.proxy_prefix,
        cfg.origin_base,
        cfg.origin_path_prefix or "",
        cfg.proxy_timeout_ms,
    )
    if cfg.edge_cache_enabled:
        logger.info(
            "Edge cache: segments for %ds, up to %d entries",
            cfg.cache_segment_seconds,
            cfg.edge_cache_max_entries,
        )
    else:
        logger.info("Edge cache disabled")
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("HLS Edge Proxy shutting down...")
    await app.state.origin_client.aclose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the exception hierarchy to plain-text responses.

    Handler hierarchy:
        NotFoundError   → 404 "Not Found" (outside the proxy prefix)
        UpstreamError   → 502 diagnostic body (timeout / network error)
        EdgeProxyError  → 500
        Exception       → 500 (stack trace logged, never returned)

    Bodies never contain origin headers.
    """

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return PlainTextResponse(exc.message, status_code=404)

    @app.exception_handler(UpstreamError)
    async def handle_upstream_error(request: Request, exc: UpstreamError):
        rid = request_id_var.get("")
        logger.error("[%s] %s | Context: %s", rid, exc.message, exc.context)
        diagnostics = request.app.state.settings.diagnostic_headers
        upstream_path = exc.upstream_path if diagnostics else None
        body = f"{exc.message} [{exc.upstream_path}]" if upstream_path else exc.message
        return PlainTextResponse(
            body,
            status_code=502,
            headers=error_headers(upstream_path),
        )

    @app.exception_handler(EdgeProxyError)
    async def handle_edge_proxy_error(request: Request, exc: EdgeProxyError):
        rid = request_id_var.get("")
        logger.error("[%s] Edge proxy error: %s | Context: %s", rid, exc.message, exc.context)
        return PlainTextResponse("Internal Server Error", status_code=500)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return PlainTextResponse("Internal Server Error", status_code=500)


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    store: Optional[CacheStore] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings:  Settings override (defaults to the module singleton)
        transport: httpx transport for the origin client (tests use MockTransport)
        store:     Edge cache store (defaults to InMemoryCacheStore)

    Returns:
        Configured FastAPI instance. Services are reachable via app.state.
    """
    cfg = settings or default_settings

    app = FastAPI(
        title="HLS Edge Proxy",
        description="Edge reverse proxy for HLS delivery with manifest rewriting and segment caching.",
        version=__version__,
        # Every path outside the health route belongs to the proxy namespace
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )

    # ── Services ──────────────────────────────────────────────────────────
    origin = OriginClient(cfg, transport=transport)
    gateway = None
    if cfg.edge_cache_enabled:
        gateway = EdgeCacheGateway(
            origin,
            store or InMemoryCacheStore(max_entries=cfg.edge_cache_max_entries),
            ttl_seconds=cfg.cache_segment_seconds,
            max_body_bytes=cfg.edge_cache_max_body_bytes,
        )
    app.state.settings = cfg
    app.state.origin_client = origin
    app.state.proxy_service = ProxyService(cfg, origin, gateway)

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: RequestID → Logging → routes
    app.add_middleware(RequestLoggingMiddleware, health_path=cfg.health_path)
    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.add_api_route(
        cfg.health_path,
        health.health_check,
        methods=["GET", "HEAD"],
        response_class=PlainTextResponse,
        tags=["Health"],
        include_in_schema=False,
    )
    app.include_router(proxy.router)

    return app


# ── Application Instance ─────────────────────────────────────────────────
app = create_app()
