"""
HLS Edge Proxy — Request Orchestrator
=======================================

What:  Single entry point turning one inbound request into one response.
How:   Composes the path classifier, cache policy engine, origin client,
       edge cache gateway and manifest rewriter in a fixed state machine.
Who:   Called by the catch-all proxy route.

State machine (one pass, terminal at response):
    1. OPTIONS                          → 204 constant preflight
    2. health path                      → handled by the health route
    3. path outside "<prefix>/"         → NotFoundError (404), origin untouched
    4. HEAD                             → headers from policy (origin probe optional)
    5. GET segment without Range        → EdgeCacheGateway
       any other GET                    → OriginClient
    6. timeout / network failure        → UpstreamError propagates (502 handler)
    7. origin status >= 400             → same status, "Upstream error <status>"
    8. manifest                         → buffer, rewrite, 200 (original bytes on failure)
    9. segment / key / opaque           → stream through; cache write when pending
"""

import logging
from typing import AsyncIterator, Mapping, Optional

from starlette.background import BackgroundTask
from starlette.responses import PlainTextResponse, Response, StreamingResponse

from hlsedge.config import Settings
from hlsedge.exceptions import NotFoundError
from hlsedge.schemas.proxy import CacheEntry, ResourceKind
from hlsedge.services.cache_policy import (
    build_headers,
    classify,
    error_headers,
    preflight_headers,
)
from hlsedge.services.classifier import classify_path
from hlsedge.services.edge_cache import EdgeCacheGateway
from hlsedge.services.manifest_rewriter import rewrite_manifest
from hlsedge.services.origin_client import OriginClient, UpstreamResponse, encode_path

logger = logging.getLogger(__name__)

EDGE_CACHE_HEADER = "X-Edge-Cache"


class ProxyService:
    """
    Stateless per request; the only shared state lives in the cache store.

    Args:
        settings: Application settings
        origin:   Shared OriginClient
        gateway:  EdgeCacheGateway, or None when the edge cache is disabled
    """

    def __init__(
        self,
        settings: Settings,
        origin: OriginClient,
        gateway: Optional[EdgeCacheGateway] = None,
    ):
        self.settings = settings
        self.origin = origin
        self.gateway = gateway

    def in_scope(self, path: str) -> bool:
        return path.startswith(f"{self.settings.proxy_prefix}/")

    def _diagnostic_path(self, path: str) -> Optional[str]:
        return self.origin.origin_path(path) if self.settings.diagnostic_headers else None

    async def handle(
        self,
        method: str,
        path: str,
        query: str,
        headers: Mapping[str, str],
    ) -> Response:
        method = method.upper()

        if method == "OPTIONS":
            return Response(status_code=204, headers=preflight_headers())

        if not self.in_scope(path):
            raise NotFoundError(path=path)

        # Classified on the encoded form: a decoded "?" in a name is not a query
        kind = classify_path(encode_path(path))
        diagnostic_path = self._diagnostic_path(path)
        range_header = headers.get("range")
        user_agent = headers.get("user-agent")

        if method == "HEAD":
            return await self._head(kind, path, query, range_header, user_agent, diagnostic_path)

        if method != "GET":
            return PlainTextResponse(
                "Method Not Allowed",
                status_code=405,
                headers={"Allow": "GET, HEAD, OPTIONS"},
            )

        if self.gateway is not None and self.gateway.is_eligible(method, kind, range_header):
            result = await self.gateway.fetch(path, query, kind, user_agent)
            if result.hit is not None:
                return self._from_entry(kind, result.hit, diagnostic_path, cache_status="HIT")
            if result.pending is not None:
                return self._from_entry(
                    kind,
                    result.pending,
                    diagnostic_path,
                    cache_status="MISS",
                    background=BackgroundTask(self.gateway.store, result.key, result.pending),
                )
            upstream = result.upstream
        else:
            upstream = await self.origin.fetch(path, query, "GET", range_header, user_agent)

        return await self._respond(kind, upstream, diagnostic_path)

    # ── Response builders ─────────────────────────────────────────────────

    async def _head(
        self,
        kind: ResourceKind,
        path: str,
        query: str,
        range_header: Optional[str],
        user_agent: Optional[str],
        diagnostic_path: Optional[str],
    ) -> Response:
        ttl = self.settings.cache_segment_seconds

        if not self.settings.head_probe_origin:
            response = Response(
                status_code=200,
                headers=build_headers(classify(kind, None, ttl), None, diagnostic_path),
            )
            # Size is unknown without asking the origin; omit rather than claim 0
            del response.headers["content-length"]
            return response

        upstream = await self.origin.fetch(path, query, "HEAD", range_header, user_agent)
        await upstream.aclose()
        if upstream.status_code >= 400:
            return Response(status_code=upstream.status_code, headers=error_headers(diagnostic_path))
        origin_headers = None if kind is ResourceKind.MANIFEST else upstream.headers
        return Response(
            status_code=upstream.status_code,
            headers=build_headers(classify(kind, upstream.headers, ttl), origin_headers, diagnostic_path),
        )

    def _from_entry(
        self,
        kind: ResourceKind,
        entry: CacheEntry,
        diagnostic_path: Optional[str],
        cache_status: str,
        background: Optional[BackgroundTask] = None,
    ) -> Response:
        # Current policy is re-applied, so a TTL change reaches cached entries too
        policy = classify(kind, entry.headers, self.settings.cache_segment_seconds)
        headers = build_headers(policy, entry.headers, diagnostic_path)
        if diagnostic_path is not None:
            headers[EDGE_CACHE_HEADER] = cache_status
        return Response(
            content=entry.body,
            status_code=entry.status_code,
            headers=headers,
            background=background,
        )

    async def _respond(
        self,
        kind: ResourceKind,
        upstream: UpstreamResponse,
        diagnostic_path: Optional[str],
    ) -> Response:
        status = upstream.status_code

        if status >= 400:
            await upstream.aclose()
            logger.warning("Origin returned %d for %s", status, upstream.upstream_path)
            # Error headers (no-store), not the kind's policy: error bodies are never cacheable
            return PlainTextResponse(
                f"Upstream error {status}",
                status_code=status,
                headers=error_headers(diagnostic_path),
            )

        if kind is ResourceKind.MANIFEST:
            return await self._manifest(upstream, diagnostic_path)

        policy = classify(kind, upstream.headers, self.settings.cache_segment_seconds)
        return StreamingResponse(
            self._stream(upstream),
            status_code=status,
            headers=build_headers(policy, upstream.headers, diagnostic_path),
            background=BackgroundTask(upstream.aclose),
        )

    async def _manifest(
        self,
        upstream: UpstreamResponse,
        diagnostic_path: Optional[str],
    ) -> Response:
        base_url = upstream.final_url
        raw = await self.origin.read_body(upstream)
        policy = classify(ResourceKind.MANIFEST, None, self.settings.cache_segment_seconds)
        # Origin Content-Length/ETag describe the un-rewritten bytes; not forwarded
        headers = build_headers(policy, None, diagnostic_path)

        try:
            text = raw.decode("utf-8-sig")
            body = rewrite_manifest(
                text,
                base_url,
                proxy_prefix=self.settings.proxy_prefix,
                origin_path_prefix=self.settings.origin_path_prefix,
            ).encode("utf-8")
        except (UnicodeError, ValueError) as e:
            logger.warning(
                "Manifest rewrite failed for %s, serving original bytes: %s",
                upstream.upstream_path,
                str(e),
            )
            body = raw

        return Response(content=body, status_code=200, headers=headers)

    @staticmethod
    async def _stream(upstream: UpstreamResponse) -> AsyncIterator[bytes]:
        try:
            async for chunk in upstream.iter_body():
                yield chunk
        finally:
            await upstream.aclose()
