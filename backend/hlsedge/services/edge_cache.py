"""
HLS Edge Proxy — Edge Cache Gateway
=====================================

What:  Read-through / write-behind cache in front of the origin for segment
       GETs without a Range header.
How:   Lookup first; on a miss, fetch from the origin and, for a complete 200,
       buffer the body once into a CacheEntry that the caller writes back in
       a background task after the response has been sent.
Who:   Called by ProxyService only for eligible requests; it re-checks the
       eligibility itself so a misrouted call never pollutes the cache.

Flow:
    ┌────────┐ hit  ┌───────────────────────────────┐
    │ lookup │─────▶│ GatewayResult(hit=entry)      │ origin not contacted
    └───┬────┘      └───────────────────────────────┘
        │ miss
        ▼
    ┌────────┐ 200, not partial ┌──────────────────────────────────────┐
    │ origin │─────────────────▶│ GatewayResult(pending=entry)         │ → store() after send
    └───┬────┘                  └──────────────────────────────────────┘
        │ anything else
        ▼
    GatewayResult(upstream=response)   streamed, never stored

    A 200 is only buffered when its Content-Length is known and within
    max_body_bytes; the buffered read has no overall deadline (httpx per-read
    timeouts still apply), so caching never turns a slow 200 into a 502.

Staleness:
    No invalidation exists. If the origin replaces a segment, the edge keeps
    serving the old bytes until the stored max-age runs out.
"""

import logging
from typing import NamedTuple, Optional
from urllib.parse import parse_qsl, urlencode

from hlsedge.schemas.proxy import CacheEntry, ResourceKind
from hlsedge.services.cache_policy import classify, snapshot_headers
from hlsedge.services.cache_store import CacheStore
from hlsedge.services.classifier import is_segment
from hlsedge.services.origin_client import OriginClient, UpstreamResponse, encode_path

logger = logging.getLogger(__name__)


def cache_key(method: str, path: str, query: str = "") -> str:
    """
    Canonical key: upper-cased method, path, query pairs sorted.

    `path` must be percent-encoded so "/a%3Fb.ts" and "/a?b.ts" stay distinct.

    Request headers (Range included) never take part in the key.
    """
    pairs = sorted(parse_qsl(query, keep_blank_values=True))
    canonical_query = urlencode(pairs)
    key = f"{method.upper()} {path}"
    return f"{key}?{canonical_query}" if canonical_query else key


class GatewayResult(NamedTuple):
    """Exactly one of hit / pending / upstream is set."""

    key: str
    hit: Optional[CacheEntry] = None
    pending: Optional[CacheEntry] = None
    upstream: Optional[UpstreamResponse] = None


class EdgeCacheGateway:
    """
    Args:
        origin:      Shared OriginClient
        store:       CacheStore implementation
        ttl_seconds:    Segment TTL written into every stored Cache-Control
        max_body_bytes: Bodies declared larger than this (or undeclared) are
                        streamed through instead of being buffered
    """

    def __init__(
        self,
        origin: OriginClient,
        store: CacheStore,
        ttl_seconds: int,
        max_body_bytes: int = 16 * 1024 * 1024,
    ):
        self.origin = origin
        self.store_backend = store
        self.ttl_seconds = ttl_seconds
        self.max_body_bytes = max_body_bytes

    @staticmethod
    def is_eligible(method: str, kind: ResourceKind, range_header: Optional[str]) -> bool:
        return method.upper() == "GET" and is_segment(kind) and not range_header

    async def lookup(self, key: str) -> Optional[CacheEntry]:
        try:
            return await self.store_backend.get(key)
        except Exception as e:
            logger.warning("Edge cache lookup failed for %s, treating as miss: %s", key, str(e))
            return None

    async def fetch(
        self,
        path: str,
        query: str,
        kind: ResourceKind,
        user_agent: Optional[str] = None,
    ) -> GatewayResult:
        """
        Serve a segment GET through the cache.

        Raises:
            ValueError:    kind is not a segment kind
            UpstreamError: propagated from the origin client on a miss
        """
        if not is_segment(kind):
            raise ValueError(f"Edge cache only serves segment kinds, got {kind.value}")

        key = cache_key("GET", encode_path(path), query)
        entry = await self.lookup(key)
        if entry is not None:
            logger.debug("Edge cache HIT %s", key)
            return GatewayResult(key=key, hit=entry)

        logger.debug("Edge cache MISS %s", key)
        upstream = await self.origin.fetch(path, query, "GET", None, user_agent)
        if upstream.status_code != 200 or upstream.is_partial:
            return GatewayResult(key=key, upstream=upstream)

        size = upstream.content_length
        if size is None or size > self.max_body_bytes:
            logger.debug("Edge cache BYPASS %s (content-length=%s)", key, size)
            return GatewayResult(key=key, upstream=upstream)

        origin_headers = upstream.headers
        body = await self.origin.read_body(upstream)
        policy = classify(kind, origin_headers, self.ttl_seconds)
        snapshot = CacheEntry(
            status_code=200,
            headers=snapshot_headers(policy, origin_headers),
            body=body,
        )
        return GatewayResult(key=key, pending=snapshot)

    async def store(self, key: str, entry: CacheEntry) -> None:
        """
        Write-behind half; runs as a background task after the response.

        Store failures are logged and dropped: the viewer already has the bytes.
        """
        try:
            await self.store_backend.put(key, entry)
            logger.debug("Edge cache stored %s (%d bytes)", key, entry.size)
        except Exception as e:
            logger.warning("Edge cache write failed for %s: %s", key, str(e))
