"""
HLS Edge Proxy — Cache Policy Engine
======================================

What:  Decides Content-Type / Cache-Control / cacheability per resource kind
       and assembles response headers.
How:   A fixed decision table keyed by ResourceKind, then a layered header
       merge: policy defaults first, then only an allow-list of origin values,
       then CORS and diagnostic headers.

Decision table:
    ┌────────────────┬──────────────────────────────┬─────────────────────────────────┬───────────┐
    │ Kind           │ Content-Type                 │ Cache-Control                   │ Cacheable │
    ├────────────────┼──────────────────────────────┼─────────────────────────────────┼───────────┤
    │ manifest       │ application/vnd.apple.mpegurl│ no-store, must-revalidate       │ no        │
    │ ts/m4s/mp4     │ origin's, else per-kind MIME │ public, max-age=<TTL>, immutable│ yes       │
    │ key            │ application/octet-stream     │ no-store                        │ no        │
    │ opaque         │ origin's, else octet-stream  │ (none)                          │ no        │
    └────────────────┴──────────────────────────────┴─────────────────────────────────┴───────────┘

Manifests and keys are never cacheable regardless of origin headers: live
playlists change every target duration and key rotations must reach viewers
immediately.
"""

from types import MappingProxyType
from typing import Dict, Mapping, Optional

from hlsedge.schemas.proxy import CachePolicy, ResourceKind
from hlsedge.services.classifier import is_segment

MANIFEST_MIME = "application/vnd.apple.mpegurl"
BINARY_MIME = "application/octet-stream"
PLAIN_TEXT_MIME = "text/plain; charset=utf-8"

MANIFEST_CACHE_CONTROL = "no-store, must-revalidate"
KEY_CACHE_CONTROL = "no-store"

SEGMENT_MIMES = MappingProxyType({
    ResourceKind.TRANSPORT_STREAM_SEGMENT: "video/mp2t",
    ResourceKind.FRAGMENTED_SEGMENT: "video/iso.segment",
    ResourceKind.MP4_SEGMENT: "video/mp4",
})

# Origin headers that may be surfaced to viewers; everything else is dropped
PASSTHROUGH_HEADERS = (
    "accept-ranges",
    "content-range",
    "content-length",
    "etag",
    "last-modified",
)

EXPOSE_HEADERS = ("Accept-Ranges", "Content-Range", "Content-Length")
UPSTREAM_PATH_HEADER = "X-Upstream-Path"

PREFLIGHT_HEADERS = MappingProxyType({
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, HEAD, OPTIONS",
    "Access-Control-Allow-Headers": "Range, User-Agent, Referer, Origin, Cache-Control, Content-Type",
    "Access-Control-Max-Age": "86400",
})


def _lower_keys(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    if not headers:
        return {}
    return {k.lower(): v for k, v in headers.items()}


def segment_cache_control(ttl_seconds: int) -> str:
    return f"public, max-age={ttl_seconds}, immutable"


def classify(
    kind: ResourceKind,
    origin_headers: Optional[Mapping[str, str]],
    ttl_seconds: int,
) -> CachePolicy:
    """
    Build the CachePolicy for a resource.

    Args:
        kind:           Resource kind from the path classifier
        origin_headers: Origin response headers (may be None or empty, e.g.
                        for synthesized HEAD responses or cache hits)
        ttl_seconds:    Configured segment TTL; must be positive

    Returns:
        CachePolicy. Never raises for a valid kind.
    """
    if ttl_seconds <= 0:
        raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")

    origin_type = _lower_keys(origin_headers).get("content-type")

    if kind is ResourceKind.MANIFEST:
        return CachePolicy(content_type=MANIFEST_MIME, cache_control=MANIFEST_CACHE_CONTROL)

    if is_segment(kind):
        return CachePolicy(
            content_type=origin_type or SEGMENT_MIMES[kind],
            cache_control=segment_cache_control(ttl_seconds),
            cacheable=True,
            ttl_seconds=ttl_seconds,
        )

    if kind is ResourceKind.ENCRYPTION_KEY:
        return CachePolicy(content_type=BINARY_MIME, cache_control=KEY_CACHE_CONTROL)

    return CachePolicy(content_type=origin_type or BINARY_MIME)


def cors_headers(diagnostics: bool = False) -> Dict[str, str]:
    expose = list(EXPOSE_HEADERS)
    if diagnostics:
        expose.append(UPSTREAM_PATH_HEADER)
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Expose-Headers": ", ".join(expose),
    }


def build_headers(
    policy: CachePolicy,
    origin_headers: Optional[Mapping[str, str]] = None,
    upstream_path: Optional[str] = None,
) -> Dict[str, str]:
    """
    Layered header merge for a successful response.

    1. Policy defaults (Content-Type, Cache-Control)
    2. Allow-listed origin values (PASSTHROUGH_HEADERS) on top
    3. CORS headers
    4. X-Upstream-Path when `upstream_path` is given
    """
    headers: Dict[str, str] = {"Content-Type": policy.content_type}
    if policy.cache_control:
        headers["Cache-Control"] = policy.cache_control

    origin = _lower_keys(origin_headers)
    for name in PASSTHROUGH_HEADERS:
        value = origin.get(name)
        if value:
            headers["-".join(part.capitalize() for part in name.split("-"))] = value

    headers.update(cors_headers(diagnostics=upstream_path is not None))
    if upstream_path is not None:
        headers[UPSTREAM_PATH_HEADER] = upstream_path
    return headers


def error_headers(upstream_path: Optional[str] = None) -> Dict[str, str]:
    """Headers for proxy-generated plain-text failure bodies (never stored)."""
    headers = {"Content-Type": PLAIN_TEXT_MIME, "Cache-Control": "no-store"}
    headers.update(cors_headers(diagnostics=upstream_path is not None))
    if upstream_path is not None:
        headers[UPSTREAM_PATH_HEADER] = upstream_path
    return headers


def preflight_headers() -> Dict[str, str]:
    return dict(PREFLIGHT_HEADERS)


def snapshot_headers(
    policy: CachePolicy,
    origin_headers: Optional[Mapping[str, str]],
) -> Dict[str, str]:
    """
    Headers stored alongside a cache entry: the allow-listed origin values and
    the Cache-Control the entry was served with (its TTL source).
    """
    origin = _lower_keys(origin_headers)
    stored = {name: origin[name] for name in PASSTHROUGH_HEADERS if origin.get(name)}
    if origin.get("content-type"):
        stored["content-type"] = origin["content-type"]
    if policy.cache_control:
        stored["cache-control"] = policy.cache_control
    return stored
