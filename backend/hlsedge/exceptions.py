"""
HLS Edge Proxy — Custom Exception Hierarchy
=============================================

What:  Application-specific exceptions for the proxy's failure modes.
How:   Each exception class carries a message and optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return plain-text responses with the right HTTP status.
Who:   Raised by the origin client, the orchestrator and cache stores.

Exception Hierarchy:
    EdgeProxyError (base)
    ├── NotFoundError            → 404 Not Found (outside the proxy prefix)
    ├── UpstreamError            → 502 Bad Gateway
    │   ├── UpstreamTimeoutError   (deadline expired, call cancelled)
    │   └── UpstreamNetworkError   (connect/read/protocol failure)
    └── CacheStoreError          → never reaches a client; swallowed by the
                                   edge cache gateway after logging

Origin 4xx/5xx responses are NOT exceptions: they are valid upstream answers
and are passed through with their status by the orchestrator.
"""

from typing import Any, Dict, Optional


class EdgeProxyError(Exception):
    """
    Base exception for all edge proxy errors.

    Attributes:
        message:  Client-facing description (safe to return in a response body)
        context:  Additional debug info (logged, and never returned to the client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class NotFoundError(EdgeProxyError):
    """
    Raised when a request path lies outside the proxy prefix.

    HTTP:    404 Not Found, the origin is never contacted.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if path:
            ctx["path"] = path
        super().__init__(message="Not Found", context=ctx)
        self.path = path


class UpstreamError(EdgeProxyError):
    """
    Raised when the origin could not produce a response at all.

    HTTP:    502 Bad Gateway with a diagnostic plain-text body.
    Retries: none. A single failure is surfaced immediately.

    Attributes:
        upstream_path: Path portion of the resolved origin URL (for the
                       X-Upstream-Path diagnostic header)
    """

    reason = "upstream error"

    def __init__(
        self,
        message: Optional[str] = None,
        upstream_path: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if upstream_path:
            ctx["upstream_path"] = upstream_path
        super().__init__(
            message=message or f"Upstream fetch failed: {self.reason}",
            context=ctx,
        )
        self.upstream_path = upstream_path


class UpstreamTimeoutError(UpstreamError):
    """
    Raised when the upstream deadline expires.

    The in-flight httpx call has already been cancelled by the time this is
    raised, so its pooled connection is released.
    """

    reason = "timeout"

    def __init__(
        self,
        timeout_ms: int,
        upstream_path: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["timeout_ms"] = timeout_ms
        super().__init__(
            message=f"Upstream fetch failed: timeout after {timeout_ms}ms",
            upstream_path=upstream_path,
            context=ctx,
        )
        self.timeout_ms = timeout_ms


class UpstreamNetworkError(UpstreamError):
    """Raised on connection refused, DNS failure, reset, protocol errors."""

    reason = "network error"


class CacheStoreError(EdgeProxyError):
    """
    Raised by an edge cache store when a lookup or write cannot be completed.

    The gateway logs and ignores it: a broken cache degrades to a cache miss
    and must never fail a viewer's request.
    """

    def __init__(
        self,
        message: str = "Edge cache store operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
