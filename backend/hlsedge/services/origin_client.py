"""
HLS Edge Proxy — Upstream Origin Client
=========================================

What:  Issues bounded-timeout GET/HEAD requests to the single media origin.
How:   One shared httpx.AsyncClient (connection pooling); each call is wrapped
       in asyncio.wait_for so the deadline cancels the in-flight request and
       returns its connection to the pool.
Who:   Used by ProxyService directly and through EdgeCacheGateway.

Failure classification:
    asyncio deadline expired / httpx.TimeoutException  → UpstreamTimeoutError
    any other httpx transport error / invalid URL      → UpstreamNetworkError
    origin 4xx/5xx                                     → returned normally

There is no retry on either failure: one failed attempt becomes a 502 and the
edge cache absorbs repeat requests instead.

Request Flow:
    /hls/live/seg1.ts?t=1
        → strip proxy prefix        /live/seg1.ts
        → rejoin origin prefix      /media/live/seg1.ts   (ORIGIN_PATH_PREFIX=/media)
        → re-encode path            /media/live/seg1.ts   (inbound paths arrive decoded;
                                                      "a?b.ts" goes out as "a%3Fb.ts")
        → resolve against origin    http://origin:8080/media/live/seg1.ts?t=1

Body reads (streamed or buffered) are bounded per read by the httpx read
timeout, not by the header deadline: a slow but live origin is not a failure.
"""

import asyncio
import logging
import time
from typing import AsyncIterator, Dict, Optional
from urllib.parse import quote

import httpx

from hlsedge.config import Settings
from hlsedge.exceptions import UpstreamNetworkError, UpstreamTimeoutError
from hlsedge.schemas.proxy import UpstreamRequest
from hlsedge.services.cache_policy import PASSTHROUGH_HEADERS

logger = logging.getLogger(__name__)

ALLOWED_METHODS = frozenset({"GET", "HEAD"})
STREAM_CHUNK_SIZE = 64 * 1024

# RFC 3986 pchar sub-delims plus "/"; "%", "?" and "#" are always escaped
PATH_SAFE_CHARS = "/:@!$&'()*+,;=~"


def encode_path(path: str) -> str:
    """Percent-encode a decoded request path for use in an origin URL."""
    return quote(path, safe=PATH_SAFE_CHARS)


class UpstreamResponse:
    """
    An origin response whose body has not been read yet.

    Owns the underlying connection: callers must either stream the body via
    iter_body() and then aclose(), or hand it to OriginClient.read_body().
    """

    def __init__(
        self,
        request: UpstreamRequest,
        response: httpx.Response,
        upstream_path: str,
    ):
        self.request = request
        self.upstream_path = upstream_path
        self._response = response

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def final_url(self) -> str:
        """URL after redirects; the base for resolving manifest references."""
        return str(self._response.url)

    @property
    def headers(self) -> Dict[str, str]:
        """Content-Type plus the passthrough allow-list; nothing else."""
        selected = {}
        for name in ("content-type",) + PASSTHROUGH_HEADERS:
            value = self._response.headers.get(name)
            if value is not None:
                selected[name] = value
        return selected

    @property
    def content_length(self) -> Optional[int]:
        value = self._response.headers.get("content-length")
        if value is None or not value.strip().isdigit():
            return None
        return int(value)

    @property
    def is_partial(self) -> bool:
        return self.status_code == 206 or "content-range" in self._response.headers

    async def iter_body(self) -> AsyncIterator[bytes]:
        async for chunk in self._response.aiter_raw(STREAM_CHUNK_SIZE):
            yield chunk

    async def aclose(self) -> None:
        await self._response.aclose()


class OriginClient:
    """
    Thin wrapper over httpx.AsyncClient bound to the configured origin.

    Args:
        settings:  Application settings (origin, prefixes, timeout, UA)
        transport: Optional httpx transport; tests pass httpx.MockTransport
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._client = httpx.AsyncClient(
            transport=transport,
            follow_redirects=True,
            # Per-phase httpx timeouts back up the overall asyncio deadline
            timeout=httpx.Timeout(settings.proxy_timeout_seconds),
        )

    # ── URL construction ──────────────────────────────────────────────────

    def origin_path(self, path: str) -> str:
        """Map a decoded inbound proxy path to the encoded origin-side path."""
        prefix = self.settings.proxy_prefix
        if prefix and (path.lower() == prefix.lower() or path.lower().startswith(prefix.lower() + "/")):
            path = path[len(prefix):]
        if not path.startswith("/"):
            path = "/" + path
        return encode_path(f"{self.settings.origin_path_prefix}{path}")

    def build_url(self, path: str, query: str = "") -> str:
        # Concatenated rather than urljoin'ed: a path like "//other-host/x"
        # must stay on the configured origin
        url = f"{self.settings.origin_base}{self.origin_path(path)}"
        return f"{url}?{query}" if query else url

    def describe(
        self,
        path: str,
        query: str = "",
        method: str = "GET",
        range_header: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> UpstreamRequest:
        method = method.upper()
        if method not in ALLOWED_METHODS:
            raise ValueError(f"Method {method} is not proxied; allowed: {sorted(ALLOWED_METHODS)}")
        return UpstreamRequest(
            method=method,
            origin_url=self.build_url(path, query),
            range_header=range_header or None,
            user_agent=user_agent or self.settings.default_user_agent,
            timeout_seconds=self.settings.proxy_timeout_seconds,
        )

    # ── Fetching ──────────────────────────────────────────────────────────

    async def fetch(
        self,
        path: str,
        query: str = "",
        method: str = "GET",
        range_header: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> UpstreamResponse:
        """
        Send one request to the origin and return once headers arrive.

        Raises:
            ValueError:            method other than GET/HEAD
            UpstreamTimeoutError:  deadline expired (request cancelled)
            UpstreamNetworkError:  transport failure
        """
        descriptor = self.describe(path, query, method, range_header, user_agent)
        upstream_path = self.origin_path(path)
        timeout_ms = self.settings.proxy_timeout_ms
        started = time.monotonic()

        try:
            request = self._client.build_request(
                descriptor.method,
                descriptor.origin_url,
                headers=descriptor.outbound_headers,
            )
            response = await asyncio.wait_for(
                self._client.send(request, stream=True),
                timeout=descriptor.timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning(
                "Upstream %s %s timed out after %dms", descriptor.method, upstream_path, timeout_ms,
            )
            raise UpstreamTimeoutError(timeout_ms=timeout_ms, upstream_path=upstream_path)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(
                "Upstream %s %s failed: %s: %s",
                descriptor.method, upstream_path, type(e).__name__, str(e),
            )
            raise UpstreamNetworkError(
                message=f"Upstream fetch failed: {type(e).__name__}",
                upstream_path=upstream_path,
                context={"error": str(e)},
            )

        logger.debug(
            "Upstream %s %s → %d in %.0fms",
            descriptor.method,
            upstream_path,
            response.status_code,
            (time.monotonic() - started) * 1000,
        )
        return UpstreamResponse(
            request=descriptor,
            response=response,
            upstream_path=upstream_path,
        )

    async def read_body(self, upstream: UpstreamResponse, timeout: Optional[float] = None) -> bytes:
        """
        Buffer the full body and close the upstream response.

        Args:
            upstream: Response returned by fetch()
            timeout:  Optional overall bound in seconds. When None, only the
                      httpx per-read timeout applies, so a body that keeps
                      flowing is never cut off.
        """
        timeout_ms = int(timeout * 1000) if timeout is not None else self.settings.proxy_timeout_ms
        try:
            if timeout is None:
                return await self._read_raw(upstream)
            return await asyncio.wait_for(self._read_raw(upstream), timeout=timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning("Upstream body %s timed out", upstream.upstream_path)
            raise UpstreamTimeoutError(timeout_ms=timeout_ms, upstream_path=upstream.upstream_path)
        except httpx.HTTPError as e:
            logger.warning("Upstream body %s failed: %s", upstream.upstream_path, str(e))
            raise UpstreamNetworkError(
                message=f"Upstream fetch failed: {type(e).__name__}",
                upstream_path=upstream.upstream_path,
                context={"error": str(e)},
            )
        finally:
            await upstream.aclose()

    @staticmethod
    async def _read_raw(upstream: UpstreamResponse) -> bytes:
        # Raw bytes, so a stored or rewritten body matches the origin Content-Length
        return b"".join([chunk async for chunk in upstream.iter_body()])

    async def aclose(self) -> None:
        await self._client.aclose()
