"""
HLS Edge Proxy — Test Configuration (conftest.py)
===================================================

What:  Shared pytest fixtures for the test suite.
How:   The origin is simulated in-process with httpx.MockTransport, and the
       app is exercised through httpx.AsyncClient over ASGITransport; no
       sockets are opened.

Fixture Hierarchy:
    ├── test_settings:  Settings pointed at the fake origin (TTL 20s, 1s timeout)
    ├── fake_origin:    Programmable origin that records every request
    ├── origin_client:  OriginClient bound to fake_origin
    ├── cache_store:    Fresh InMemoryCacheStore
    └── test_client:    AsyncClient talking to create_app(...) for the above
"""

import asyncio
import os
from typing import AsyncIterator, Dict, List, Optional, Type

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Keep the module-level app quiet and off any real origin
os.environ["ORIGIN_BASE"] = "http://origin.test"
os.environ["LOG_LEVEL"] = "WARNING"

from hlsedge.config import Settings  # noqa: E402
from hlsedge.services.cache_store import InMemoryCacheStore  # noqa: E402
from hlsedge.services.origin_client import OriginClient  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Fake Origin
# ══════════════════════════════════════════════════════════════════════════

class FakeRoute:
    def __init__(
        self,
        status: int = 200,
        body: bytes = b"",
        headers: Optional[Dict[str, str]] = None,
        delay: float = 0.0,
        error: Optional[Type[Exception]] = None,
        chunks: Optional[List[bytes]] = None,
        chunk_delay: float = 0.0,
        declare_length: bool = True,
    ):
        self.status = status
        self.body = body
        self.headers = headers or {}
        self.delay = delay
        self.error = error
        # Body sent piece by piece, chunk_delay seconds apart
        self.chunks = chunks
        self.chunk_delay = chunk_delay
        self.declare_length = declare_length

    async def trickle(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            await asyncio.sleep(self.chunk_delay)
            yield chunk


async def _stream_once(body: bytes) -> AsyncIterator[bytes]:
    if body:
        yield body


class FakeOrigin:
    """
    Programmable origin server for httpx.MockTransport.

    Usage:
        fake_origin.add("/live/seg1.ts", body=b"TS", headers={"content-type": "video/mp2t"})
        ... request through the proxy ...
        assert fake_origin.calls("/live/seg1.ts") == 1
    """

    def __init__(self):
        self.routes: Dict[str, FakeRoute] = {}
        self.requests: List[httpx.Request] = []

    def add(self, path: str, **kwargs) -> None:
        self.routes[path] = FakeRoute(**kwargs)

    def calls(self, path: Optional[str] = None) -> int:
        if path is None:
            return len(self.requests)
        return sum(1 for r in self.requests if r.url.path == path)

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, text="origin: not found")
        if route.delay:
            await asyncio.sleep(route.delay)
        if route.error is not None:
            raise route.error("simulated failure", request=request)
        if route.chunks is not None:
            headers = dict(route.headers)
            if route.declare_length:
                headers["content-length"] = str(sum(len(c) for c in route.chunks))
            return httpx.Response(route.status, content=route.trickle(), headers=headers)
        # Stream the body like a real transport would; a bytes-backed Response is
        # read at construction, which makes aiter_raw() raise StreamConsumed
        headers = dict(route.headers)
        if not any(k.lower() == "content-length" for k in headers):
            headers["content-length"] = str(len(route.body))
        return httpx.Response(route.status, content=_stream_once(route.body), headers=headers)


# ══════════════════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        origin_base="http://origin.test",
        proxy_prefix="/hls",
        cache_segment_seconds=20,
        proxy_timeout_ms=1000,
        log_level="WARNING",
    )


@pytest.fixture
def fake_origin() -> FakeOrigin:
    return FakeOrigin()


@pytest.fixture
def cache_store() -> InMemoryCacheStore:
    return InMemoryCacheStore(max_entries=16)


@pytest_asyncio.fixture
async def origin_client(test_settings, fake_origin):
    client = OriginClient(test_settings, transport=httpx.MockTransport(fake_origin))
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def test_client(test_settings, fake_origin, cache_store):
    """
    HTTPX AsyncClient routed straight into a freshly built app.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    from hlsedge.main import create_app

    app = create_app(
        settings=test_settings,
        transport=httpx.MockTransport(fake_origin),
        store=cache_store,
    )
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await app.state.origin_client.aclose()
