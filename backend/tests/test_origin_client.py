"""
HLS Edge Proxy — Origin Client Unit Tests
===========================================

What:  Tests for URL construction, outbound headers and failure mapping.
How:   OriginClient talks to the FakeOrigin through httpx.MockTransport.

Test Strategy:
    ✅ Proxy prefix stripped, origin prefix rejoined, query kept
    ✅ Outbound headers: UA default, Range forwarded, identity encoding
    ✅ Deadline → UpstreamTimeoutError, transport error → UpstreamNetworkError
    ✅ Redirects followed; final URL exposed
    ✅ Reserved characters re-encoded; slow bodies buffered past the header deadline
    ❌ Real sockets (covered by deployment smoke tests)
"""

import httpx
import pytest

from hlsedge.config import Settings
from hlsedge.exceptions import UpstreamNetworkError, UpstreamTimeoutError
from hlsedge.services.origin_client import OriginClient


class TestUrlBuilding:

    def setup_method(self):
        self.client = OriginClient(Settings(_env_file=None, origin_base="http://origin.test"))

    def test_prefix_stripped(self):
        assert self.client.build_url("/hls/live/seg1.ts") == "http://origin.test/live/seg1.ts"

    def test_query_kept(self):
        assert self.client.build_url("/hls/live/index.m3u8", "token=abc") == (
            "http://origin.test/live/index.m3u8?token=abc"
        )

    def test_origin_path_prefix(self):
        client = OriginClient(
            Settings(_env_file=None, origin_base="http://origin.test/", origin_path_prefix="media/")
        )
        assert client.origin_path("/hls/live/a.ts") == "/media/live/a.ts"
        assert client.build_url("/hls/live/a.ts") == "http://origin.test/media/live/a.ts"

    def test_reserved_characters_reencoded(self):
        """Inbound paths arrive decoded; a literal "?" or "#" must stay in the path."""
        assert self.client.build_url("/hls/live/a?b.ts") == "http://origin.test/live/a%3Fb.ts"
        assert self.client.build_url("/hls/live/a#b.ts", "t=1") == "http://origin.test/live/a%23b.ts?t=1"
        assert self.client.origin_path("/hls/live/my seg.ts") == "/live/my%20seg.ts"
        assert self.client.origin_path("/hls/live/50%.ts") == "/live/50%25.ts"
        assert self.client.origin_path("/hls/live/a=1,b.ts") == "/live/a=1,b.ts"

    def test_double_slash_stays_on_origin(self):
        url = httpx.URL(self.client.build_url("/hls//evil.example/x.ts"))
        assert url.host == "origin.test"

    def test_describe_rejects_other_methods(self):
        with pytest.raises(ValueError, match="not proxied"):
            self.client.describe("/hls/a.ts", method="POST")

    def test_describe_defaults_user_agent(self):
        descriptor = self.client.describe("/hls/a.ts")
        assert descriptor.user_agent == "Mozilla/5.0"
        assert descriptor.outbound_headers["Accept-Encoding"] == "identity"
        assert "Range" not in descriptor.outbound_headers


class TestFetch:

    @pytest.mark.asyncio
    async def test_outbound_headers(self, origin_client, fake_origin):
        fake_origin.add("/live/seg1.ts", status=206, body=b"0123", headers={"content-range": "bytes 0-3/10"})

        upstream = await origin_client.fetch(
            "/hls/live/seg1.ts", range_header="bytes=0-3", user_agent="TestPlayer/2.0"
        )
        await upstream.aclose()

        sent = fake_origin.last_request
        assert sent.method == "GET"
        assert sent.headers["range"] == "bytes=0-3"
        assert sent.headers["user-agent"] == "TestPlayer/2.0"
        assert sent.headers["accept"] == "*/*"
        assert upstream.status_code == 206
        assert upstream.is_partial is True
        assert upstream.upstream_path == "/live/seg1.ts"

    @pytest.mark.asyncio
    async def test_headers_filtered(self, origin_client, fake_origin):
        fake_origin.add(
            "/live/seg1.ts",
            body=b"TS",
            headers={"content-type": "video/mp2t", "set-cookie": "a=1", "etag": '"v1"'},
        )
        upstream = await origin_client.fetch("/hls/live/seg1.ts")
        body = await origin_client.read_body(upstream)

        assert body == b"TS"
        assert upstream.headers["content-type"] == "video/mp2t"
        assert upstream.headers["etag"] == '"v1"'
        assert "set-cookie" not in upstream.headers
        assert upstream.is_partial is False

    @pytest.mark.asyncio
    async def test_redirect_followed(self, origin_client, fake_origin):
        fake_origin.add(
            "/live/index.m3u8",
            status=302,
            headers={"location": "http://origin.test/moved/index.m3u8"},
        )
        fake_origin.add("/moved/index.m3u8", body=b"#EXTM3U\n")

        upstream = await origin_client.fetch("/hls/live/index.m3u8")
        body = await origin_client.read_body(upstream)

        assert upstream.status_code == 200
        assert upstream.final_url == "http://origin.test/moved/index.m3u8"
        assert body == b"#EXTM3U\n"

    @pytest.mark.asyncio
    async def test_origin_error_status_returned(self, origin_client, fake_origin):
        upstream = await origin_client.fetch("/hls/live/missing.ts")
        await upstream.aclose()
        assert upstream.status_code == 404

    @pytest.mark.asyncio
    async def test_head(self, origin_client, fake_origin):
        fake_origin.add("/live/seg1.ts", body=b"TS")
        upstream = await origin_client.fetch("/hls/live/seg1.ts", method="head")
        await upstream.aclose()
        assert fake_origin.last_request.method == "HEAD"


class TestFailures:

    @pytest.mark.asyncio
    async def test_timeout(self, fake_origin):
        settings = Settings(_env_file=None, origin_base="http://origin.test", proxy_timeout_ms=100)
        client = OriginClient(settings, transport=httpx.MockTransport(fake_origin))
        fake_origin.add("/live/slow.ts", body=b"TS", delay=2.0)

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await client.fetch("/hls/live/slow.ts")
        await client.aclose()

        assert exc_info.value.message == "Upstream fetch failed: timeout after 100ms"
        assert exc_info.value.upstream_path == "/live/slow.ts"

    @pytest.mark.asyncio
    async def test_network_error(self, origin_client, fake_origin):
        fake_origin.add("/live/seg1.ts", error=httpx.ConnectError)

        with pytest.raises(UpstreamNetworkError) as exc_info:
            await origin_client.fetch("/hls/live/seg1.ts")

        assert exc_info.value.message == "Upstream fetch failed: ConnectError"
        assert exc_info.value.upstream_path == "/live/seg1.ts"


class TestReadBody:

    @pytest.mark.asyncio
    async def test_slow_body_outlives_header_deadline(self, fake_origin):
        settings = Settings(_env_file=None, origin_base="http://origin.test", proxy_timeout_ms=100)
        client = OriginClient(settings, transport=httpx.MockTransport(fake_origin))
        fake_origin.add("/vod/movie.mp4", chunks=[b"ab", b"cd", b"ef", b"gh"], chunk_delay=0.06)

        upstream = await client.fetch("/hls/vod/movie.mp4")
        body = await client.read_body(upstream)
        await client.aclose()

        assert upstream.content_length == 8
        assert body == b"abcdefgh"

    @pytest.mark.asyncio
    async def test_explicit_timeout(self, origin_client, fake_origin):
        fake_origin.add("/vod/movie.mp4", chunks=[b"ab", b"cd"], chunk_delay=0.2)

        upstream = await origin_client.fetch("/hls/vod/movie.mp4")
        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await origin_client.read_body(upstream, timeout=0.1)

        assert exc_info.value.message == "Upstream fetch failed: timeout after 100ms"

    @pytest.mark.asyncio
    async def test_unsized_body(self, origin_client, fake_origin):
        fake_origin.add("/vod/live.mp4", chunks=[b"ab", b"cd"], declare_length=False)

        upstream = await origin_client.fetch("/hls/vod/live.mp4")
        body = await origin_client.read_body(upstream)

        assert upstream.content_length is None
        assert body == b"abcd"
