"""
HLS Edge Proxy — Manifest Rewriter
====================================

What:  Rewrites HLS playlist text so every internal reference routes back
       through the proxy prefix.
How:   A small line parser classifies each line into a closed variant
       (blank / plain / URI-bearing directive / media reference); only the
       URI attribute values and bare references are replaced.
Who:   Called by ProxyService for manifest-kind responses.

Guarantees:
    - Output has exactly as many lines as the input, in the same order
      (players associate directives such as #EXTINF with the next line).
    - Rewriting is idempotent: an already-proxied reference maps to itself.
    - Nothing here raises; a reference that cannot be resolved is left as is.

Example (base http://origin/live/index.m3u8, prefix /hls):
    #EXT-X-KEY:METHOD=AES-128,URI="key.bin"  →  ...,URI="/hls/live/key.bin"
    segment0.ts                              →  /hls/live/segment0.ts
    #EXTINF:6.0,                             →  #EXTINF:6.0,
"""

import logging
import re
from typing import List, NamedTuple
from urllib.parse import urljoin, urlsplit

from hlsedge.schemas.proxy import ManifestLineKind

logger = logging.getLogger(__name__)

# Directives whose attribute list may carry a quoted URI="…"
URI_DIRECTIVES = (
    "EXT-X-KEY",
    "EXT-X-SESSION-KEY",
    "EXT-X-MAP",
    "EXT-X-MEDIA",
    "EXT-X-I-FRAME-STREAM-INF",
    "EXT-X-SESSION-DATA",
)

_URI_DIRECTIVE_RE = re.compile(
    r"^#(?:%s):" % "|".join(re.escape(name) for name in URI_DIRECTIVES),
    re.IGNORECASE,
)
_URI_ATTRIBUTE_RE = re.compile(r'(URI=)"([^"]+)"', re.IGNORECASE)

_PROXYABLE_SCHEMES = frozenset({"http", "https"})


class ManifestLine(NamedTuple):
    kind: ManifestLineKind
    raw: str


def parse_line(line: str) -> ManifestLine:
    """Classify one playlist line (without its trailing newline)."""
    stripped = line.strip()
    if not stripped:
        return ManifestLine(ManifestLineKind.BLANK, line)
    if stripped.startswith("#"):
        if _URI_DIRECTIVE_RE.match(stripped) and _URI_ATTRIBUTE_RE.search(stripped):
            return ManifestLine(ManifestLineKind.URI_DIRECTIVE, line)
        return ManifestLine(ManifestLineKind.PLAIN, line)
    return ManifestLine(ManifestLineKind.MEDIA_REFERENCE, line)


def _strip_prefix(path: str, prefix: str) -> str:
    """Remove one leading `prefix` path segment, case-insensitively."""
    if not prefix:
        return path
    lowered = path.lower()
    lowered_prefix = prefix.lower()
    if lowered == lowered_prefix or lowered.startswith(lowered_prefix + "/"):
        return path[len(prefix):]
    return path


def _prefixed(path: str, proxy_prefix: str) -> str:
    path = _strip_prefix(path, proxy_prefix) or "/"
    if not path.startswith("/"):
        path = "/" + path
    return f"{proxy_prefix}{path}"


def proxy_reference(
    ref: str,
    base_url: str,
    proxy_prefix: str = "/hls",
    origin_path_prefix: str = "",
) -> str:
    """
    Map a playlist reference to its proxied absolute path.

    The reference is resolved against `base_url` (relative, root-relative,
    protocol-relative and absolute forms alike). The resolved path loses one
    leading proxy prefix (so re-rewriting is a no-op) and the origin path
    prefix (which the origin client adds back), then gains the proxy prefix;
    the resolved query string is kept.

    If resolution fails, a root-relative reference is prefixed directly and
    anything else is returned unchanged. Non-HTTP references (data:, skd://)
    are returned unchanged.

    Limitation: with an origin path prefix set, a reference resolving outside
    it (e.g. /other/x.ts with prefix /media) is still rewritten to
    /hls/other/x.ts, which the origin client maps to /media/other/x.ts. Only
    origins that keep every playlist resource under the prefix are served
    faithfully.
    """
    try:
        resolved = urlsplit(urljoin(base_url, ref))
        if not resolved.scheme or not resolved.netloc:
            raise ValueError(f"could not resolve {ref!r} against {base_url!r}")
    except ValueError:
        if ref.startswith("/"):
            return _prefixed(ref, proxy_prefix)
        return ref

    if resolved.scheme.lower() not in _PROXYABLE_SCHEMES:
        return ref

    path = _strip_prefix(resolved.path or "/", proxy_prefix)
    path = _strip_prefix(path, origin_path_prefix) or "/"
    query = f"?{resolved.query}" if resolved.query else ""
    return f"{proxy_prefix}{path}{query}"


def rewrite_manifest(
    text: str,
    base_url: str,
    proxy_prefix: str = "/hls",
    origin_path_prefix: str = "",
) -> str:
    """
    Rewrite a whole playlist.

    Args:
        text:               Decoded playlist body
        base_url:           Absolute URL the playlist was fetched from (after
                            redirects); relative references resolve against it
        proxy_prefix:       Inbound prefix, e.g. "/hls"
        origin_path_prefix: Origin-side prefix that is stripped from resolved
                            paths because the origin client rejoins it

    Returns:
        The rewritten playlist, with the same line count and order.
    """

    def to_proxy(ref: str) -> str:
        return proxy_reference(ref, base_url, proxy_prefix, origin_path_prefix)

    def replace_uri(match: "re.Match[str]") -> str:
        return f'{match.group(1)}"{to_proxy(match.group(2))}"'

    out: List[str] = []
    rewritten = 0
    for line in text.split("\n"):
        parsed = parse_line(line)
        if parsed.kind is ManifestLineKind.URI_DIRECTIVE:
            out.append(_URI_ATTRIBUTE_RE.sub(replace_uri, line))
            rewritten += 1
        elif parsed.kind is ManifestLineKind.MEDIA_REFERENCE:
            # CRLF playlists keep their \r on every line
            ending = "\r" if line.endswith("\r") else ""
            out.append(to_proxy(line.strip()) + ending)
            rewritten += 1
        else:
            out.append(line)

    logger.debug("Rewrote %d of %d manifest lines (base=%s)", rewritten, len(out), base_url)
    return "\n".join(out)
