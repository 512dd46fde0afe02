"""
HLS Edge Proxy — Path Classifier
==================================

What:  Maps a request path to a ResourceKind by file extension.
How:   Case-insensitive suffix lookup against a fixed table; query string and
       fragment are ignored. Total: unknown extensions are OPAQUE, and no
       input raises.
"""

import posixpath
from types import MappingProxyType

from hlsedge.schemas.proxy import ResourceKind

EXTENSION_KINDS = MappingProxyType({
    ".m3u8": ResourceKind.MANIFEST,
    ".ts": ResourceKind.TRANSPORT_STREAM_SEGMENT,
    ".m4s": ResourceKind.FRAGMENTED_SEGMENT,
    ".mp4": ResourceKind.MP4_SEGMENT,
    ".key": ResourceKind.ENCRYPTION_KEY,
})

SEGMENT_KINDS = frozenset({
    ResourceKind.TRANSPORT_STREAM_SEGMENT,
    ResourceKind.FRAGMENTED_SEGMENT,
    ResourceKind.MP4_SEGMENT,
})


def classify_path(path: str) -> ResourceKind:
    """
    Classify a request path.

    >>> classify_path("/hls/live/index.M3U8?token=1")
    <ResourceKind.MANIFEST: 'manifest'>
    >>> classify_path("/hls/live/")
    <ResourceKind.OPAQUE: 'opaque'>
    """
    if not isinstance(path, str):
        return ResourceKind.OPAQUE
    bare = path.split("?", 1)[0].split("#", 1)[0]
    _, ext = posixpath.splitext(bare)
    return EXTENSION_KINDS.get(ext.lower(), ResourceKind.OPAQUE)


def is_segment(kind: ResourceKind) -> bool:
    return kind in SEGMENT_KINDS
