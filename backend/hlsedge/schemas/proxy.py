"""
HLS Edge Proxy — Pydantic Data Models
=======================================

What:  Immutable value types shared by the proxy services.
How:   Frozen Pydantic models for policies, upstream request descriptors and
       cache entries; str-valued enums for the closed variants.
Who:   Produced by the classifier / policy engine / origin client / gateway,
       consumed by the orchestrator.
"""

import enum
import time
from typing import Dict, Optional

from pydantic import BaseModel, Field


# ══════════════════════════════════════════════════════════════════════════
# Closed Variants
# ══════════════════════════════════════════════════════════════════════════


class ResourceKind(str, enum.Enum):
    """What a request path refers to, derived from its extension."""

    MANIFEST = "manifest"
    TRANSPORT_STREAM_SEGMENT = "ts_segment"
    FRAGMENTED_SEGMENT = "m4s_segment"
    MP4_SEGMENT = "mp4_segment"
    ENCRYPTION_KEY = "key"
    OPAQUE = "opaque"


class ManifestLineKind(str, enum.Enum):
    """Classification of a single playlist line."""

    BLANK = "blank"
    PLAIN = "plain"                  # comment or directive without URI="…"
    URI_DIRECTIVE = "uri_directive"  # directive carrying a URI="…" attribute
    MEDIA_REFERENCE = "media_reference"


# ══════════════════════════════════════════════════════════════════════════
# Value Objects
# ══════════════════════════════════════════════════════════════════════════


class CachePolicy(BaseModel):
    """
    What:  Response policy for one resource kind.
    Who:   Built by cache_policy.classify(); applied by build_headers().

    cache_control is None for opaque resources (no special directive).
    ttl_seconds is 0 for anything that is not cacheable.
    """

    content_type: str = Field(description="Content-Type sent to the viewer")
    cache_control: Optional[str] = Field(default=None)
    cacheable: bool = Field(default=False)
    ttl_seconds: int = Field(default=0, ge=0)

    model_config = {"frozen": True}


class UpstreamRequest(BaseModel):
    """Descriptor of a single origin call."""

    method: str = Field(pattern="^(GET|HEAD)$")
    origin_url: str
    range_header: Optional[str] = None
    user_agent: str
    timeout_seconds: float = Field(gt=0)

    model_config = {"frozen": True}

    @property
    def outbound_headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "*/*",
            # Keeps origin bytes (and Content-Length) byte-identical end to end
            "Accept-Encoding": "identity",
            "User-Agent": self.user_agent,
        }
        if self.range_header:
            headers["Range"] = self.range_header
        return headers


class CacheEntry(BaseModel):
    """
    What:  Snapshot of a complete 200 segment response held by the edge cache.

    headers holds only allow-listed origin headers plus the Cache-Control the
    response was served with; its max-age bounds the entry's lifetime.
    """

    status_code: int = Field(ge=100, le=599)
    headers: Dict[str, str] = Field(default_factory=dict)
    body: bytes
    stored_at: float = Field(default_factory=time.time)

    model_config = {"frozen": True}

    @property
    def size(self) -> int:
        return len(self.body)
