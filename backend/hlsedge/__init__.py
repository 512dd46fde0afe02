"""
HLS Edge Proxy
================

Edge reverse proxy for HLS video delivery in front of a single media origin.

    ┌─────────────────────────────────────┐
    │       Routes (health, proxy)        │  ← HTTP surface
    ├─────────────────────────────────────┤
    │    ProxyService (orchestrator)      │  ← per-request state machine
    ├─────────────────────────────────────┤
    │  Classifier · Policy · Rewriter ·   │  ← pure logic
    │  EdgeCacheGateway · OriginClient    │  ← I/O
    ├─────────────────────────────────────┤
    │   Schemas (immutable value types)   │
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
