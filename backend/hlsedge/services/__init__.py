"""
HLS Edge Proxy — Services Layer
=================================

Service Inventory:
    - classifier:        path → ResourceKind
    - manifest_rewriter: playlist text → proxied playlist text
    - cache_policy:      ResourceKind → CachePolicy, response header merge
    - origin_client:     bounded-timeout origin fetches (httpx)
    - cache_store:       CacheStore interface + InMemoryCacheStore
    - edge_cache:        read-through / write-behind segment cache
    - proxy_service:     per-request orchestrator
"""
