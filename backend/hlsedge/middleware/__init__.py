"""
HLS Edge Proxy — Middleware Package
=====================================

Middleware Chain:
    Request → [Request ID] → [Access Logging] → Route Handler

Admission control (rate limiting, connection caps) is left to the hosting
environment; media bytes pass through uncompressed.
"""
