"""
HLS Edge Proxy — Application Configuration
============================================

What:  Centralized configuration management using Pydantic Settings.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a singleton `settings` object.
Who:   Passed to every service by the application factory.
When:  Loaded once at module import time; `create_app(settings=...)` accepts an
       override so tests can build apps against a fake origin.
"""

from urllib.parse import urlparse

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


def _normalize_prefix(value: str) -> str:
    """'/hls/' → '/hls', 'media' → '/media', '' and '/' → ''."""
    value = value.strip().strip("/")
    return f"/{value}" if value else ""


class Settings(BaseSettings):
    """
    Edge proxy settings loaded from environment variables.

    Every value has a development default; production deployments override at
    least ORIGIN_BASE.
    """

    # ── Origin ────────────────────────────────────────────────────────────
    # What: Scheme + host (+ optional port) of the single media origin
    origin_base: str = Field(
        default="http://127.0.0.1:8080",
        description="Origin authority all proxied requests are resolved against",
    )

    # What: Path prefix rejoined in front of the stripped request path on the
    # origin side, e.g. "/live" turns /hls/a/b.ts into <origin>/live/a/b.ts
    origin_path_prefix: str = Field(default="")

    # What: Upstream deadline covering connect + response headers. Body reads
    # are bounded per read by the same value, not as a whole
    proxy_timeout_ms: int = Field(default=15_000, ge=100, le=120_000)

    # What: User-Agent sent upstream when the viewer did not send one
    default_user_agent: str = Field(default="Mozilla/5.0")

    # ── Inbound routing ───────────────────────────────────────────────────
    proxy_prefix: str = Field(default="/hls")
    health_path: str = Field(default="/health")

    # ── Edge cache ────────────────────────────────────────────────────────
    # What: TTL written into segment Cache-Control and honoured by the store
    # Trade-off: shorter bounds staleness, longer absorbs more repeat viewers
    cache_segment_seconds: int = Field(default=15, ge=1, le=3600)
    edge_cache_enabled: bool = Field(default=True)
    edge_cache_max_entries: int = Field(default=512, ge=1, le=100_000)

    # What: Largest body (by origin Content-Length) buffered for the cache.
    # Larger bodies, or bodies without a Content-Length, stream uncached.
    edge_cache_max_body_bytes: int = Field(default=16 * 1024 * 1024, ge=1)

    # ── Behaviour variants ────────────────────────────────────────────────
    # What: When True, HEAD issues a real origin HEAD to report an accurate
    # Content-Length; when False, HEAD headers are synthesized from policy
    head_probe_origin: bool = Field(default=False)

    # What: Echo the resolved origin path in X-Upstream-Path
    diagnostic_headers: bool = Field(default=True)

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8000, ge=1024, le=65535)

    # Valid: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    @field_validator("origin_base")
    @classmethod
    def validate_origin_base(cls, v: str) -> str:
        """Origin must be an absolute http(s) URL with a host."""
        parsed = urlparse(v.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(
                f"Invalid origin_base '{v}'. Expected e.g. 'http://origin.example:8080'"
            )
        return f"{parsed.scheme}://{parsed.netloc}"

    @field_validator("origin_path_prefix", "proxy_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        return _normalize_prefix(v)

    @field_validator("health_path")
    @classmethod
    def validate_health_path(cls, v: str) -> str:
        return _normalize_prefix(v) or "/health"

    @property
    def proxy_timeout_seconds(self) -> float:
        return self.proxy_timeout_ms / 1000

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,  # ORIGIN_BASE and origin_base both work
    }

    def validate_required_for_production(self) -> None:
        """
        What:  Warn-level sanity checks run during app startup (lifespan).
        How:   Collects problems and raises ValueError with guidance.
        """
        errors = []
        if not self.proxy_prefix:
            errors.append(
                "PROXY_PREFIX is empty. Every path would be proxied, including "
                "the health path; set it to e.g. '/hls'."
            )
        if self.health_path.startswith(f"{self.proxy_prefix}/") and self.proxy_prefix:
            errors.append(
                f"HEALTH_PATH '{self.health_path}' lies under PROXY_PREFIX "
                f"'{self.proxy_prefix}' and will shadow an origin resource."
            )
        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


# Singleton instance used by the module-level app
settings = Settings()
