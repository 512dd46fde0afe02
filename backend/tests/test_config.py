"""
HLS Edge Proxy — Settings Validation Tests
============================================

What:  Tests for the Settings validators and the startup sanity check.
"""

import pytest
from pydantic import ValidationError

from hlsedge.config import Settings


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestSettings:

    def test_defaults(self):
        cfg = make_settings()
        assert cfg.proxy_prefix == "/hls"
        assert cfg.health_path == "/health"
        assert cfg.cache_segment_seconds == 15
        assert cfg.proxy_timeout_ms == 15_000
        assert cfg.proxy_timeout_seconds == 15.0
        assert cfg.default_user_agent == "Mozilla/5.0"
        assert cfg.edge_cache_enabled is True
        assert cfg.head_probe_origin is False
        assert cfg.edge_cache_max_body_bytes == 16 * 1024 * 1024

    def test_origin_base_normalized(self):
        assert make_settings(origin_base="https://cdn.example:8443/ignored/path").origin_base == (
            "https://cdn.example:8443"
        )

    @pytest.mark.parametrize("value", ["origin.example", "ftp://origin.example", "http://"])
    def test_origin_base_rejected(self, value):
        with pytest.raises(ValidationError):
            make_settings(origin_base=value)

    def test_prefixes_normalized(self):
        cfg = make_settings(proxy_prefix="edge/", origin_path_prefix="/media/")
        assert cfg.proxy_prefix == "/edge"
        assert cfg.origin_path_prefix == "/media"

    def test_log_level(self):
        assert make_settings(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            make_settings(log_level="verbose")

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValidationError):
            make_settings(cache_segment_seconds=0)

    def test_timeout_floor(self):
        with pytest.raises(ValidationError):
            make_settings(proxy_timeout_ms=10)

    def test_max_body_bytes_must_be_positive(self):
        with pytest.raises(ValidationError):
            make_settings(edge_cache_max_body_bytes=0)


class TestStartupCheck:

    def test_valid(self):
        make_settings().validate_required_for_production()

    def test_empty_prefix(self):
        with pytest.raises(ValueError, match="PROXY_PREFIX"):
            make_settings(proxy_prefix="/").validate_required_for_production()

    def test_health_under_prefix(self):
        with pytest.raises(ValueError, match="HEALTH_PATH"):
            make_settings(health_path="/hls/health").validate_required_for_production()
