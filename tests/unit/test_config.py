"""Unit tests for RateLimitConfig."""

import pytest

from tierlimit.config import RateLimitConfig
from tierlimit.exceptions import UnknownLimitClass


class TestRateLimitConfigDefaults:
    """Test default configuration values."""

    def test_defaults(self):
        config = RateLimitConfig()
        assert config.enabled is True
        assert config.backend == "memory"
        assert config.default_class == "api"
        assert config.store_timeout_seconds == 0.25
        assert config.events == "logging"
        assert config.include_headers is True
        assert config.is_production is False
        assert set(config.limit_classes) == {
            "api",
            "polling",
            "sensitive",
            "ai",
            "payment",
            "admin",
        }

    def test_default_limit_classes_are_copies(self):
        first = RateLimitConfig()
        first.limit_classes["api"]["max_requests"] = 1
        assert RateLimitConfig().limit_classes["api"]["max_requests"] == 100

    def test_build_registry(self):
        config = RateLimitConfig(
            limit_classes={"api": {"max_requests": 7, "window_seconds": 10}}
        )
        assert config.build_registry().get_config("api").max_requests == 7

    def test_production_flag_case_insensitive(self):
        assert RateLimitConfig(environment="Production").is_production is True


class TestRateLimitConfigValidation:
    """Test __post_init__ validation."""

    def test_redis_requires_url(self):
        with pytest.raises(ValueError, match="redis_url required"):
            RateLimitConfig(backend="redis")

    def test_database_requires_url(self):
        with pytest.raises(ValueError, match="database_url required"):
            RateLimitConfig(backend="database")

    def test_database_events_require_url(self):
        with pytest.raises(ValueError, match="database_url required"):
            RateLimitConfig(events="database")

    def test_invalid_backend(self):
        with pytest.raises(ValueError, match="Invalid backend"):
            RateLimitConfig(backend="memcached")

    def test_invalid_events(self):
        with pytest.raises(ValueError, match="Invalid events backend"):
            RateLimitConfig(events="kafka")

    def test_callable_events_accepted(self):
        config = RateLimitConfig(events=lambda event: None)
        assert callable(config.events)

    def test_non_positive_timeout(self):
        with pytest.raises(ValueError, match="store_timeout_seconds"):
            RateLimitConfig(store_timeout_seconds=0)

    def test_negative_fail_open_remaining(self):
        with pytest.raises(ValueError, match="fail_open_remaining"):
            RateLimitConfig(fail_open_remaining=-1)

    def test_unknown_routed_class_fails_at_startup(self):
        with pytest.raises(UnknownLimitClass, match="video"):
            RateLimitConfig(route_classes={"/api/video/*": "video"})

    def test_unknown_default_class_fails_at_startup(self):
        with pytest.raises(UnknownLimitClass):
            RateLimitConfig(default_class="everything")

    def test_excluded_routes_allowed(self):
        config = RateLimitConfig(route_classes={"/health": None, "/api/ai/*": "ai"})
        assert config.route_classes["/health"] is None
