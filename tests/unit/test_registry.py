"""
Unit Tests - Provider Registry
Tests for provider configuration, defaults and reload.
"""
import pytest
from dataclasses import FrozenInstanceError

from venue_aggregator.config import Settings
from venue_aggregator.data_providers.registry import (
    AuthScheme,
    PROVIDER_DEFAULTS,
    ProviderConfig,
    ProviderRegistry,
    create_provider_config,
)


class TestProviderConfig:
    """Tests for ProviderConfig."""

    def test_documented_limits(self):
        """Should carry the documented per-provider limits."""
        yelp = create_provider_config("yelp", "key")
        assert (yelp.requests_per_minute, yelp.requests_per_hour, yelp.requests_per_day) == (60, 5000, 25000)
        assert yelp.timeout_seconds == 10.0

        foursquare = create_provider_config("foursquare", "key")
        assert (foursquare.requests_per_minute, foursquare.requests_per_hour) == (50, 2500)
        assert foursquare.requests_per_day == 100000

        city = create_provider_config("city_apis")
        assert (city.requests_per_minute, city.requests_per_hour, city.requests_per_day) == (150, 6000, 150000)
        assert city.timeout_seconds == 15.0

    def test_retry_defaults(self):
        """All providers retry 3 times with 2x backoff capped at 30s."""
        for name in PROVIDER_DEFAULTS:
            config = create_provider_config(name, "key")
            assert config.max_retries == 3
            assert config.backoff_multiplier == 2.0
            assert config.max_backoff_seconds == 30.0

    def test_missing_key_not_configured(self):
        """Should report a missing API key."""
        config = create_provider_config("yelp", "")
        assert not config.is_configured
        assert not config.is_active
        assert "missing API key" in config.validate()

    def test_public_provider_needs_no_key(self):
        """City open data needs no credential."""
        config = create_provider_config("city_apis")
        assert config.is_configured
        assert config.auth_headers() == {}

    def test_auth_headers(self):
        """Should send bearer or raw key per scheme."""
        assert create_provider_config("yelp", "abc").auth_headers() == {"Authorization": "Bearer abc"}
        assert create_provider_config("foursquare", "xyz").auth_headers() == {"Authorization": "xyz"}

    def test_immutable(self):
        """Config cannot be mutated after load."""
        config = create_provider_config("yelp", "abc")
        with pytest.raises(FrozenInstanceError):
            config.enabled = False

    def test_unknown_provider(self):
        """Should reject providers without defaults."""
        with pytest.raises(ValueError):
            create_provider_config("tripadvisor")

    def test_invalid_timeout(self):
        """Should flag non-positive timeouts."""
        config = ProviderConfig(name="x", base_url="https://x", api_key="k", timeout_seconds=0)
        assert "timeout must be positive" in config.validate()


class TestProviderRegistry:
    """Tests for ProviderRegistry."""

    @pytest.fixture
    def registry(self):
        return ProviderRegistry([
            create_provider_config("yelp", "y-key"),
            create_provider_config("foursquare", "f-key"),
            create_provider_config("city_apis"),
        ])

    def test_enabled_sorted_by_priority(self, registry):
        """Should list enabled providers highest priority first."""
        assert [c.name for c in registry.enabled()] == ["yelp", "foursquare", "city_apis"]

    def test_priorities(self, registry):
        assert registry.priorities() == {"yelp": 9, "foursquare": 7, "city_apis": 6}

    def test_ties_broken_by_name(self):
        """Equal priority falls back to name order."""
        registry = ProviderRegistry([
            create_provider_config("yelp", "k", priority=5),
            create_provider_config("foursquare", "k", priority=5),
        ])
        assert [c.name for c in registry.enabled()] == ["foursquare", "yelp"]

    def test_missing_key_disables_without_failing(self):
        """A missing credential disables the provider but startup succeeds."""
        registry = ProviderRegistry([
            create_provider_config("yelp", ""),
            create_provider_config("city_apis"),
        ])
        assert "yelp" in registry
        assert not registry.is_enabled("yelp")
        assert [c.name for c in registry.enabled()] == ["city_apis"]

    def test_disabled_flag(self, registry):
        """Disabled providers are excluded from priorities."""
        registry.register(create_provider_config("foursquare", "f-key", enabled=False))
        assert "foursquare" not in registry.priorities()
        assert len(registry) == 3

    def test_reload_reports_changes(self, registry):
        """Should return only providers whose config changed."""
        changed = registry.reload([
            create_provider_config("yelp", "y-key"),
            create_provider_config("foursquare", "f-key", priority=10),
        ])
        assert changed == ["city_apis", "foursquare"]
        assert registry.get("foursquare").priority == 10
        assert registry.get("city_apis") is None

    def test_reload_without_changes(self, registry):
        assert registry.reload(registry.all()) == []

    def test_with_overrides(self, registry):
        """Should copy a config with replaced fields."""
        config = registry.with_overrides("yelp", requests_per_minute=2)
        assert config.requests_per_minute == 2
        assert registry.get("yelp").requests_per_minute == 60

    def test_from_settings(self):
        """Should load credentials and enabled flags once from settings."""
        settings = Settings(
            YELP_API_KEY="abc",
            FOURSQUARE_API_KEY="",
            CITY_APIS_ENABLED=False,
        )
        registry = ProviderRegistry.from_settings(settings)
        assert registry.get("yelp").auth_scheme == AuthScheme.BEARER
        assert registry.is_enabled("yelp")
        assert not registry.is_enabled("foursquare")
        assert not registry.is_enabled("city_apis")
