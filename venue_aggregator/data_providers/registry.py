"""
Provider Registry

Holds one immutable configuration per venue data source and
answers which providers are enabled, configured and in what priority.
"""
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Iterable
from loguru import logger

from venue_aggregator.config import Settings


class AuthScheme(str, Enum):
    """How the credential is sent to the provider."""
    BEARER = "bearer"      # Authorization: Bearer <key>
    RAW_KEY = "raw_key"    # Authorization: <key>
    NONE = "none"          # Public open-data endpoints


@dataclass(frozen=True)
class ProviderConfig:
    """Configuration for one data source. Immutable after load."""
    name: str
    base_url: str
    api_key: str = ""

    # Rate limits (0 = unlimited)
    requests_per_minute: int = 60
    requests_per_hour: int = 0
    requests_per_day: int = 0

    # Request settings
    timeout_seconds: float = 10.0

    # Retry policy
    max_retries: int = 3
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 30.0

    # Selection
    enabled: bool = True
    priority: int = 5  # Higher wins

    auth_scheme: AuthScheme = AuthScheme.BEARER
    requires_api_key: bool = True

    @property
    def is_configured(self) -> bool:
        """Base URL present and credential present when one is required."""
        return not self.validate()

    @property
    def is_active(self) -> bool:
        return self.enabled and self.is_configured

    def validate(self) -> list[str]:
        """Return configuration problems; empty when usable."""
        problems = []
        if not self.base_url:
            problems.append("missing base URL")
        if self.requires_api_key and not self.api_key:
            problems.append("missing API key")
        if self.timeout_seconds <= 0:
            problems.append("timeout must be positive")
        if self.max_retries < 0:
            problems.append("max_retries must not be negative")
        return problems

    def auth_headers(self) -> dict[str, str]:
        if self.auth_scheme == AuthScheme.NONE or not self.api_key:
            return {}
        if self.auth_scheme == AuthScheme.BEARER:
            return {"Authorization": f"Bearer {self.api_key}"}
        return {"Authorization": self.api_key}


# Documented free-tier limits per provider
PROVIDER_DEFAULTS = {
    "yelp": {
        "base_url": "https://api.yelp.com/v3",
        "requests_per_minute": 60,
        "requests_per_hour": 5000,
        "requests_per_day": 25000,
        "timeout_seconds": 10.0,
        "priority": 9,
        "auth_scheme": AuthScheme.BEARER,
        "requires_api_key": True,
    },
    "foursquare": {
        "base_url": "https://api.foursquare.com/v3",
        "requests_per_minute": 50,
        "requests_per_hour": 2500,
        "requests_per_day": 100000,
        "timeout_seconds": 8.0,
        "priority": 7,
        "auth_scheme": AuthScheme.RAW_KEY,
        "requires_api_key": True,
    },
    "city_apis": {
        # Endpoints live in the adapter, one per city portal
        "base_url": "https://data.cityofnewyork.us",
        "requests_per_minute": 150,
        "requests_per_hour": 6000,
        "requests_per_day": 150000,
        "timeout_seconds": 15.0,
        "priority": 6,
        "auth_scheme": AuthScheme.NONE,
        "requires_api_key": False,
    },
}


def create_provider_config(name: str, api_key: str = "", enabled: bool = True, **overrides) -> ProviderConfig:
    """Build a config from PROVIDER_DEFAULTS with optional overrides."""
    if name not in PROVIDER_DEFAULTS:
        raise ValueError(f"Unknown provider: {name}")
    params = {**PROVIDER_DEFAULTS[name], **overrides}
    return ProviderConfig(name=name, api_key=api_key, enabled=enabled, **params)


class ProviderRegistry:
    """
    Registry of provider configurations keyed by source name.

    Features:
    - Priority ordering of enabled providers
    - Disables misconfigured providers instead of failing
    - Config reload reporting which providers changed
    """

    def __init__(self, configs: Optional[Iterable[ProviderConfig]] = None):
        self._configs: dict[str, ProviderConfig] = {}
        for config in configs or ():
            self.register(config)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderRegistry":
        """Load provider configs once from environment settings."""
        return cls([
            create_provider_config("yelp", settings.YELP_API_KEY, settings.YELP_ENABLED),
            create_provider_config("foursquare", settings.FOURSQUARE_API_KEY, settings.FOURSQUARE_ENABLED),
            create_provider_config("city_apis", enabled=settings.CITY_APIS_ENABLED),
        ])

    def register(self, config: ProviderConfig) -> None:
        """Register or replace a provider configuration."""
        problems = config.validate()
        if config.enabled and problems:
            logger.warning(f"Provider {config.name} disabled: {', '.join(problems)}")
        self._configs[config.name] = config
        logger.info(
            f"Registered provider {config.name} "
            f"(priority={config.priority}, active={config.is_active})"
        )

    def get(self, name: str) -> Optional[ProviderConfig]:
        return self._configs.get(name)

    def all(self) -> list[ProviderConfig]:
        return list(self._configs.values())

    def enabled(self) -> list[ProviderConfig]:
        """Enabled and configured providers, highest priority first."""
        active = [c for c in self._configs.values() if c.is_active]
        return sorted(active, key=lambda c: (-c.priority, c.name))

    def is_enabled(self, name: str) -> bool:
        config = self._configs.get(name)
        return config is not None and config.is_active

    def priorities(self) -> dict[str, int]:
        """Priority per enabled provider, used for merge ordering."""
        return {c.name: c.priority for c in self.enabled()}

    def reload(self, configs: Iterable[ProviderConfig]) -> list[str]:
        """
        Replace configurations.

        Returns:
            Names of providers whose configuration changed, was added or was removed
        """
        new_configs = {c.name: c for c in configs}
        changed = sorted(
            name for name in set(self._configs) | set(new_configs)
            if self._configs.get(name) != new_configs.get(name)
        )
        self._configs = {}
        for config in new_configs.values():
            self.register(config)
        if changed:
            logger.info(f"Provider configuration reloaded, changed: {changed}")
        return changed

    def with_overrides(self, name: str, **changes) -> ProviderConfig:
        """Copy of a registered config with fields replaced."""
        config = self._configs.get(name)
        if config is None:
            raise KeyError(name)
        return replace(config, **changes)

    def __contains__(self, name: str) -> bool:
        return name in self._configs

    def __len__(self) -> int:
        return len(self._configs)
