"""
Provider Adapters Package

Contains adapters for all supported venue data providers.
Each adapter implements the BaseAdapter interface for consistent data access.
"""
from venue_aggregator.data_providers.adapters.base import (
    BaseAdapter,
    ProviderError,
    RateLimitError,
    AuthenticationError,
    NotFoundError,
    ServerError,
    ClientRequestError,
    ProviderConnectionError,
    ProviderTimeoutError,
    DataParseError,
    ProviderUnavailableError,
    CircuitOpenError,
)
from venue_aggregator.data_providers.adapters.yelp import (
    YelpAdapter,
    create_yelp_config,
)
from venue_aggregator.data_providers.adapters.foursquare import (
    FoursquareAdapter,
    create_foursquare_config,
)
from venue_aggregator.data_providers.adapters.city_apis import (
    CityApiAdapter,
    create_city_apis_config,
)

__all__ = [
    # Base
    "BaseAdapter",
    "ProviderError",
    "RateLimitError",
    "AuthenticationError",
    "NotFoundError",
    "ServerError",
    "ClientRequestError",
    "ProviderConnectionError",
    "ProviderTimeoutError",
    "DataParseError",
    "ProviderUnavailableError",
    "CircuitOpenError",
    # Providers
    "YelpAdapter",
    "create_yelp_config",
    "FoursquareAdapter",
    "create_foursquare_config",
    "CityApiAdapter",
    "create_city_apis_config",
]
