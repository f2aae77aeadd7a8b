"""
Data Providers Package

This package contains all venue data provider adapters and the
infrastructure that aggregates them: resilience, caching, merging
and quality validation.
"""
from venue_aggregator.data_providers.models import (
    Coordinates,
    OpeningPeriod,
    RawVenueRecord,
    CanonicalVenue,
    DataSourceInfo,
    VenueQuery,
    SortBy,
    AggregationMetadata,
    AggregationResult,
)
from venue_aggregator.data_providers.registry import (
    ProviderRegistry,
    ProviderConfig,
    AuthScheme,
    PROVIDER_DEFAULTS,
)
from venue_aggregator.data_providers.rate_limiter import RateLimiter, RateLimitConfig
from venue_aggregator.data_providers.health_monitor import (
    ProviderHealthMonitor,
    HealthConfig,
    CircuitState,
    ApiHealthStatus,
)
from venue_aggregator.data_providers.error_handler import (
    ErrorHandler,
    ErrorCategory,
    ErrorSeverity,
    ClassifiedError,
)
from venue_aggregator.data_providers.resilience import ResilienceLayer, RetryPolicy
from venue_aggregator.data_providers.kv_store import (
    KeyValueStore,
    InMemoryKeyValueStore,
    RedisKeyValueStore,
)
from venue_aggregator.data_providers.cache_manager import (
    CacheManager,
    CacheConfig,
    CachePriority,
)
from venue_aggregator.data_providers.data_normalizer import NormalizationEngine
from venue_aggregator.data_providers.deduplicator import VenueDeduplicator
from venue_aggregator.data_providers.quality_validator import QualityValidator, QualityReport
from venue_aggregator.data_providers.orchestrator import AggregationOrchestrator, OrchestratorConfig
from venue_aggregator.data_providers.provider_init import (
    build_aggregator,
    create_aggregator,
    shutdown_aggregator,
)

__all__ = [
    # Models
    "Coordinates",
    "OpeningPeriod",
    "RawVenueRecord",
    "CanonicalVenue",
    "DataSourceInfo",
    "VenueQuery",
    "SortBy",
    "AggregationMetadata",
    "AggregationResult",
    # Registry
    "ProviderRegistry",
    "ProviderConfig",
    "AuthScheme",
    "PROVIDER_DEFAULTS",
    # Resilience
    "RateLimiter",
    "RateLimitConfig",
    "ProviderHealthMonitor",
    "HealthConfig",
    "CircuitState",
    "ApiHealthStatus",
    "ErrorHandler",
    "ErrorCategory",
    "ErrorSeverity",
    "ClassifiedError",
    "ResilienceLayer",
    "RetryPolicy",
    # Cache
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "CacheManager",
    "CacheConfig",
    "CachePriority",
    # Merge & Quality
    "NormalizationEngine",
    "VenueDeduplicator",
    "QualityValidator",
    "QualityReport",
    # Orchestration
    "AggregationOrchestrator",
    "OrchestratorConfig",
    "build_aggregator",
    "create_aggregator",
    "shutdown_aggregator",
]
