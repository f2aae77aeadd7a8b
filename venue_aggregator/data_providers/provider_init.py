"""
Provider Initialization Module

Builds every pipeline component from settings and wires them into an
AggregationOrchestrator. Nothing here is a global; callers own the
returned orchestrator and its lifecycle.
"""
from typing import Optional
from loguru import logger

from venue_aggregator.config import Settings
from venue_aggregator.data_providers.adapters.base import BaseAdapter
from venue_aggregator.data_providers.adapters.city_apis import CityApiAdapter
from venue_aggregator.data_providers.adapters.foursquare import FoursquareAdapter
from venue_aggregator.data_providers.adapters.yelp import YelpAdapter
from venue_aggregator.data_providers.cache_manager import CacheConfig, CacheManager
from venue_aggregator.data_providers.data_normalizer import NormalizationEngine
from venue_aggregator.data_providers.deduplicator import VenueDeduplicator
from venue_aggregator.data_providers.error_handler import ErrorHandler
from venue_aggregator.data_providers.health_monitor import ProviderHealthMonitor
from venue_aggregator.data_providers.kv_store import (
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
)
from venue_aggregator.data_providers.orchestrator import AggregationOrchestrator, OrchestratorConfig
from venue_aggregator.data_providers.quality_validator import QualityValidator
from venue_aggregator.data_providers.rate_limiter import RateLimiter
from venue_aggregator.data_providers.registry import ProviderRegistry
from venue_aggregator.data_providers.resilience import ResilienceLayer
from venue_aggregator.utils.logger import configure_logging


def create_store(settings: Settings) -> KeyValueStore:
    """Redis when REDIS_URL is set, otherwise an in-process dict."""
    if settings.REDIS_URL:
        logger.info("Using Redis cache store")
        return RedisKeyValueStore.from_url(settings.REDIS_URL)
    logger.info("REDIS_URL not set, using in-memory cache store")
    return InMemoryKeyValueStore()


def create_cache_config(settings: Settings) -> CacheConfig:
    return CacheConfig(
        memory_budget_bytes=settings.CACHE_MEMORY_BUDGET_MB * 1024 * 1024,
        raw_response_ttl=settings.CACHE_RAW_TTL_SECONDS,
        normalized_ttl=settings.CACHE_NORMALIZED_TTL_SECONDS,
        geo_query_ttl=settings.CACHE_GEO_TTL_SECONDS,
        details_ttl=settings.CACHE_DETAILS_TTL_SECONDS,
    )


def create_adapters(
    registry: ProviderRegistry,
    resilience: ResilienceLayer,
    settings: Settings,
    cache: Optional[CacheManager] = None,
) -> list[BaseAdapter]:
    """One adapter per registered provider; disabled ones stay unavailable."""
    adapters: list[BaseAdapter] = []
    for config in registry.all():
        if config.name == "yelp":
            adapters.append(YelpAdapter(config, resilience, cache))
        elif config.name == "foursquare":
            adapters.append(FoursquareAdapter(config, resilience, cache))
        elif config.name == "city_apis":
            adapters.append(CityApiAdapter(config, resilience, cities=settings.CITY_APIS_CITIES, cache=cache))
        else:
            logger.warning(f"No adapter for provider {config.name}")
    return adapters


def build_aggregator(
    settings: Settings,
    store: Optional[KeyValueStore] = None,
    resilience: Optional[ResilienceLayer] = None,
) -> AggregationOrchestrator:
    """
    Construct the whole pipeline from settings.

    Args:
        settings: Loaded application settings
        store: Persistent store override, defaults to create_store(settings)
        resilience: Resilience layer override (tests inject clocks and sleep)

    Returns:
        Orchestrator ready for initialize()
    """
    registry = ProviderRegistry.from_settings(settings)
    resilience = resilience or ResilienceLayer(
        rate_limiter=RateLimiter(),
        health=ProviderHealthMonitor(),
        errors=ErrorHandler(),
    )
    cache = CacheManager(store or create_store(settings), create_cache_config(settings))
    adapters = create_adapters(registry, resilience, settings, cache)
    normalizer = NormalizationEngine(
        registry.priorities(),
        field_priorities=settings.FIELD_PRIORITY_OVERRIDES,
    )

    active = [c.name for c in registry.enabled()]
    if not active:
        logger.warning("No venue providers are enabled; searches will return empty results")
    logger.info(f"Built aggregator with providers {active}")

    return AggregationOrchestrator(
        registry=registry,
        adapters=adapters,
        cache=cache,
        normalizer=normalizer,
        deduplicator=VenueDeduplicator(),
        validator=QualityValidator(),
        resilience=resilience,
        config=OrchestratorConfig(
            query_deadline_seconds=settings.QUERY_DEADLINE_SECONDS,
            max_sources_per_query=settings.MAX_SOURCES_PER_QUERY,
        ),
    )


async def create_aggregator(settings: Settings) -> AggregationOrchestrator:
    """Configure logging, then build and initialize an orchestrator."""
    configure_logging(settings)
    orchestrator = build_aggregator(settings)
    await orchestrator.initialize()
    return orchestrator


async def shutdown_aggregator(orchestrator: AggregationOrchestrator) -> None:
    """Shutdown providers and flush the cache gracefully."""
    try:
        await orchestrator.shutdown()
        await orchestrator.cache.close()
        logger.info("All providers shut down")
    except Exception as e:
        logger.error(f"Error shutting down aggregator: {e}")


def get_provider_status(orchestrator: AggregationOrchestrator) -> dict:
    """Get status of all registered providers."""
    status = {}
    limiter = orchestrator.resilience.rate_limiter
    for config in orchestrator.registry.all():
        status[config.name] = {
            "enabled": config.enabled,
            "configured": config.is_configured,
            "priority": config.priority,
            "rate_limit": limiter.get_stats(config.name),
        }
    return status
