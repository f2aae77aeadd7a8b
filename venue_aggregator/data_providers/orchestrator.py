"""
Aggregation Orchestrator

Central coordinator for venue queries.
Fans out to providers under a deadline, merges what comes back and
caches the canonical result.
"""
import asyncio
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Iterable, Optional
from loguru import logger

from venue_aggregator.data_providers.adapters.base import BaseAdapter
from venue_aggregator.data_providers.cache_manager import CacheManager, CachePriority
from venue_aggregator.data_providers.data_normalizer import NormalizationEngine
from venue_aggregator.data_providers.deduplicator import VenueDeduplicator
from venue_aggregator.data_providers.models import (
    AggregationMetadata,
    AggregationResult,
    CanonicalVenue,
    Coordinates,
    RawVenueRecord,
    SortBy,
    VenueQuery,
)
from venue_aggregator.data_providers.quality_validator import QualityValidator
from venue_aggregator.data_providers.registry import ProviderConfig, ProviderRegistry
from venue_aggregator.data_providers.resilience import ResilienceLayer


NO_PROVIDERS_REASON = "No data providers are available"
ALL_FAILED_REASON = "All data providers failed"
NO_VENUES_REASON = "No venues could be assembled from provider data"

MAX_LOCATION_LIMIT = 50


@dataclass
class OrchestratorConfig:
    """Configuration for the orchestrator."""
    enable_cache: bool = True
    query_deadline_seconds: float = 10.0
    max_sources_per_query: int = 0       # 0 = every available provider
    max_parallel_locations: int = 5
    healthy_ratio: float = 0.8           # Below this share of healthy providers, degraded


ProviderCall = Callable[[BaseAdapter], Awaitable[list[RawVenueRecord]]]


class AggregationOrchestrator:
    """
    Central orchestrator for venue data operations.

    This is the main interface for fetching venues. It coordinates:
    - Provider selection by priority and availability
    - Concurrent fan-out with a per-query deadline
    - De-duplication, merge and quality validation
    - Caching and cache invalidation

    Usage:
        orchestrator = build_aggregator(settings)
        await orchestrator.initialize()

        result = await orchestrator.search_venues(VenueQuery(term="coffee", location=coords))
        details = await orchestrator.get_venue_details(result.venues[0].id)
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        adapters: Iterable[BaseAdapter],
        cache: CacheManager,
        normalizer: NormalizationEngine,
        deduplicator: VenueDeduplicator,
        validator: QualityValidator,
        resilience: ResilienceLayer,
        config: Optional[OrchestratorConfig] = None,
    ):
        self.registry = registry
        self.adapters: dict[str, BaseAdapter] = {a.name: a for a in adapters}
        self.cache = cache
        self.normalizer = normalizer
        self.deduplicator = deduplicator
        self.validator = validator
        self.resilience = resilience
        self.config = config or OrchestratorConfig()
        self._initialized = False

    async def initialize(self) -> None:
        """Open provider sessions and load the cache index."""
        if self._initialized:
            return

        for name, adapter in self.adapters.items():
            try:
                await adapter.initialize()
            except Exception as e:
                logger.error(f"Failed to initialize provider {name}: {e}")
                await self.resilience.health.record_failure(name, str(e))

        await self.cache.load_index()
        await self.cache.warm_up()

        self._initialized = True
        logger.info(f"Aggregation orchestrator initialized with providers: {list(self.adapters)}")

    async def shutdown(self) -> None:
        """Close providers and flush the hot cache."""
        for name, adapter in self.adapters.items():
            try:
                await adapter.close()
            except Exception as e:
                logger.error(f"Error closing provider {name}: {e}")

        await self.cache.flush()
        self._initialized = False
        logger.info("Aggregation orchestrator shut down")

    # ==================== Provider Selection ====================

    def select_providers(self, query: Optional[VenueQuery] = None) -> list[BaseAdapter]:
        """Enabled, available adapters in priority order."""
        names = [c.name for c in self.registry.enabled() if c.name in self.adapters]
        if query is not None and query.providers:
            preferred = set(query.providers)
            names = [n for n in names if n in preferred]

        selected = [self.adapters[n] for n in names if self.adapters[n].is_available()]

        cap = (query.max_sources if query is not None else None) or self.config.max_sources_per_query
        if cap:
            selected = selected[:cap]
        return selected

    # ==================== Search Operations ====================

    async def search_venues(
        self,
        query: VenueQuery,
        deadline: Optional[float] = None,
    ) -> AggregationResult:
        """
        Search every selected provider and merge the results.

        Args:
            query: Search parameters
            deadline: Seconds to wait for providers; defaults to the configured deadline

        Returns:
            AggregationResult; empty_reason is set when no venue could be assembled
        """
        return await self._aggregate(
            query=query,
            cache_key=self.cache.query_key(query.fingerprint()),
            ttl=self.cache.config.normalized_ttl,
            call=lambda adapter: adapter.search(query),
            deadline=deadline,
            tags=("search",),
        )

    async def get_venues_near(
        self,
        lat: float,
        lng: float,
        radius_km: float,
        limit: int = MAX_LOCATION_LIMIT,
        deadline: Optional[float] = None,
    ) -> AggregationResult:
        """Venues around a point, nearest first."""
        radius_meters = int(round(radius_km * 1000))
        query = VenueQuery(
            location=Coordinates(lat, lng),
            radius_meters=radius_meters,
            limit=min(limit, MAX_LOCATION_LIMIT),
            sort_by=SortBy.DISTANCE,
        )
        return await self._aggregate(
            query=query,
            cache_key=self.cache.location_key(lat, lng, radius_meters, {"limit": query.limit}),
            ttl=self.cache.config.geo_query_ttl,
            call=lambda adapter: adapter.by_location(lat, lng, radius_meters),
            deadline=deadline,
            tags=("location",),
        )

    async def search_multiple_locations(
        self,
        locations: list[Coordinates],
        query: VenueQuery,
        deadline: Optional[float] = None,
    ) -> list[AggregationResult]:
        """Run the same query around several points concurrently, in input order."""
        semaphore = asyncio.Semaphore(self.config.max_parallel_locations)

        async def search_one(location: Coordinates) -> AggregationResult:
            async with semaphore:
                return await self.search_venues(replace(query, location=location), deadline)

        return list(await asyncio.gather(*(search_one(loc) for loc in locations)))

    async def get_venue_details(
        self,
        venue_id: str,
        deadline: Optional[float] = None,
    ) -> Optional[CanonicalVenue]:
        """
        Full details for a venue seen in an earlier search.

        Re-fetches every contributing provider and merges; falls back to
        the cached summary when every refetch fails.

        Returns:
            CanonicalVenue, or None when the venue is unknown
        """
        details_key = self.cache.details_key(venue_id)
        cached = await self.cache.get(details_key)
        if cached is not None:
            return CanonicalVenue.from_dict(cached)

        summary_data = await self.cache.get(self.cache.venue_key(venue_id))
        if summary_data is None:
            logger.info(f"No cached summary for venue {venue_id}")
            return None
        summary = CanonicalVenue.from_dict(summary_data)

        external_ids = {s.provider: s.external_id for s in summary.sources}
        adapters = [a for a in self.select_providers() if a.name in external_ids]

        async def fetch_details(adapter: BaseAdapter) -> list[RawVenueRecord]:
            record = await adapter.get_details(external_ids[adapter.name])
            return [record] if record is not None else []

        results, failed = await self._fan_out(adapters, fetch_details, self._deadline(deadline))
        records = [r for name in sorted(results) for r in results[name]]
        venue = self.normalizer.merge(self._enabled_records(records)) if records else None

        if venue is None:
            logger.warning(
                f"Details refetch for {venue_id} produced nothing "
                f"(failed: {sorted(failed)}), using cached summary"
            )
            return summary

        venue = replace(venue, id=summary.id)
        await self.cache.set(
            details_key,
            venue.to_dict(),
            ttl=self.cache.config.details_ttl,
            tags=(
                "details",
                "high_priority",
                f"venue:{venue.id}",
                *(f"source:{p}" for p in venue.source_names),
            ),
            priority=CachePriority.HIGH,
        )
        return venue

    # ==================== Pipeline ====================

    def _deadline(self, deadline: Optional[float]) -> float:
        return deadline if deadline is not None else self.config.query_deadline_seconds

    async def _aggregate(
        self,
        query: VenueQuery,
        cache_key: str,
        ttl: float,
        call: ProviderCall,
        deadline: Optional[float],
        tags: tuple[str, ...],
    ) -> AggregationResult:
        start = time.monotonic()

        if self.config.enable_cache:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                result = self._result_from_cache(cached)
                result.metadata.total_time_ms = round((time.monotonic() - start) * 1000, 2)
                result.metadata.cache_hit_rate = round(self.cache.hit_rate, 4)
                return result

        adapters = self.select_providers(query)
        metadata = AggregationMetadata(total_sources=len(adapters))

        if not adapters:
            logger.warning("Query skipped: no providers available")
            metadata.cache_hit_rate = round(self.cache.hit_rate, 4)
            return AggregationResult(metadata=metadata, empty_reason=NO_PROVIDERS_REASON)

        results, failed = await self._fan_out(adapters, call, self._deadline(deadline))
        metadata.successful_sources = [a.name for a in adapters if a.name in results]
        metadata.failed_sources = failed
        metadata.api_call_count = len(adapters)

        venues = self._assemble(results, metadata)
        venues = self._sort(venues, query)[:query.limit]

        empty_reason = None
        if not venues:
            empty_reason = ALL_FAILED_REASON if not results else NO_VENUES_REASON
        elif self.config.enable_cache:
            await self._cache_result(cache_key, ttl, tags, venues, metadata)

        metadata.total_time_ms = round((time.monotonic() - start) * 1000, 2)
        metadata.cache_hit_rate = round(self.cache.hit_rate, 4)

        logger.info(
            f"Aggregated {len(venues)} venues from {len(results)}/{len(adapters)} providers "
            f"in {metadata.total_time_ms:.0f}ms"
        )
        return AggregationResult(venues=venues, metadata=metadata, empty_reason=empty_reason)

    async def _fan_out(
        self,
        adapters: list[BaseAdapter],
        call: ProviderCall,
        deadline: float,
    ) -> tuple[dict[str, list[RawVenueRecord]], dict[str, str]]:
        """
        One task per provider, bounded by deadline.

        A failing task never cancels its siblings. Tasks still running at
        the deadline are cancelled and reported as failures.

        Returns:
            (records per successful provider, failure reason per failed provider)
        """
        results: dict[str, list[RawVenueRecord]] = {}
        failed: dict[str, str] = {}
        if not adapters:
            return results, failed

        tasks = {asyncio.create_task(call(adapter)): adapter.name for adapter in adapters}
        done, pending = await asyncio.wait(list(tasks), timeout=deadline)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        for task in pending:
            name = tasks[task]
            failed[name] = f"Deadline of {deadline}s exceeded"
            logger.warning(f"{name} cancelled at query deadline ({deadline}s)")
            await self.resilience.record_deadline_exceeded(name, deadline)

        for task in done:
            name = tasks[task]
            if task.cancelled():
                failed[name] = "Cancelled"
                continue
            error = task.exception()
            if error is not None:
                failed[name] = str(error)
                logger.warning(f"{name} contributed nothing: {error}")
            else:
                results[name] = task.result()

        return results, failed

    def _enabled_records(self, records: list[RawVenueRecord]) -> list[RawVenueRecord]:
        kept = [r for r in records if self.registry.is_enabled(r.source)]
        if len(kept) != len(records):
            logger.warning(f"Dropped {len(records) - len(kept)} records from providers that are not enabled")
        return kept

    def _assemble(
        self,
        results: dict[str, list[RawVenueRecord]],
        metadata: AggregationMetadata,
    ) -> list[CanonicalVenue]:
        """De-duplicate, merge and validate; validation never filters."""
        records = self._enabled_records([r for name in sorted(results) for r in results[name]])
        venues: list[CanonicalVenue] = []
        scores: list[float] = []

        for group in self.deduplicator.group(records):
            venue = self.normalizer.merge(group)
            if venue is None:
                continue
            report = self.validator.validate(venue, group)
            scores.append(report.overall_score)
            if report.is_low_quality:
                metadata.low_quality_count += 1
            metadata.quality_issues.extend(f"{venue.id}: {issue}" for issue in report.issues)
            metadata.quality_issues.extend(
                f"{venue.id}: {issue.message}"
                for issue in self.validator.validate_raw(group)
                if issue.code in ("stale", "location_conflict")
            )
            venues.append(venue)

        if scores:
            metadata.average_quality = round(sum(scores) / len(scores), 4)
        return venues

    @staticmethod
    def _sort(venues: list[CanonicalVenue], query: VenueQuery) -> list[CanonicalVenue]:
        if query.sort_by == SortBy.RATING:
            key = lambda v: (-(v.rating or 0.0), -(v.review_count or 0), v.id)
        elif query.sort_by == SortBy.REVIEWS:
            key = lambda v: (-(v.review_count or 0), v.id)
        elif query.sort_by == SortBy.PRICE:
            key = lambda v: (v.price_level or 5, v.id)
        elif query.sort_by == SortBy.DISTANCE and query.location is not None:
            key = lambda v: (query.location.distance_to(v.coordinates), v.id)
        else:
            key = lambda v: (-v.data_quality_score, -len(v.sources), v.id)
        return sorted(venues, key=key)

    # ==================== Caching ====================

    async def _cache_result(
        self,
        cache_key: str,
        ttl: float,
        tags: tuple[str, ...],
        venues: list[CanonicalVenue],
        metadata: AggregationMetadata,
    ) -> None:
        providers = sorted({p for v in venues for p in v.source_names})
        source_tags = tuple(f"source:{p}" for p in providers)

        await self.cache.set(
            cache_key,
            {
                "venues": [v.to_dict() for v in venues],
                "metadata": {
                    "total_sources": metadata.total_sources,
                    "successful_sources": metadata.successful_sources,
                    "failed_sources": metadata.failed_sources,
                    "average_quality": metadata.average_quality,
                    "low_quality_count": metadata.low_quality_count,
                    "quality_issues": metadata.quality_issues,
                },
            },
            ttl=ttl,
            tags=tags + source_tags + tuple(f"venue:{v.id}" for v in venues),
        )

        for venue in venues:
            await self.cache.set(
                self.cache.venue_key(venue.id),
                venue.to_dict(),
                ttl=self.cache.config.normalized_ttl,
                tags=(f"venue:{venue.id}", *(f"source:{p}" for p in venue.source_names)),
            )

    @staticmethod
    def _result_from_cache(data: dict) -> AggregationResult:
        stored = data.get("metadata", {})
        metadata = AggregationMetadata(
            total_sources=stored.get("total_sources", 0),
            successful_sources=list(stored.get("successful_sources", [])),
            failed_sources=dict(stored.get("failed_sources", {})),
            cached=True,
            average_quality=stored.get("average_quality", 0.0),
            low_quality_count=stored.get("low_quality_count", 0),
            quality_issues=list(stored.get("quality_issues", [])),
        )
        venues = [CanonicalVenue.from_dict(v) for v in data.get("venues", [])]
        return AggregationResult(venues=venues, metadata=metadata)

    # ==================== Configuration ====================

    async def reload_providers(self, configs: Iterable[ProviderConfig]) -> list[str]:
        """
        Swap provider configurations at runtime.

        Cached data from every changed provider is invalidated and rate
        limits are reconfigured.

        Returns:
            Names of providers whose configuration changed
        """
        changed = self.registry.reload(configs)

        for name in changed:
            await self.cache.invalidate_by_source(name)
            config = self.registry.get(name)
            adapter = self.adapters.get(name)
            if adapter is not None and config is not None:
                adapter.update_config(config)

        self.normalizer.update_priorities(self.registry.priorities())
        return changed

    # ==================== Status & Monitoring ====================

    def health(self) -> dict[str, Any]:
        """Overall verdict, per-provider health, recommendations, cache and error metrics."""
        errors = self.resilience.errors
        providers: dict[str, Any] = {}
        recommendations: list[str] = []

        for name, adapter in self.adapters.items():
            status = adapter.health_status()
            verdict = errors.get_provider_health(name, status.circuit_state)
            enabled = self.registry.is_enabled(name)
            providers[name] = {
                **status.to_dict(),
                "enabled": enabled,
                "status": verdict["status"] if enabled else "disabled",
                "errors_last_hour": verdict["errors_last_hour"],
            }
            if enabled:
                recommendations.extend(verdict["recommendations"])

        enabled_names = [n for n, p in providers.items() if p["enabled"]]
        healthy = [n for n in enabled_names if providers[n]["healthy"]]
        if not healthy:
            overall = "unhealthy"
        elif len(healthy) < self.config.healthy_ratio * len(enabled_names):
            overall = "degraded"
        else:
            overall = "healthy"

        cache_health = self.cache.get_health()
        recommendations.extend(f"cache: {issue}" for issue in cache_health["issues"])

        return {
            "overall": overall,
            "providers": providers,
            "recommendations": recommendations,
            "cache": {**cache_health, "stats": self.cache.get_stats()},
            "errors": errors.get_metrics(),
        }

    def get_healthy_providers(self) -> list[str]:
        """Get list of healthy providers."""
        return [n for n in self.resilience.health.get_healthy_providers() if self.registry.is_enabled(n)]
