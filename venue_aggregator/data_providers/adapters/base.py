"""
Base Adapter Interface

Defines the uniform contract that all venue data providers implement,
plus the provider error hierarchy shared by the resilience layer.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, TYPE_CHECKING
from urllib.parse import urlencode

import aiohttp
from loguru import logger

from venue_aggregator.data_providers.models import RawVenueRecord, VenueQuery
from venue_aggregator.data_providers.registry import ProviderConfig

if TYPE_CHECKING:
    from venue_aggregator.data_providers.cache_manager import CacheManager
    from venue_aggregator.data_providers.health_monitor import ApiHealthStatus
    from venue_aggregator.data_providers.resilience import ResilienceLayer


# ==================== Errors ====================

class ProviderError(Exception):
    """Base exception for provider errors."""
    def __init__(
        self,
        provider: str,
        message: str,
        recoverable: bool = True,
        status_code: Optional[int] = None,
    ):
        self.provider = provider
        self.message = message
        self.recoverable = recoverable
        self.status_code = status_code
        super().__init__(f"[{provider}] {message}")


class RateLimitError(ProviderError):
    """
    Rate limit exceeded.

    local=True means our own limiter rejected the call before it was sent.
    """
    def __init__(self, provider: str, retry_after: Optional[float] = None, local: bool = False):
        self.retry_after = retry_after
        self.local = local
        super().__init__(
            provider,
            f"Rate limit exceeded. Retry after: {retry_after}s",
            recoverable=True,
            status_code=None if local else 429,
        )


class AuthenticationError(ProviderError):
    """Authentication failed error."""
    def __init__(self, provider: str, message: str = "Authentication failed", status_code: int = 401):
        super().__init__(provider, message, recoverable=False, status_code=status_code)


class NotFoundError(ProviderError):
    """Requested venue does not exist at the provider."""
    def __init__(self, provider: str, resource: str):
        super().__init__(provider, f"Not found: {resource}", recoverable=False, status_code=404)


class ServerError(ProviderError):
    """Provider returned a 5xx response."""
    def __init__(self, provider: str, status_code: int, message: str = ""):
        super().__init__(provider, message or f"Server error {status_code}", recoverable=True, status_code=status_code)


class ClientRequestError(ProviderError):
    """Provider rejected the request (4xx other than auth, 404 and 429)."""
    def __init__(self, provider: str, status_code: int, message: str = ""):
        super().__init__(provider, message or f"Client error {status_code}", recoverable=False, status_code=status_code)


class ProviderConnectionError(ProviderError):
    """Network-level failure reaching the provider."""
    def __init__(self, provider: str, message: str = "Connection error"):
        super().__init__(provider, message, recoverable=True)


class ProviderTimeoutError(ProviderError):
    """Request exceeded the provider timeout."""
    def __init__(self, provider: str, timeout: Optional[float] = None):
        super().__init__(provider, f"Request timeout after {timeout}s", recoverable=True)


class DataParseError(ProviderError):
    """Response body could not be parsed."""
    def __init__(self, provider: str, message: str = "Malformed response data"):
        super().__init__(provider, message, recoverable=False)


class ProviderUnavailableError(ProviderError):
    """Provider is disabled, misconfigured or behind an open circuit."""
    def __init__(self, provider: str, reason: str):
        super().__init__(provider, f"Provider unavailable: {reason}", recoverable=False)


class CircuitOpenError(ProviderUnavailableError):
    """Circuit breaker is open for the provider."""
    def __init__(self, provider: str, next_retry_time: Optional[float] = None):
        self.next_retry_time = next_retry_time
        super().__init__(provider, "circuit open")


# ==================== Adapter ====================

class BaseAdapter(ABC):
    """
    Abstract base class for all venue data adapters.

    Each provider adapter must implement:
    - search(): Search venues matching a query
    - get_details(): Fetch one venue by provider id
    - by_location(): Venues around a point

    Availability, health and every network call are delegated to
    the shared ResilienceLayer, which owns rate-limit counters,
    health statistics and circuit-breaker state per provider.
    Successful non-empty responses are kept in the optional cache
    for raw_response_ttl seconds, tagged with the provider name.
    """

    def __init__(
        self,
        config: ProviderConfig,
        resilience: "ResilienceLayer",
        cache: Optional["CacheManager"] = None,
    ):
        self.config = config
        self._resilience = resilience
        self._cache = cache
        self._session: Optional[aiohttp.ClientSession] = None
        resilience.register_provider(config)

    @property
    def name(self) -> str:
        return self.config.name

    # ==================== Lifecycle ====================

    async def initialize(self) -> None:
        """Open the HTTP session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
            logger.info(f"{self.name} adapter initialized")

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session is not None:
            await self._session.close()
            self._session = None
            logger.info(f"{self.name} adapter closed")

    # ==================== Contract ====================

    @abstractmethod
    async def search(self, query: VenueQuery) -> list[RawVenueRecord]:
        """Search venues matching the query."""
        pass

    @abstractmethod
    async def get_details(self, external_id: str) -> Optional[RawVenueRecord]:
        """Fetch full details for one venue; None when not found."""
        pass

    @abstractmethod
    async def by_location(self, lat: float, lng: float, radius_meters: int) -> list[RawVenueRecord]:
        """Venues within radius_meters of a point."""
        pass

    def is_available(self) -> bool:
        """
        False when disabled, misconfigured, or the circuit is open and
        its retry deadline has not passed. Crossing the deadline moves
        the circuit to half-open.
        """
        if not self.config.enabled or not self.config.is_configured:
            return False
        return self._resilience.health.can_request(self.name)

    def health_status(self) -> "ApiHealthStatus":
        return self._resilience.health.get_status(self.name)

    def update_config(self, config: ProviderConfig) -> None:
        """Swap in a reloaded configuration."""
        if config.name != self.name:
            raise ValueError(f"Config for {config.name} cannot replace {self.name}")
        self.config = config
        self._resilience.register_provider(config)

    # ==================== HTTP ====================

    @staticmethod
    def build_url(base: str, path: str = "", params: Optional[dict[str, Any]] = None) -> str:
        """Join base and path and append query params, skipping None values."""
        url = base.rstrip("/")
        if path:
            url = f"{url}/{path.lstrip('/')}"
        clean = {}
        for key, value in (params or {}).items():
            if value is None:
                continue
            if isinstance(value, (list, tuple)):
                if not value:
                    continue
                value = ",".join(str(v) for v in value)
            elif isinstance(value, bool):
                value = "true" if value else "false"
            clean[key] = value
        if clean:
            url = f"{url}?{urlencode(clean)}"
        return url

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json", **self.config.auth_headers()}

    async def _get_json(self, url: str, operation: str) -> Any:
        """
        GET a JSON document through the resilience layer.

        Raises:
            ProviderUnavailableError: provider disabled, misconfigured or circuit open
            ProviderError: request failed after retries
        """
        if not self.config.enabled:
            raise ProviderUnavailableError(self.name, "disabled")
        if not self.config.is_configured:
            raise ProviderUnavailableError(self.name, ", ".join(self.config.validate()))
        cache_key = None
        if self._cache is not None:
            cache_key = self._cache.api_key(self.name, operation, {"url": url})
            cached = await self._cache.get(cache_key)
            if cached is not None:
                logger.debug(f"{self.name}: cached response for {operation}")
                return cached

        data = await self._resilience.execute(
            self.config,
            lambda: self._fetch_json(url),
            operation,
        )
        if cache_key is not None and data:
            await self._cache.set(
                cache_key,
                data,
                ttl=self._cache.config.raw_response_ttl,
                tags=("raw_response",),
                source=self.name,
            )
        return data

    async def _fetch_json(self, url: str) -> Any:
        """Single HTTP attempt with status mapping."""
        if self._session is None:
            await self.initialize()

        try:
            async with self._session.get(url, headers=self._headers()) as response:
                if response.status == 200:
                    try:
                        return await response.json(content_type=None)
                    except (ValueError, aiohttp.ContentTypeError) as e:
                        raise DataParseError(self.name, f"Invalid JSON: {e}")
                if response.status in (401, 403):
                    raise AuthenticationError(self.name, "Invalid API key", status_code=response.status)
                if response.status == 404:
                    raise NotFoundError(self.name, url)
                if response.status == 429:
                    raise RateLimitError(self.name, _parse_retry_after(response.headers.get("Retry-After")))
                text = await response.text()
                if response.status >= 500:
                    raise ServerError(self.name, response.status, f"HTTP {response.status}: {text[:200]}")
                raise ClientRequestError(self.name, response.status, f"HTTP {response.status}: {text[:200]}")
        except asyncio.TimeoutError:
            raise ProviderTimeoutError(self.name, self.config.timeout_seconds)
        except aiohttp.ClientError as e:
            raise ProviderConnectionError(self.name, f"Connection error: {e}")

    # ==================== Parsing ====================

    def _parse_items(
        self,
        items: Any,
        parser: Callable[[dict], Optional[RawVenueRecord]],
    ) -> list[RawVenueRecord]:
        """Parse provider items, dropping malformed ones without failing the batch."""
        if not isinstance(items, list):
            raise DataParseError(self.name, f"Expected a list of venues, got {type(items).__name__}")

        records = []
        for item in items:
            try:
                record = parser(item)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"{self.name}: dropping malformed record: {e}")
                continue
            if record is not None:
                records.append(record)
        return records

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name}, enabled={self.config.enabled})>"


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def format_hhmm(value: str) -> str:
    """'1730' -> '17:30'."""
    value = (value or "").zfill(4)
    return f"{value[:2]}:{value[2:]}"
