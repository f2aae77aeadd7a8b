"""
Resilience Layer

Wraps every adapter network call with the rate limiter, circuit
breaker, error classification and retry with exponential backoff.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar
from loguru import logger

from venue_aggregator.data_providers.adapters.base import (
    AuthenticationError,
    CircuitOpenError,
    ProviderUnavailableError,
    ProviderTimeoutError,
    RateLimitError,
)
from venue_aggregator.data_providers.error_handler import ErrorCategory, ErrorHandler
from venue_aggregator.data_providers.health_monitor import ProviderHealthMonitor
from venue_aggregator.data_providers.rate_limiter import RateLimitConfig, RateLimiter
from venue_aggregator.data_providers.registry import ProviderConfig


T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff policy for transient errors."""
    max_retries: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    @classmethod
    def from_config(cls, config: ProviderConfig) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            multiplier=config.backoff_multiplier,
            max_delay=config.max_backoff_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number attempt + 1 (attempt starts at 0)."""
        return min(self.initial_delay * (self.multiplier ** attempt), self.max_delay)


class ResilienceLayer:
    """
    Executes provider operations under rate limiting, circuit breaking
    and retry-with-backoff.

    Features:
    - Local rate-limit rejections never reach the network and are not retried
    - Only transient errors (network, rate limit, 5xx) are retried
    - Provider 429s are retried but do not trip the breaker
    - Rejected credentials block the provider until it is re-registered
    - Every attempt feeds health metrics and error metrics
    """

    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        health: Optional[ProviderHealthMonitor] = None,
        errors: Optional[ErrorHandler] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.rate_limiter = rate_limiter or RateLimiter()
        self.health = health or ProviderHealthMonitor()
        self.errors = errors or ErrorHandler()
        self._sleep = sleep
        self.health.register_transition_callback(self.errors.on_circuit_transition)

    def register_provider(self, config: ProviderConfig) -> None:
        """Configure limiter windows and health tracking; clears any credential lockout."""
        self.rate_limiter.configure(
            config.name,
            RateLimitConfig(
                requests_per_minute=config.requests_per_minute,
                requests_per_hour=config.requests_per_hour,
                requests_per_day=config.requests_per_day,
            ),
        )
        self.health.configure(config.name)
        self.health.clear_credentials(config.name)

    async def execute(
        self,
        config: ProviderConfig,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "request",
    ) -> T:
        """
        Run operation with retries.

        Raises:
            ProviderUnavailableError: provider credentials were rejected earlier
            CircuitOpenError: breaker is open for the provider
            RateLimitError: local limiter rejected the call
            ProviderError: last error once retries are exhausted or the error is not transient
        """
        provider = config.name
        policy = RetryPolicy.from_config(config)
        attempt = 0

        while True:
            if not self.health.credentials_valid(provider):
                raise ProviderUnavailableError(provider, "credentials rejected")
            if not self.health.can_request(provider):
                breaker = self.health.get_circuit(provider)
                raise CircuitOpenError(provider, breaker.next_retry_time)

            try:
                await self.rate_limiter.try_acquire(provider)
            except RateLimitError as e:
                await self.errors.handle(e, provider, operation_name)
                raise

            start = time.monotonic()
            try:
                result = await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                classified = await self.errors.handle(e, provider, operation_name)
                await self.health.record_failure(
                    provider,
                    error=classified.message,
                    counts_toward_circuit=classified.category != ErrorCategory.RATE_LIMIT,
                )
                if isinstance(e, AuthenticationError):
                    self.health.mark_credentials_invalid(provider, classified.message)

                if not classified.retryable or attempt >= policy.max_retries:
                    if classified.retryable:
                        logger.warning(
                            f"{provider} {operation_name} failed after {attempt + 1} attempts: {classified.message}"
                        )
                    raise

                delay = policy.delay_for(attempt)
                retry_after = getattr(e, "retry_after", None)
                if retry_after:
                    delay = min(max(delay, retry_after), policy.max_delay)

                logger.info(
                    f"Retrying {provider} {operation_name} in {delay:.1f}s "
                    f"(attempt {attempt + 1}/{policy.max_retries}): {classified.message}"
                )
                await self._sleep(delay)
                attempt += 1
                continue

            latency_ms = (time.monotonic() - start) * 1000
            await self.health.record_success(provider, latency_ms)
            return result

    async def record_deadline_exceeded(self, provider: str, deadline: Optional[float] = None) -> None:
        """Query deadline cancelled an in-flight call; kept in error metrics only."""
        await self.errors.handle(ProviderTimeoutError(provider, deadline), provider, "query_deadline")
