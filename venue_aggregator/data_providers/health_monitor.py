"""
Provider Health Monitor

Tracks rolling health of every venue provider and owns the
circuit-breaker table. Breaker transitions are the only way a
provider's availability changes.
"""
import asyncio
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional
from loguru import logger


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Normal operation, requests allowed
    OPEN = "open"            # Failures exceeded threshold, requests blocked
    HALF_OPEN = "half_open"  # Trial request allowed after the retry deadline


@dataclass
class HealthConfig:
    """Health monitoring configuration for a provider."""
    failure_threshold: int = 5          # Consecutive failures before opening
    retry_timeout_seconds: float = 60.0  # Open -> half-open delay
    window_size: int = 100              # Calls kept for rolling stats
    unhealthy_consecutive_failures: int = 3
    unhealthy_error_rate: float = 0.5
    warning_latency_ms: float = 2000.0


@dataclass
class CircuitBreakerState:
    """Per-provider breaker state."""
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    last_failure_time: Optional[float] = None
    next_retry_time: Optional[float] = None
    opened_count: int = 0


@dataclass
class ApiHealthStatus:
    """Rolling health snapshot read by the orchestrator."""
    provider: str
    healthy: bool
    error_rate: float
    avg_response_time_ms: float
    consecutive_failures: int
    last_success: Optional[datetime]
    last_failure: Optional[datetime]
    total_requests: int
    failed_requests: int
    circuit_state: CircuitState
    next_retry_time: Optional[datetime] = None
    credentials_valid: bool = True

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "healthy": self.healthy,
            "error_rate": round(self.error_rate, 4),
            "avg_response_time_ms": round(self.avg_response_time_ms, 2),
            "consecutive_failures": self.consecutive_failures,
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_failure": self.last_failure.isoformat() if self.last_failure else None,
            "total_requests": self.total_requests,
            "failed_requests": self.failed_requests,
            "circuit_state": self.circuit_state.value,
            "next_retry_time": self.next_retry_time.isoformat() if self.next_retry_time else None,
            "credentials_valid": self.credentials_valid,
        }


@dataclass
class HealthMetrics:
    """Mutable counters behind ApiHealthStatus."""
    provider: str
    latencies: deque = field(default_factory=lambda: deque(maxlen=100))
    outcomes: deque = field(default_factory=lambda: deque(maxlen=100))  # True = success
    total_requests: int = 0
    failed_requests: int = 0
    last_success: Optional[float] = None
    last_failure: Optional[float] = None
    breaker: CircuitBreakerState = field(default_factory=CircuitBreakerState)

    @property
    def avg_latency_ms(self) -> float:
        if not self.latencies:
            return 0.0
        return sum(self.latencies) / len(self.latencies)

    @property
    def error_rate(self) -> float:
        if not self.outcomes:
            return 0.0
        return sum(1 for ok in self.outcomes if not ok) / len(self.outcomes)


TransitionCallback = Callable[[str, CircuitState, CircuitState], Awaitable[None]]


class ProviderHealthMonitor:
    """
    Monitors health status of venue providers.

    Features:
    - Rolling error rate and latency over the last N calls
    - Circuit breaker: opens after consecutive failures, half-open
      after the retry deadline, closed on the first half-open success
    - Async callbacks on breaker transitions
    - Providers whose credentials were rejected stay blocked until
      their configuration is registered again
    """

    def __init__(self, config: Optional[HealthConfig] = None, clock: Callable[[], float] = time.time):
        self.config = config or HealthConfig()
        self._clock = clock
        self._metrics: dict[str, HealthMetrics] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._callbacks: list[TransitionCallback] = []
        self._invalid_credentials: set[str] = set()
        self._pending: set[asyncio.Task] = set()

    def configure(self, provider: str) -> None:
        """Start tracking a provider."""
        if provider not in self._metrics:
            self._metrics[provider] = self._new_metrics(provider)
            logger.info(f"Health monitor configured for {provider}")

    def register_transition_callback(self, callback: TransitionCallback) -> None:
        """Callback receives provider name, old state, new state."""
        self._callbacks.append(callback)

    # ==================== Recording ====================

    async def record_success(self, provider: str, latency_ms: float) -> None:
        """Record a successful request."""
        async with self._locks[provider]:
            metrics = self._get_or_create_metrics(provider)
            breaker = metrics.breaker

            metrics.total_requests += 1
            metrics.outcomes.append(True)
            metrics.latencies.append(latency_ms)
            metrics.last_success = self._clock()
            breaker.consecutive_failures = 0

            if latency_ms > self.config.warning_latency_ms:
                logger.warning(f"High latency for {provider}: {latency_ms:.0f}ms")

            if breaker.state == CircuitState.HALF_OPEN:
                await self._transition(provider, breaker, CircuitState.CLOSED)

    async def record_failure(
        self,
        provider: str,
        error: Optional[str] = None,
        counts_toward_circuit: bool = True,
    ) -> None:
        """
        Record a failed request.

        counts_toward_circuit=False keeps the failure in statistics only
        (used for provider-side rate limiting).
        """
        async with self._locks[provider]:
            metrics = self._get_or_create_metrics(provider)
            breaker = metrics.breaker
            now = self._clock()

            metrics.total_requests += 1
            metrics.failed_requests += 1
            metrics.outcomes.append(False)
            metrics.last_failure = now

            logger.warning(f"Request failed for {provider}: {error}")

            if not counts_toward_circuit:
                return

            breaker.consecutive_failures += 1
            breaker.last_failure_time = now

            if breaker.state == CircuitState.HALF_OPEN:
                # Trial request failed, back to open
                await self._transition(provider, breaker, CircuitState.OPEN)
            elif (
                breaker.state == CircuitState.CLOSED
                and breaker.consecutive_failures >= self.config.failure_threshold
            ):
                await self._transition(provider, breaker, CircuitState.OPEN)

    # ==================== Credentials ====================

    def mark_credentials_invalid(self, provider: str, reason: Optional[str] = None) -> None:
        if provider not in self._invalid_credentials:
            self._invalid_credentials.add(provider)
            logger.error(f"Credentials rejected for {provider}, disabled until reconfigured: {reason}")

    def credentials_valid(self, provider: str) -> bool:
        return provider not in self._invalid_credentials

    def clear_credentials(self, provider: str) -> None:
        if provider in self._invalid_credentials:
            self._invalid_credentials.discard(provider)
            logger.info(f"Credentials for {provider} replaced, provider re-enabled")

    # ==================== Circuit ====================

    def can_request(self, provider: str) -> bool:
        """
        Check if a request can be made to the provider.

        Moves OPEN to HALF_OPEN once next_retry_time has passed. False
        while the provider's credentials are marked invalid.
        """
        if provider in self._invalid_credentials:
            return False

        metrics = self._metrics.get(provider)
        if not metrics:
            return True

        breaker = metrics.breaker
        if breaker.state != CircuitState.OPEN:
            return True

        if breaker.next_retry_time is not None and self._clock() >= breaker.next_retry_time:
            old_state = self._apply(provider, breaker, CircuitState.HALF_OPEN)
            self._schedule_notify(provider, old_state, CircuitState.HALF_OPEN)
            return True
        return False

    def get_circuit(self, provider: str) -> CircuitBreakerState:
        return self._get_or_create_metrics(provider).breaker

    async def _transition(self, provider: str, breaker: CircuitBreakerState, new_state: CircuitState) -> None:
        old_state = self._apply(provider, breaker, new_state)
        await self._notify(provider, old_state, new_state)

    def _apply(self, provider: str, breaker: CircuitBreakerState, new_state: CircuitState) -> CircuitState:
        """Set the new state and its bookkeeping; returns the previous state."""
        old_state = breaker.state
        breaker.state = new_state

        if new_state == CircuitState.OPEN:
            breaker.next_retry_time = self._clock() + self.config.retry_timeout_seconds
            breaker.opened_count += 1
            logger.error(
                f"Circuit breaker OPENED for {provider} after "
                f"{breaker.consecutive_failures} consecutive failures"
            )
        elif new_state == CircuitState.CLOSED:
            breaker.next_retry_time = None
            breaker.consecutive_failures = 0
            logger.info(f"Circuit breaker CLOSED for {provider} - recovered")
        elif new_state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit for {provider} transitioning to half-open")
        return old_state

    def _schedule_notify(self, provider: str, old_state: CircuitState, new_state: CircuitState) -> None:
        """Run callbacks from sync code; skipped when no event loop is running."""
        if not self._callbacks:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop, {provider} transition callbacks skipped")
            return
        task = loop.create_task(self._notify(provider, old_state, new_state))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _notify(self, provider: str, old_state: CircuitState, new_state: CircuitState) -> None:
        for callback in self._callbacks:
            try:
                await callback(provider, old_state, new_state)
            except Exception as e:
                logger.error(f"Error in circuit transition callback: {e}")

    # ==================== Status ====================

    def get_status(self, provider: str) -> ApiHealthStatus:
        """Build the rolling health snapshot for a provider."""
        metrics = self._get_or_create_metrics(provider)
        breaker = metrics.breaker

        credentials_valid = self.credentials_valid(provider)
        healthy = (
            credentials_valid
            and breaker.state != CircuitState.OPEN
            and breaker.consecutive_failures < self.config.unhealthy_consecutive_failures
            and metrics.error_rate < self.config.unhealthy_error_rate
        )
        return ApiHealthStatus(
            provider=provider,
            healthy=healthy,
            error_rate=metrics.error_rate,
            avg_response_time_ms=metrics.avg_latency_ms,
            consecutive_failures=breaker.consecutive_failures,
            last_success=_to_datetime(metrics.last_success),
            last_failure=_to_datetime(metrics.last_failure),
            total_requests=metrics.total_requests,
            failed_requests=metrics.failed_requests,
            circuit_state=breaker.state,
            next_retry_time=_to_datetime(breaker.next_retry_time),
            credentials_valid=credentials_valid,
        )

    def get_all_status(self) -> dict[str, ApiHealthStatus]:
        return {name: self.get_status(name) for name in self._metrics}

    def get_healthy_providers(self) -> list[str]:
        return [name for name, status in self.get_all_status().items() if status.healthy]

    def reset(self, provider: str) -> None:
        """Forget all metrics and breaker state for a provider."""
        self._metrics[provider] = self._new_metrics(provider)
        logger.info(f"Health metrics reset for {provider}")

    def _new_metrics(self, provider: str) -> HealthMetrics:
        size = self.config.window_size
        return HealthMetrics(
            provider=provider,
            latencies=deque(maxlen=size),
            outcomes=deque(maxlen=size),
        )

    def _get_or_create_metrics(self, provider: str) -> HealthMetrics:
        if provider not in self._metrics:
            self._metrics[provider] = self._new_metrics(provider)
        return self._metrics[provider]


def _to_datetime(timestamp: Optional[float]) -> Optional[datetime]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)
