"""
Error Handler

Classifies provider failures into categories and severities,
keeps a bounded error history with rolling metrics, and raises
alerts for failures that need out-of-band attention.
"""
import asyncio
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional
from loguru import logger

from venue_aggregator.data_providers.adapters.base import (
    AuthenticationError,
    ClientRequestError,
    DataParseError,
    NotFoundError,
    ProviderConnectionError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitError,
    ServerError,
)
from venue_aggregator.data_providers.health_monitor import CircuitState


class ErrorCategory(str, Enum):
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    CLIENT = "client"
    DATA = "data"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_ORDER = {
    ErrorSeverity.LOW: 0,
    ErrorSeverity.MEDIUM: 1,
    ErrorSeverity.HIGH: 2,
    ErrorSeverity.CRITICAL: 3,
}

CATEGORY_SEVERITY = {
    ErrorCategory.AUTHENTICATION: ErrorSeverity.HIGH,
    ErrorCategory.SERVER: ErrorSeverity.HIGH,
    ErrorCategory.NETWORK: ErrorSeverity.MEDIUM,
    ErrorCategory.RATE_LIMIT: ErrorSeverity.MEDIUM,
    ErrorCategory.UNKNOWN: ErrorSeverity.MEDIUM,
    ErrorCategory.CLIENT: ErrorSeverity.LOW,
    ErrorCategory.DATA: ErrorSeverity.LOW,
}

TRANSIENT_CATEGORIES = frozenset({
    ErrorCategory.NETWORK,
    ErrorCategory.RATE_LIMIT,
    ErrorCategory.SERVER,
})

# Message keywords for exceptions that carry no type or status information
KEYWORD_RULES = [
    (ErrorCategory.RATE_LIMIT, ("429", "rate limit", "too many requests")),
    (ErrorCategory.AUTHENTICATION, ("401", "403", "unauthorized", "forbidden", "auth")),
    (ErrorCategory.NETWORK, ("network", "timeout", "timed out", "connection")),
    (ErrorCategory.DATA, ("data", "parse", "format", "json", "decode")),
]


@dataclass
class ClassifiedError:
    """One classified failure."""
    provider: str
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    operation: str = ""
    status_code: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def retryable(self) -> bool:
        return self.category in TRANSIENT_CATEGORIES

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self.message,
            "operation": self.operation,
            "status_code": self.status_code,
            "retryable": self.retryable,
            "timestamp": datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
        }


@dataclass
class ErrorAlert:
    """Alert raised for out-of-band handling."""
    provider: str
    severity: ErrorSeverity
    reason: str
    timestamp: float


AlertCallback = Callable[[ErrorAlert], Awaitable[None]]


def categorize_error(error: BaseException) -> tuple[ErrorCategory, Optional[int]]:
    """Map an exception to a category and, when known, an HTTP status."""
    status = getattr(error, "status_code", None)

    if isinstance(error, RateLimitError):
        return ErrorCategory.RATE_LIMIT, status
    if isinstance(error, AuthenticationError):
        return ErrorCategory.AUTHENTICATION, status
    if isinstance(error, (ProviderTimeoutError, ProviderConnectionError, asyncio.TimeoutError, ConnectionError)):
        return ErrorCategory.NETWORK, status
    if isinstance(error, ServerError):
        return ErrorCategory.SERVER, status
    if isinstance(error, (ClientRequestError, NotFoundError)):
        return ErrorCategory.CLIENT, status
    if isinstance(error, (DataParseError, ValueError, KeyError, TypeError)):
        return ErrorCategory.DATA, status

    if isinstance(status, int):
        if status == 429:
            return ErrorCategory.RATE_LIMIT, status
        if status in (401, 403):
            return ErrorCategory.AUTHENTICATION, status
        if status >= 500:
            return ErrorCategory.SERVER, status
        if status >= 400:
            return ErrorCategory.CLIENT, status

    text = str(error).lower()
    for category, keywords in KEYWORD_RULES:
        if any(k in text for k in keywords):
            return category, status
    return ErrorCategory.UNKNOWN, status


class ErrorHandler:
    """
    Error classification and metrics.

    Features:
    - Category/severity classification (type, status code, message)
    - Bounded history with age pruning
    - Per-provider metrics and health verdicts
    - Alerts for high severity errors and error-rate spikes
    """

    def __init__(
        self,
        max_history: int = 1000,
        retention_seconds: float = 7 * 86400,
        alert_errors_per_hour: int = 20,
        clock: Callable[[], float] = time.time,
    ):
        self._history: deque[ClassifiedError] = deque(maxlen=max_history)
        self._alerts: deque[ErrorAlert] = deque(maxlen=max_history)
        self._callbacks: list[AlertCallback] = []
        self._retention = retention_seconds
        self._alert_rate = alert_errors_per_hour
        self._clock = clock

    def register_alert_callback(self, callback: AlertCallback) -> None:
        self._callbacks.append(callback)

    def classify(self, error: BaseException, provider: str, operation: str = "") -> ClassifiedError:
        """Classify without recording."""
        category, status = categorize_error(error)
        message = error.message if isinstance(error, ProviderError) else str(error) or type(error).__name__
        return ClassifiedError(
            provider=provider,
            category=category,
            severity=CATEGORY_SEVERITY[category],
            message=message,
            operation=operation,
            status_code=status,
            timestamp=self._clock(),
        )

    async def handle(self, error: BaseException, provider: str, operation: str = "") -> ClassifiedError:
        """Classify, record and alert if needed."""
        classified = self.classify(error, provider, operation)
        await self.record(classified)
        return classified

    async def record(self, classified: ClassifiedError) -> None:
        self._history.append(classified)
        self._prune()

        if classified.severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL):
            logger.error(
                f"{classified.severity.value.upper()} {classified.category.value} error "
                f"from {classified.provider}: {classified.message}"
            )
            await self._alert(classified.provider, classified.severity, classified.message)
        else:
            logger.debug(f"{classified.category.value} error from {classified.provider}: {classified.message}")

        rate = self._errors_per_hour(classified.provider)
        if rate > self._alert_rate:
            await self._alert(
                classified.provider,
                ErrorSeverity.HIGH,
                f"High error rate: {rate:.0f} errors/hour",
            )

    async def on_circuit_transition(self, provider: str, old: CircuitState, new: CircuitState) -> None:
        """Breaker opening is a provider-wide signal, recorded as critical."""
        if new != CircuitState.OPEN:
            return
        event = ClassifiedError(
            provider=provider,
            category=ErrorCategory.UNKNOWN,
            severity=ErrorSeverity.CRITICAL,
            message=f"Circuit opened (was {old.value})",
            operation="circuit_breaker",
            timestamp=self._clock(),
        )
        self._history.append(event)
        await self._alert(provider, ErrorSeverity.CRITICAL, event.message)

    async def _alert(self, provider: str, severity: ErrorSeverity, reason: str) -> None:
        alert = ErrorAlert(provider=provider, severity=severity, reason=reason, timestamp=self._clock())
        self._alerts.append(alert)
        for callback in self._callbacks:
            try:
                await callback(alert)
            except Exception as e:
                logger.error(f"Error in alert callback: {e}")

    def _prune(self) -> None:
        cutoff = self._clock() - self._retention
        while self._history and self._history[0].timestamp < cutoff:
            self._history.popleft()

    def _errors_per_hour(self, provider: str) -> float:
        cutoff = self._clock() - 3600
        return float(sum(1 for e in self._history if e.provider == provider and e.timestamp >= cutoff))

    # ==================== Metrics ====================

    def get_errors(self, provider: Optional[str] = None, window_hours: float = 24) -> list[ClassifiedError]:
        cutoff = self._clock() - window_hours * 3600
        return [
            e for e in self._history
            if e.timestamp >= cutoff and (provider is None or e.provider == provider)
        ]

    def get_metrics(self, provider: Optional[str] = None, window_hours: float = 24) -> dict:
        """Error metrics over a rolling window."""
        errors = self.get_errors(provider, window_hours)
        timestamps = sorted(e.timestamp for e in errors)

        if len(timestamps) > 1:
            gaps = [b - a for a, b in zip(timestamps, timestamps[1:])]
            mtbe = sum(gaps) / len(gaps)
        else:
            mtbe = None

        return {
            "error_count": len(errors),
            "errors_per_hour": round(len(errors) / window_hours, 3) if window_hours else 0.0,
            "by_category": dict(Counter(e.category.value for e in errors)),
            "by_severity": dict(Counter(e.severity.value for e in errors)),
            "mean_time_between_errors_seconds": mtbe,
            "top_errors": [
                {"message": msg, "count": count}
                for msg, count in Counter(e.message for e in errors).most_common(5)
            ],
        }

    def get_provider_health(self, provider: str, circuit_state: CircuitState) -> dict:
        """Health verdict and recommendations from recent errors."""
        recent = self.get_errors(provider, window_hours=1)
        per_hour = len(recent)
        categories = Counter(e.category for e in recent)

        if circuit_state == CircuitState.OPEN or per_hour > 10:
            status = "unhealthy"
        elif per_hour > 5 or circuit_state == CircuitState.HALF_OPEN:
            status = "degraded"
        else:
            status = "healthy"

        recommendations = []
        if circuit_state == CircuitState.OPEN:
            recommendations.append(f"{provider}: circuit open, requests suspended until retry time")
        if categories[ErrorCategory.AUTHENTICATION]:
            recommendations.append(f"{provider}: check API credentials")
        if categories[ErrorCategory.RATE_LIMIT]:
            recommendations.append(f"{provider}: reduce request rate or raise quota")
        if categories[ErrorCategory.SERVER]:
            recommendations.append(f"{provider}: provider reporting server errors")
        if categories[ErrorCategory.NETWORK]:
            recommendations.append(f"{provider}: check network connectivity and timeouts")

        return {
            "status": status,
            "errors_last_hour": per_hour,
            "circuit_state": circuit_state.value,
            "recommendations": recommendations,
        }

    def get_alerts(self, min_severity: ErrorSeverity = ErrorSeverity.HIGH) -> list[ErrorAlert]:
        threshold = SEVERITY_ORDER[min_severity]
        return [a for a in self._alerts if SEVERITY_ORDER[a.severity] >= threshold]

    def clear(self) -> None:
        self._history.clear()
        self._alerts.clear()
