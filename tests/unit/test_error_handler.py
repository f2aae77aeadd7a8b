"""
Unit Tests - Error Handler
Tests for error classification, metrics and alerting.
"""
import asyncio
import pytest
from unittest.mock import AsyncMock

from venue_aggregator.data_providers.adapters.base import (
    AuthenticationError,
    ClientRequestError,
    DataParseError,
    NotFoundError,
    ProviderConnectionError,
    ProviderTimeoutError,
    RateLimitError,
    ServerError,
)
from venue_aggregator.data_providers.error_handler import (
    ErrorCategory,
    ErrorHandler,
    ErrorSeverity,
    categorize_error,
)
from venue_aggregator.data_providers.health_monitor import CircuitState


class StatusError(Exception):
    """Third-party style exception that only carries a status code."""
    def __init__(self, status_code):
        self.status_code = status_code
        super().__init__("request failed")


class TestCategorizeError:
    """Tests for categorize_error."""

    @pytest.mark.parametrize("error,expected", [
        (RateLimitError("yelp", 10), ErrorCategory.RATE_LIMIT),
        (AuthenticationError("yelp"), ErrorCategory.AUTHENTICATION),
        (ProviderTimeoutError("yelp", 10), ErrorCategory.NETWORK),
        (ProviderConnectionError("yelp"), ErrorCategory.NETWORK),
        (asyncio.TimeoutError(), ErrorCategory.NETWORK),
        (ServerError("yelp", 503), ErrorCategory.SERVER),
        (ClientRequestError("yelp", 400), ErrorCategory.CLIENT),
        (NotFoundError("yelp", "venue"), ErrorCategory.CLIENT),
        (DataParseError("yelp"), ErrorCategory.DATA),
        (KeyError("name"), ErrorCategory.DATA),
    ])
    def test_by_type(self, error, expected):
        """Should classify provider errors by type."""
        assert categorize_error(error)[0] == expected

    @pytest.mark.parametrize("status,expected", [
        (429, ErrorCategory.RATE_LIMIT),
        (401, ErrorCategory.AUTHENTICATION),
        (403, ErrorCategory.AUTHENTICATION),
        (502, ErrorCategory.SERVER),
        (422, ErrorCategory.CLIENT),
    ])
    def test_by_status(self, status, expected):
        """Should fall back to status_code when the type is unknown."""
        category, code = categorize_error(StatusError(status))
        assert category == expected
        assert code == status

    @pytest.mark.parametrize("message,expected", [
        ("Too Many Requests", ErrorCategory.RATE_LIMIT),
        ("Unauthorized access", ErrorCategory.AUTHENTICATION),
        ("connection reset by peer", ErrorCategory.NETWORK),
        ("could not decode body", ErrorCategory.DATA),
        ("something odd", ErrorCategory.UNKNOWN),
    ])
    def test_by_keyword(self, message, expected):
        """Should fall back to message keywords last."""
        assert categorize_error(RuntimeError(message))[0] == expected


class TestErrorHandler:
    """Tests for ErrorHandler."""

    @pytest.fixture
    def handler(self, clock):
        return ErrorHandler(clock=clock)

    def test_severity_and_retryable(self, handler):
        """Transient categories are retryable; auth is high severity and is not."""
        server = handler.classify(ServerError("yelp", 500), "yelp")
        assert server.severity == ErrorSeverity.HIGH
        assert server.retryable

        auth = handler.classify(AuthenticationError("yelp"), "yelp")
        assert auth.severity == ErrorSeverity.HIGH
        assert not auth.retryable

        parse = handler.classify(DataParseError("yelp"), "yelp")
        assert parse.severity == ErrorSeverity.LOW
        assert not parse.retryable

        limited = handler.classify(RateLimitError("yelp", 5), "yelp")
        assert limited.severity == ErrorSeverity.MEDIUM
        assert limited.retryable

    def test_classified_message_strips_provider_prefix(self, handler):
        classified = handler.classify(ServerError("yelp", 500, "HTTP 500: oops"), "yelp", "search")
        assert classified.message == "HTTP 500: oops"
        assert classified.to_dict()["operation"] == "search"

    @pytest.mark.asyncio
    async def test_high_severity_alerts(self, handler):
        """High severity errors raise an alert and notify callbacks."""
        callback = AsyncMock()
        handler.register_alert_callback(callback)

        await handler.handle(AuthenticationError("yelp"), "yelp", "search")
        await handler.handle(DataParseError("yelp"), "yelp", "search")

        alerts = handler.get_alerts()
        assert len(alerts) == 1
        assert alerts[0].provider == "yelp"
        callback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_error_rate_alert(self, handler):
        """More than 20 errors in an hour raises a high severity alert."""
        for _ in range(21):
            await handler.handle(DataParseError("foursquare"), "foursquare")

        alerts = handler.get_alerts()
        assert len(alerts) == 1
        assert "High error rate" in alerts[0].reason

    @pytest.mark.asyncio
    async def test_circuit_open_is_critical(self, handler):
        """Opening a breaker records a critical event; other transitions do not."""
        await handler.on_circuit_transition("yelp", CircuitState.CLOSED, CircuitState.OPEN)
        await handler.on_circuit_transition("yelp", CircuitState.HALF_OPEN, CircuitState.CLOSED)

        assert handler.get_metrics("yelp")["by_severity"] == {"critical": 1}
        assert handler.get_alerts(ErrorSeverity.CRITICAL)[0].severity == ErrorSeverity.CRITICAL

    @pytest.mark.asyncio
    async def test_metrics(self, handler, clock):
        """Should report counts, categories and mean time between errors."""
        await handler.handle(ServerError("yelp", 500), "yelp")
        clock.advance(60)
        await handler.handle(ServerError("yelp", 500), "yelp")
        clock.advance(120)
        await handler.handle(ProviderTimeoutError("yelp", 10), "yelp")
        await handler.handle(ServerError("foursquare", 500), "foursquare")

        metrics = handler.get_metrics("yelp")
        assert metrics["error_count"] == 3
        assert metrics["by_category"] == {"server": 2, "network": 1}
        assert metrics["mean_time_between_errors_seconds"] == pytest.approx(90.0)
        assert metrics["top_errors"][0]["count"] == 2
        assert handler.get_metrics()["error_count"] == 4

    @pytest.mark.asyncio
    async def test_old_errors_fall_out_of_window(self, handler, clock):
        await handler.handle(ServerError("yelp", 500), "yelp")
        clock.advance(25 * 3600)
        assert handler.get_metrics("yelp")["error_count"] == 0

    @pytest.mark.asyncio
    async def test_provider_health(self, handler):
        """Should grade providers from recent errors and breaker state."""
        assert handler.get_provider_health("yelp", CircuitState.CLOSED)["status"] == "healthy"

        for _ in range(6):
            await handler.handle(RateLimitError("yelp", 1), "yelp")
        health = handler.get_provider_health("yelp", CircuitState.CLOSED)
        assert health["status"] == "degraded"
        assert health["errors_last_hour"] == 6
        assert "yelp: reduce request rate or raise quota" in health["recommendations"]

        opened = handler.get_provider_health("yelp", CircuitState.OPEN)
        assert opened["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_clear(self, handler):
        await handler.handle(AuthenticationError("yelp"), "yelp")
        handler.clear()
        assert handler.get_metrics()["error_count"] == 0
        assert handler.get_alerts() == []
