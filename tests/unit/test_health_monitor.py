"""
Unit Tests - Provider Health Monitor
Tests for the circuit breaker and rolling health statistics.
"""
import asyncio

import pytest
from unittest.mock import AsyncMock, call

from venue_aggregator.data_providers.health_monitor import (
    CircuitState,
    HealthConfig,
    ProviderHealthMonitor,
)


class TestCircuitBreaker:
    """Tests for breaker transitions."""

    @pytest.fixture
    def monitor(self, clock):
        monitor = ProviderHealthMonitor(clock=clock)
        monitor.configure("yelp")
        return monitor

    async def _fail(self, monitor, times, provider="yelp"):
        for _ in range(times):
            await monitor.record_failure(provider, "HTTP 500")

    @pytest.mark.asyncio
    async def test_opens_after_five_failures(self, monitor, clock):
        """Five consecutive failures open the breaker for 60 seconds."""
        await self._fail(monitor, 4)
        assert monitor.get_circuit("yelp").state == CircuitState.CLOSED

        await self._fail(monitor, 1)
        breaker = monitor.get_circuit("yelp")
        assert breaker.state == CircuitState.OPEN
        assert breaker.next_retry_time == clock.now + 60
        assert breaker.opened_count == 1
        assert not monitor.can_request("yelp")

    @pytest.mark.asyncio
    async def test_half_open_after_retry_time(self, monitor, clock):
        """Crossing next_retry_time moves open to half-open."""
        await self._fail(monitor, 5)
        clock.advance(59)
        assert not monitor.can_request("yelp")

        clock.advance(1)
        assert monitor.can_request("yelp")
        assert monitor.get_circuit("yelp").state == CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_half_open_success_closes(self, monitor, clock):
        """One success while half-open closes the breaker."""
        await self._fail(monitor, 5)
        clock.advance(60)
        monitor.can_request("yelp")

        await monitor.record_success("yelp", 120.0)
        breaker = monitor.get_circuit("yelp")
        assert breaker.state == CircuitState.CLOSED
        assert breaker.consecutive_failures == 0
        assert breaker.next_retry_time is None

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, monitor, clock):
        """A failure while half-open reopens immediately."""
        await self._fail(monitor, 5)
        clock.advance(60)
        monitor.can_request("yelp")

        await self._fail(monitor, 1)
        breaker = monitor.get_circuit("yelp")
        assert breaker.state == CircuitState.OPEN
        assert breaker.next_retry_time == clock.now + 60
        assert breaker.opened_count == 2

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_count(self, monitor):
        """Failures must be consecutive to open the breaker."""
        await self._fail(monitor, 4)
        await monitor.record_success("yelp", 50.0)
        await self._fail(monitor, 4)
        assert monitor.get_circuit("yelp").state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_uncounted_failures_keep_breaker_closed(self, monitor):
        """Provider rate limiting is recorded but never trips the breaker."""
        for _ in range(10):
            await monitor.record_failure("yelp", "429", counts_toward_circuit=False)
        assert monitor.get_circuit("yelp").state == CircuitState.CLOSED
        assert monitor.get_status("yelp").failed_requests == 10

    @pytest.mark.asyncio
    async def test_transition_callbacks(self, monitor):
        """Listeners receive old and new state."""
        callback = AsyncMock()
        monitor.register_transition_callback(callback)
        await self._fail(monitor, 5)
        callback.assert_awaited_once_with("yelp", CircuitState.CLOSED, CircuitState.OPEN)

    @pytest.mark.asyncio
    async def test_half_open_notifies_callbacks(self, monitor, clock):
        """Should tell listeners about the move to half-open made by can_request."""
        callback = AsyncMock()
        monitor.register_transition_callback(callback)
        await self._fail(monitor, 5)
        clock.advance(60)

        assert monitor.can_request("yelp")
        await asyncio.sleep(0)

        assert callback.await_args_list[-1] == call("yelp", CircuitState.OPEN, CircuitState.HALF_OPEN)
        assert callback.await_count == 2

    def test_half_open_without_running_loop(self, clock):
        monitor = ProviderHealthMonitor(clock=clock)
        callback = AsyncMock()
        monitor.register_transition_callback(callback)
        breaker = monitor.get_circuit("yelp")
        breaker.state = CircuitState.OPEN
        breaker.next_retry_time = clock.now

        assert monitor.can_request("yelp")
        assert breaker.state == CircuitState.HALF_OPEN
        callback.assert_not_called()

    def test_invalid_credentials_block_requests(self, monitor):
        monitor.mark_credentials_invalid("yelp", "Invalid API key")
        assert not monitor.can_request("yelp")
        status = monitor.get_status("yelp")
        assert status.healthy is False
        assert status.to_dict()["credentials_valid"] is False

        monitor.clear_credentials("yelp")
        assert monitor.can_request("yelp")

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_recording(self, monitor):
        monitor.register_transition_callback(AsyncMock(side_effect=RuntimeError("boom")))
        await self._fail(monitor, 5)
        assert monitor.get_circuit("yelp").state == CircuitState.OPEN

    def test_unknown_provider_allowed(self, monitor):
        assert monitor.can_request("never-seen")


class TestHealthStatus:
    """Tests for ApiHealthStatus."""

    @pytest.mark.asyncio
    async def test_healthy_provider(self, clock):
        """Should report healthy with low error rate."""
        monitor = ProviderHealthMonitor(clock=clock)
        for latency in (100.0, 200.0, 300.0):
            await monitor.record_success("yelp", latency)
        status = monitor.get_status("yelp")
        assert status.healthy
        assert status.avg_response_time_ms == pytest.approx(200.0)
        assert status.error_rate == 0.0
        assert status.total_requests == 3
        assert status.last_success is not None

    @pytest.mark.asyncio
    async def test_three_consecutive_failures_unhealthy(self, clock):
        """Three consecutive failures mark the provider unhealthy before the breaker opens."""
        monitor = ProviderHealthMonitor(clock=clock)
        for _ in range(7):
            await monitor.record_success("yelp", 100.0)
        for _ in range(3):
            await monitor.record_failure("yelp", "timeout")
        status = monitor.get_status("yelp")
        assert status.circuit_state == CircuitState.CLOSED
        assert status.error_rate == pytest.approx(0.3)
        assert not status.healthy

    @pytest.mark.asyncio
    async def test_error_rate_over_window(self, clock):
        """Error rate is computed over the last window_size calls only."""
        monitor = ProviderHealthMonitor(HealthConfig(window_size=4), clock=clock)
        for _ in range(4):
            await monitor.record_failure("yelp", "x", counts_toward_circuit=False)
        for _ in range(4):
            await monitor.record_success("yelp", 10.0)
        status = monitor.get_status("yelp")
        assert status.error_rate == 0.0
        assert status.total_requests == 8
        assert status.healthy

    @pytest.mark.asyncio
    async def test_healthy_providers_list(self, clock):
        monitor = ProviderHealthMonitor(clock=clock)
        await monitor.record_success("yelp", 10.0)
        for _ in range(5):
            await monitor.record_failure("foursquare", "down")
        assert monitor.get_healthy_providers() == ["yelp"]

    @pytest.mark.asyncio
    async def test_reset(self, clock):
        monitor = ProviderHealthMonitor(clock=clock)
        for _ in range(5):
            await monitor.record_failure("yelp", "down")
        monitor.reset("yelp")
        assert monitor.get_circuit("yelp").state == CircuitState.CLOSED
        assert monitor.get_status("yelp").total_requests == 0
