"""
Tests for the circuit breaker and retry policy.
"""
import pytest

from advisor.errors import CircuitOpenError, ReasonerTimeout, MalformedReasonerOutput
from advisor.resilience import (
    BreakerRegistry,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    RetryWithBackoff,
)


async def ok():
    return "ok"


async def boom():
    raise ReasonerTimeout("too slow", provider="test")


@pytest.fixture
def breaker(clock):
    config = CircuitBreakerConfig(failure_threshold=3, success_threshold=2, timeout_ms=1000)
    return CircuitBreaker("test", config, clock=clock)


async def fail_n(breaker: CircuitBreaker, n: int) -> None:
    for _ in range(n):
        with pytest.raises(ReasonerTimeout):
            await breaker.call(boom)


# =============================================================================
# State machine
# =============================================================================

class TestCircuitBreaker:

    @pytest.mark.asyncio
    async def test_starts_closed(self, breaker):
        assert breaker.state == CircuitState.CLOSED
        assert await breaker.call(ok) == "ok"

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, breaker):
        await fail_n(breaker, 2)
        assert breaker.state == CircuitState.CLOSED
        await fail_n(breaker, 1)
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker):
        await fail_n(breaker, 2)
        await breaker.call(ok)
        await fail_n(breaker, 2)
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_open_rejects_without_calling(self, breaker):
        await fail_n(breaker, 3)
        calls = []

        async def tracked():
            calls.append(1)
            return "ok"

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.call(tracked)
        assert calls == []
        assert exc_info.value.retry_after_ms > 0
        assert breaker.get_stats()["total_rejections"] == 1

    @pytest.mark.asyncio
    async def test_full_recovery_cycle(self, breaker, clock):
        await fail_n(breaker, 3)
        assert breaker.state == CircuitState.OPEN

        clock.advance(1.1)
        assert await breaker.call(ok) == "ok"
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.success_count == 1

        await breaker.call(ok)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, breaker, clock):
        await fail_n(breaker, 3)
        clock.advance(1.1)
        await fail_n(breaker, 1)
        assert breaker.state == CircuitState.OPEN

        # Cooldown restarts from the latest failure
        clock.advance(0.5)
        with pytest.raises(CircuitOpenError):
            await breaker.call(ok)

    @pytest.mark.asyncio
    async def test_ignored_exceptions_leave_state(self, clock):
        breaker = CircuitBreaker(
            "test",
            CircuitBreakerConfig(failure_threshold=1),
            clock=clock,
            counts_as_failure=lambda e: not isinstance(e, MalformedReasonerOutput),
        )

        async def malformed():
            raise MalformedReasonerOutput("bad json")

        with pytest.raises(MalformedReasonerOutput):
            await breaker.call(malformed)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_reset(self, breaker):
        await fail_n(breaker, 3)
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert await breaker.call(ok) == "ok"


class TestBreakerRegistry:

    def test_one_breaker_per_name(self, clock):
        registry = BreakerRegistry(clock=clock)
        assert registry.get("groq") is registry.get("groq")
        assert registry.get("groq") is not registry.get("openai")

    @pytest.mark.asyncio
    async def test_stats_and_reset_all(self, clock):
        registry = BreakerRegistry(CircuitBreakerConfig(failure_threshold=1), clock=clock)
        with pytest.raises(ReasonerTimeout):
            await registry.get("groq").call(boom)

        stats = registry.get_all_stats()
        assert stats["groq"]["state"] == "open"
        assert stats["groq"]["total_failures"] == 1

        registry.reset_all()
        assert registry.get("groq").state == CircuitState.CLOSED


# =============================================================================
# Retry
# =============================================================================

class TestRetryWithBackoff:

    def make(self, **kwargs):
        delays = []

        async def sleep(delay):
            delays.append(delay)

        retry = RetryWithBackoff(base_delay=1.0, jitter=False, sleep=sleep, **kwargs)
        return retry, delays

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self):
        retry, delays = self.make(max_retries=2)
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ReasonerTimeout("slow")
            return "done"

        assert await retry.run(flaky) == "done"
        assert len(attempts) == 3
        assert delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_raises_last_error_when_exhausted(self):
        retry, delays = self.make(max_retries=1)
        with pytest.raises(ReasonerTimeout):
            await retry.run(boom)
        assert len(delays) == 1

    @pytest.mark.asyncio
    async def test_retry_if_false_reraises_immediately(self):
        retry, delays = self.make(max_retries=3, retry_if=lambda e: False)
        with pytest.raises(ReasonerTimeout):
            await retry.run(boom)
        assert delays == []

    def test_delay_is_capped(self):
        retry = RetryWithBackoff(base_delay=1.0, max_delay=3.0, jitter=False)
        assert retry._calculate_delay(0) == 1.0
        assert retry._calculate_delay(5) == 3.0

    def test_jitter_within_25_percent(self):
        retry = RetryWithBackoff(base_delay=2.0, jitter=True)
        for _ in range(20):
            assert 1.5 <= retry._calculate_delay(0) <= 2.5

    @pytest.mark.asyncio
    async def test_decorator(self):
        retry, _ = self.make(max_retries=1)
        attempts = []

        @retry
        async def flaky(value):
            attempts.append(value)
            if len(attempts) == 1:
                raise ReasonerTimeout("slow")
            return value * 2

        assert await flaky(21) == 42
        assert attempts == [21, 21]
