"""
Circuit Breaker

Per-provider breaker for the reasoning service.

    CLOSED --(failure_threshold consecutive failures)--> OPEN
    OPEN --(timeout_ms since the last failure)--> HALF_OPEN
    HALF_OPEN --(success_threshold consecutive successes)--> CLOSED
    HALF_OPEN --(any failure)--> OPEN

While OPEN every call fails fast with CircuitOpenError and the wrapped
function is never invoked. The clock is injectable so tests can advance time.
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from advisor.config.constants import CONSTANTS
from advisor.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = CONSTANTS.breaker.FAILURE_THRESHOLD
    success_threshold: int = CONSTANTS.breaker.SUCCESS_THRESHOLD
    timeout_ms: int = CONSTANTS.breaker.TIMEOUT_MS


class CircuitBreaker:

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        counts_as_failure: Callable[[BaseException], bool] = lambda e: True,
    ):
        """
        Args:
            name: Provider name, used in logs and errors
            config: Thresholds and cooldown
            clock: Seconds source, monotonic by default
            counts_as_failure: Exceptions for which this returns False pass
                through without touching breaker state
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._counts_as_failure = counts_as_failure
        self._lock = Lock()

        self._state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.total_calls = 0
        self.total_failures = 0
        self.total_rejections = 0

    @property
    def state(self) -> CircuitState:
        return self._state

    def _elapsed_ms(self) -> float:
        if self.last_failure_time is None:
            return float("inf")
        return (self._clock() - self.last_failure_time) * 1000.0

    def _transition(self, new_state: CircuitState) -> None:
        if new_state == self._state:
            return
        logger.info(f"[BREAKER] {self.name}: {self._state.value} -> {new_state.value}")
        self._state = new_state
        if new_state == CircuitState.HALF_OPEN:
            self.success_count = 0
        elif new_state == CircuitState.CLOSED:
            self.failure_count = 0
            self.success_count = 0

    def before_call(self) -> None:
        """Admit or reject a call. Raises CircuitOpenError while open."""
        with self._lock:
            if self._state == CircuitState.OPEN:
                elapsed = self._elapsed_ms()
                if elapsed >= self.config.timeout_ms:
                    self._transition(CircuitState.HALF_OPEN)
                else:
                    self.total_rejections += 1
                    raise CircuitOpenError(self.name, self.config.timeout_ms - elapsed)
            self.total_calls += 1

    def record_success(self) -> None:
        with self._lock:
            self.failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self.success_count += 1
                if self.success_count >= self.config.success_threshold:
                    self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            self.total_failures += 1
            self.failure_count += 1
            self.last_failure_time = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
            elif (self._state == CircuitState.CLOSED
                  and self.failure_count >= self.config.failure_threshold):
                self._transition(CircuitState.OPEN)

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """Run an async callable under the breaker."""
        self.before_call()
        try:
            result = await func()
        except Exception as e:
            if self._counts_as_failure(e):
                self.record_failure()
                logger.warning(
                    f"[BREAKER] {self.name}: failure {self.failure_count}/"
                    f"{self.config.failure_threshold} ({type(e).__name__})"
                )
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self.failure_count = 0
            self.success_count = 0
            self.last_failure_time = None
        logger.info(f"[BREAKER] {self.name}: manually reset")

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self.failure_count,
                "success_count": self.success_count,
                "total_calls": self.total_calls,
                "total_failures": self.total_failures,
                "total_rejections": self.total_rejections,
                "config": {
                    "failure_threshold": self.config.failure_threshold,
                    "success_threshold": self.config.success_threshold,
                    "timeout_ms": self.config.timeout_ms,
                },
            }


class BreakerRegistry:
    """Thread-safe map of provider name to breaker."""

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = Lock()
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, name: str, **kwargs) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name, self.config, self._clock, **kwargs)
                self._breakers[name] = breaker
            return breaker

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()

    def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            breakers = dict(self._breakers)
        return {name: b.get_stats() for name, b in breakers.items()}
