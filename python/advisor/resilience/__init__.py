from advisor.resilience.circuit_breaker import (
    BreakerRegistry,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from advisor.resilience.retry import RetryWithBackoff

__all__ = [
    "BreakerRegistry",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "RetryWithBackoff",
]
