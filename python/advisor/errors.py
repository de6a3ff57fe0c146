"""
Error taxonomy for the advisor core.

Reasoner failures are typed so the gateway can decide what to retry and what
counts against the circuit breaker. Guardrail violations and constraint
eliminations are results, not exceptions, and do not live here.
"""
from typing import Any, Optional


class AdvisorError(Exception):
    """Base class for advisor errors."""
    pass


class ReasonerError(AdvisorError):
    """Base class for failures talking to the reasoning service."""

    retryable = False

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class ReasonerTimeout(ReasonerError):
    """The provider did not answer within the hard timeout."""

    retryable = True


class ReasonerRateLimited(ReasonerError):
    """The provider rejected the call with a rate limit."""

    retryable = True


class ReasonerTransportError(ReasonerError):
    """Connection failures and non-success provider responses."""

    retryable = True


class MalformedReasonerOutput(ReasonerError):
    """The provider answered but the output failed schema validation."""

    def __init__(self, message: str, raw_text: str = "", provider: Optional[str] = None,
                 response: Any = None):
        super().__init__(message, provider)
        self.raw_text = raw_text
        # Provider response, kept so its token usage can still be counted
        self.response = response


class ReasonerUnavailable(ReasonerError):
    """Retries were exhausted; wraps the last underlying failure."""

    def __init__(self, message: str, cause: Optional[ReasonerError] = None,
                 provider: Optional[str] = None):
        super().__init__(message, provider)
        self.cause = cause


class CircuitOpenError(ReasonerError):
    """Raised without calling the provider while its breaker is open."""

    def __init__(self, breaker_name: str, retry_after_ms: float = 0.0):
        super().__init__(
            f"Circuit breaker '{breaker_name}' is open; retry in {retry_after_ms:.0f}ms",
            provider=breaker_name,
        )
        self.breaker_name = breaker_name
        self.retry_after_ms = retry_after_ms


class SessionNotFound(AdvisorError):
    """No state is stored for the requested session id."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id
