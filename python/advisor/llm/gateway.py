"""
Reasoner Gateway

The one way the agent talks to an LLM. Each call is layered as

    circuit breaker( retry with backoff( hard timeout( provider call )))

Timeouts, rate limits and transport errors are retried. When retries run out
the breaker records one failure and the caller gets ReasonerUnavailable.
While the breaker is open the caller gets CircuitOpenError and the provider
is not contacted. Structured output that fails validation raises
MalformedReasonerOutput; it is neither retried nor counted by the breaker.
"""
import asyncio
import json
import logging
import time
from typing import Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from advisor.config.constants import CONSTANTS
from advisor.errors import (
    MalformedReasonerOutput,
    ReasonerError,
    ReasonerTimeout,
    ReasonerUnavailable,
)
from advisor.llm.monitoring import CostLedger, PerformanceMonitor
from advisor.llm.reasoner import ReasonerClient, ReasonerResponse
from advisor.resilience.circuit_breaker import BreakerRegistry, CircuitBreaker
from advisor.resilience.retry import RetryWithBackoff

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _is_retryable(e: BaseException) -> bool:
    return isinstance(e, ReasonerError) and e.retryable


def _is_breaker_failure(e: BaseException) -> bool:
    return isinstance(e, ReasonerError) and not isinstance(e, MalformedReasonerOutput)


def default_retry_policy() -> RetryWithBackoff:
    return RetryWithBackoff(
        max_retries=CONSTANTS.reasoner.MAX_ATTEMPTS - 1,
        base_delay=CONSTANTS.reasoner.BACKOFF_BASE_SECONDS,
        max_delay=CONSTANTS.reasoner.BACKOFF_MAX_SECONDS,
        exponential_base=CONSTANTS.reasoner.BACKOFF_FACTOR,
        exceptions=(ReasonerError,),
        retry_if=_is_retryable,
    )


def extract_json(text: str) -> dict:
    """Pull the outermost JSON object out of a model response."""
    json_start = text.find("{")
    json_end = text.rfind("}") + 1
    if json_start == -1 or json_end == 0:
        raise ValueError("no JSON object in response")
    data = json.loads(text[json_start:json_end])
    if not isinstance(data, dict):
        raise ValueError("response JSON is not an object")
    return data


class ReasonerGateway:

    def __init__(
        self,
        client: ReasonerClient,
        breakers: Optional[BreakerRegistry] = None,
        ledger: Optional[CostLedger] = None,
        monitor: Optional[PerformanceMonitor] = None,
        retry: Optional[RetryWithBackoff] = None,
        hard_timeout: float = CONSTANTS.reasoner.HARD_TIMEOUT_SECONDS,
        max_tokens: int = CONSTANTS.reasoner.MAX_OUTPUT_TOKENS,
    ):
        self.client = client
        self.breakers = breakers or BreakerRegistry()
        self.ledger = ledger or CostLedger()
        self.monitor = monitor or PerformanceMonitor()
        self.retry = retry or default_retry_policy()
        self.hard_timeout = hard_timeout
        self.max_tokens = max_tokens

    @property
    def breaker(self) -> CircuitBreaker:
        return self.breakers.get(self.client.name, counts_as_failure=_is_breaker_failure)

    async def _attempt(self, messages, temperature: float) -> ReasonerResponse:
        start = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self.client.complete(messages, temperature=temperature,
                                     max_tokens=self.max_tokens),
                timeout=self.hard_timeout,
            )
        except asyncio.TimeoutError as e:
            self.monitor.record((time.perf_counter() - start) * 1000, success=False)
            raise ReasonerTimeout(
                f"{self.client.name} did not answer within {self.hard_timeout:.1f}s",
                provider=self.client.name,
            ) from e
        except ReasonerError:
            self.monitor.record((time.perf_counter() - start) * 1000, success=False)
            raise
        self.monitor.record((time.perf_counter() - start) * 1000, success=True)
        return response

    async def complete(
        self,
        messages: List[Dict[str, str]],
        session_id: str,
        temperature: float = 0.3,
    ) -> ReasonerResponse:
        """Free-text completion with the full resilience stack."""

        async def with_retry() -> ReasonerResponse:
            try:
                return await self.retry.run(
                    lambda: self._attempt(messages, temperature),
                    name=f"reasoner[{self.client.name}]",
                )
            except ReasonerError as e:
                if not e.retryable:
                    raise
                raise ReasonerUnavailable(
                    f"{self.client.name} unavailable after "
                    f"{self.retry.max_attempts} attempts: {e}",
                    cause=e,
                    provider=self.client.name,
                ) from e

        response = await self.breaker.call(with_retry)
        response.cost = self.ledger.record(
            session_id, response.model, response.input_tokens, response.output_tokens
        )
        return response

    async def complete_structured(
        self,
        messages: List[Dict[str, str]],
        schema: Type[M],
        session_id: str,
        temperature: float = 0.3,
    ) -> Tuple[M, ReasonerResponse]:
        """Completion validated against a pydantic schema."""
        response = await self.complete(messages, session_id, temperature)
        try:
            parsed = schema.model_validate(extract_json(response.text))
        except (ValueError, ValidationError) as e:
            raise MalformedReasonerOutput(
                f"{schema.__name__} validation failed: {e}",
                raw_text=response.text,
                provider=self.client.name,
                response=response,
            ) from e
        return parsed, response
