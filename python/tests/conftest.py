"""
Shared fakes for the advisor tests.
"""
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

import pytest

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from advisor.errors import ReasonerTransportError
from advisor.llm.reasoner import ReasonerClient, ReasonerResponse
from advisor.resilience.retry import RetryWithBackoff


class FakeClock:
    """Manually advanced seconds source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedReasoner(ReasonerClient):
    """
    Returns queued replies in order, repeating the last one when the queue
    runs dry. A reply that is an exception instance is raised instead.
    """

    def __init__(self, replies: Optional[List] = None, name: str = "scripted",
                 model: str = "gpt-4o-mini", input_tokens: int = 100,
                 output_tokens: int = 20):
        self.name = name
        self.model = model
        self.replies = list(replies or [thought_json("ask_question")])
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.calls = 0
        self.messages: List = []

    async def complete(self, messages, temperature=0.3, max_tokens=500) -> ReasonerResponse:
        self.calls += 1
        self.messages.append(messages)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return ReasonerResponse(
            text=reply,
            model=self.model,
            provider=self.name,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            latency_ms=5.0,
        )


class FailingReasoner(ReasonerClient):
    """Fails every call with a transport error."""

    def __init__(self, name: str = "failing"):
        self.name = name
        self.model = "gpt-4o-mini"
        self.calls = 0

    async def complete(self, messages, temperature=0.3, max_tokens=500) -> ReasonerResponse:
        self.calls += 1
        raise ReasonerTransportError("connection reset", provider=self.name)


class SlowReasoner(ReasonerClient):
    """Never answers within any reasonable timeout."""

    def __init__(self, delay: float = 5.0):
        self.name = "slow"
        self.model = "gpt-4o-mini"
        self.delay = delay
        self.calls = 0

    async def complete(self, messages, temperature=0.3, max_tokens=500) -> ReasonerResponse:
        self.calls += 1
        await asyncio.sleep(self.delay)
        return ReasonerResponse(text="{}", model=self.model, provider=self.name)


def thought_json(action: str, reasoning: str = "next step", confidence: float = 0.6) -> str:
    return json.dumps({
        "reasoning": reasoning,
        "action": action,
        "confidence": confidence,
        "priority": 5,
    })


async def _no_sleep(delay: float) -> None:
    return None


def fast_retry(max_retries: int = 2) -> RetryWithBackoff:
    """Gateway retry policy without real sleeps."""
    from advisor.llm.gateway import _is_retryable
    from advisor.errors import ReasonerError
    return RetryWithBackoff(
        max_retries=max_retries,
        base_delay=0.01,
        jitter=False,
        exceptions=(ReasonerError,),
        retry_if=_is_retryable,
        sleep=_no_sleep,
    )


@pytest.fixture
def clock():
    return FakeClock()
