"""
Reasoner clients

Thin async wrappers over the LLM SDKs. Each one turns role-tagged messages
into a ReasonerResponse with token usage and maps SDK exceptions onto the
advisor error taxonomy. Retries and timeouts are the gateway's job, so the
SDK clients are created with their own retries disabled.
"""
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Literal, Optional

from advisor.errors import (
    ReasonerRateLimited,
    ReasonerTimeout,
    ReasonerTransportError,
)

logger = logging.getLogger(__name__)

GROQ_BASE_URL = "https://api.groq.com/openai/v1"

DEFAULT_MODELS = {
    "groq": "llama-3.3-70b-versatile",
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-haiku-latest",
    "rule_based": "rule-based",
}


@dataclass
class ReasonerResponse:
    text: str
    model: str
    provider: str
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: float = 0.0
    cost: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class ReasonerClient(ABC):
    """One provider endpoint."""

    name: str
    model: str

    @abstractmethod
    async def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.3,
        max_tokens: int = 500,
    ) -> ReasonerResponse:
        """Send messages, return the text and usage."""
        pass


class OpenAIReasoner(ReasonerClient):
    """OpenAI chat completions. Also serves Groq through its compatible API."""

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        name: str = "openai",
        request_timeout: float = 30.0,
    ):
        self.name = name
        self.model = model or DEFAULT_MODELS.get(name, DEFAULT_MODELS["openai"])
        self._api_key = api_key
        self._base_url = base_url
        self._request_timeout = request_timeout
        self._client = None

    def _get_client(self):
        """Lazily initialize the SDK client"""
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=self._request_timeout,
                max_retries=0,
            )
        return self._client

    async def complete(self, messages, temperature=0.3, max_tokens=500) -> ReasonerResponse:
        import openai

        client = self._get_client()
        start = time.perf_counter()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.APITimeoutError as e:
            raise ReasonerTimeout(str(e), provider=self.name) from e
        except openai.RateLimitError as e:
            raise ReasonerRateLimited(str(e), provider=self.name) from e
        except openai.APIError as e:
            raise ReasonerTransportError(str(e), provider=self.name) from e

        usage = response.usage
        return ReasonerResponse(
            text=response.choices[0].message.content or "",
            model=self.model,
            provider=self.name,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            latency_ms=(time.perf_counter() - start) * 1000,
        )


class AnthropicReasoner(ReasonerClient):
    """Anthropic messages API."""

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        request_timeout: float = 30.0,
    ):
        self.name = "anthropic"
        self.model = model or DEFAULT_MODELS["anthropic"]
        self._api_key = api_key
        self._request_timeout = request_timeout
        self._client = None

    def _get_client(self):
        """Lazily initialize the SDK client"""
        if self._client is None:
            from anthropic import AsyncAnthropic
            self._client = AsyncAnthropic(
                api_key=self._api_key,
                timeout=self._request_timeout,
                max_retries=0,
            )
        return self._client

    async def complete(self, messages, temperature=0.3, max_tokens=500) -> ReasonerResponse:
        import anthropic

        # Anthropic takes the system prompt separately
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        chat = [m for m in messages if m["role"] != "system"]

        client = self._get_client()
        start = time.perf_counter()
        try:
            response = await client.messages.create(
                model=self.model,
                system=system,
                messages=chat,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except anthropic.APITimeoutError as e:
            raise ReasonerTimeout(str(e), provider=self.name) from e
        except anthropic.RateLimitError as e:
            raise ReasonerRateLimited(str(e), provider=self.name) from e
        except anthropic.APIError as e:
            raise ReasonerTransportError(str(e), provider=self.name) from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        return ReasonerResponse(
            text=text,
            model=self.model,
            provider=self.name,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            latency_ms=(time.perf_counter() - start) * 1000,
        )


class RuleBasedReasoner(ReasonerClient):
    """
    Deterministic offline reasoner.

    Always asks for more evidence; the orchestrator's confidence threshold,
    iteration cap and gap analyzer decide when to conclude. Used when no
    provider key is configured and in local runs.
    """

    def __init__(self):
        self.name = "rule_based"
        self.model = DEFAULT_MODELS["rule_based"]

    async def complete(self, messages, temperature=0.3, max_tokens=500) -> ReasonerResponse:
        thought = {
            "reasoning": "Gather the next most informative factor.",
            "action": "ask_question",
            "confidence": 0.5,
            "priority": 5,
        }
        return ReasonerResponse(
            text=json.dumps(thought),
            model=self.model,
            provider=self.name,
        )


def create_reasoner(
    provider: Literal["groq", "openai", "anthropic", "rule_based"],
    api_key: str = "",
    model: Optional[str] = None,
    request_timeout: float = 30.0,
) -> ReasonerClient:
    """Build a client for the configured provider."""
    if provider == "rule_based":
        return RuleBasedReasoner()
    if not api_key:
        logger.warning(f"No API key for provider '{provider}', using rule-based reasoner")
        return RuleBasedReasoner()
    if provider == "groq":
        return OpenAIReasoner(api_key, model, base_url=GROQ_BASE_URL, name="groq",
                              request_timeout=request_timeout)
    if provider == "openai":
        return OpenAIReasoner(api_key, model, request_timeout=request_timeout)
    if provider == "anthropic":
        return AnthropicReasoner(api_key, model, request_timeout=request_timeout)
    raise ValueError(f"Unknown reasoner provider: {provider}")
