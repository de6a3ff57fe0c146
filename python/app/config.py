from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings

from advisor.agent.guardrails import GuardrailConfig
from advisor.config.constants import CONSTANTS
from advisor.resilience.circuit_breaker import CircuitBreakerConfig


class Settings(BaseSettings):
    # App settings
    app_name: str = "Legal Entity Advisor"
    debug: bool = True

    # Redis (optional, in-memory sessions when unset)
    redis_url: Optional[str] = None
    session_ttl_seconds: int = 3600

    # Reasoner
    llm_provider: Literal["groq", "openai", "anthropic", "rule_based"] = "groq"
    llm_model: Optional[str] = None
    llm_temperature: float = CONSTANTS.agent.THINK_TEMPERATURE
    reasoner_timeout_seconds: float = CONSTANTS.reasoner.HARD_TIMEOUT_SECONDS

    # LLM API Keys
    groq_api_key: str = ""
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    # Agent loop
    confidence_threshold: float = CONSTANTS.agent.CONFIDENCE_THRESHOLD
    max_iterations: int = CONSTANTS.agent.MAX_ITERATIONS

    # Guardrails
    max_tokens_per_session: int = CONSTANTS.guardrails.MAX_TOKENS_PER_SESSION
    max_cost_per_session: float = CONSTANTS.guardrails.MAX_COST_PER_SESSION
    human_approval_threshold: float = CONSTANTS.guardrails.HUMAN_APPROVAL_THRESHOLD
    max_tool_calls_per_iteration: int = CONSTANTS.guardrails.MAX_TOOL_CALLS_PER_ITERATION
    session_timeout_ms: int = CONSTANTS.guardrails.TIMEOUT_MS

    # Circuit breaker
    breaker_failure_threshold: int = CONSTANTS.breaker.FAILURE_THRESHOLD
    breaker_success_threshold: int = CONSTANTS.breaker.SUCCESS_THRESHOLD
    breaker_timeout_ms: int = CONSTANTS.breaker.TIMEOUT_MS

    class Config:
        # Load from .env.local first (higher priority), then .env
        env_file = (".env", ".env.local")
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def llm_api_key(self) -> str:
        return {
            "groq": self.groq_api_key,
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
        }.get(self.llm_provider, "")

    def guardrail_config(self) -> GuardrailConfig:
        return GuardrailConfig(
            max_iterations=self.max_iterations,
            max_tokens_per_session=self.max_tokens_per_session,
            max_cost_per_session=self.max_cost_per_session,
            require_human_approval_threshold=self.human_approval_threshold,
            max_tool_calls_per_iteration=self.max_tool_calls_per_iteration,
            timeout_ms=self.session_timeout_ms,
        )

    def breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.breaker_failure_threshold,
            success_threshold=self.breaker_success_threshold,
            timeout_ms=self.breaker_timeout_ms,
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
