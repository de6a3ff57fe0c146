"""
Centralized tunables for the advisor core.
All thresholds and caps live here.
Override via environment variables for testing.

Usage:
    from advisor.config.constants import CONSTANTS

    if top.confidence >= CONSTANTS.agent.CONFIDENCE_THRESHOLD:
        conclude()

For tests: set env vars BEFORE importing, or pass explicit values to the
components that accept them.
"""
import os
from dataclasses import dataclass, field


def _env_float(key: str, default: float) -> float:
    """Read float from environment, fall back to default."""
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return float(val)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    """Read int from environment, fall back to default."""
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


@dataclass(frozen=True)
class AgentConstants:
    """Orchestrator loop parameters."""
    # Top hypothesis confidence that ends the conversation
    CONFIDENCE_THRESHOLD: float = _env_float("AGENT_CONFIDENCE_THRESHOLD", 0.75)
    # Hard cap on turns per session
    MAX_ITERATIONS: int = _env_int("AGENT_MAX_ITERATIONS", 10)
    # Forced-recommendation valve: enough evidence after enough turns
    READY_MIN_FACTORS: int = _env_int("AGENT_READY_MIN_FACTORS", 5)
    READY_MIN_ITERATIONS: int = _env_int("AGENT_READY_MIN_ITERATIONS", 7)
    # Messages of history shown to the reasoner
    HISTORY_WINDOW: int = _env_int("AGENT_HISTORY_WINDOW", 5)
    # Below this the recommendation carries a low-confidence caveat
    LOW_CONFIDENCE_CAVEAT: float = _env_float("AGENT_LOW_CONFIDENCE_CAVEAT", 0.6)
    # Reasoner temperature for the think step
    THINK_TEMPERATURE: float = _env_float("AGENT_THINK_TEMPERATURE", 0.3)


@dataclass(frozen=True)
class ScoringConstants:
    """Confidence engine parameters."""
    LIKELIHOOD_FLOOR: float = 0.1
    LIKELIHOOD_CEIL: float = 0.9
    # Blended likelihood below this records a contradiction
    CONTRADICTION_CUTOFF: float = _env_float("SCORING_CONTRADICTION_CUTOFF", 0.3)
    # Multiplier applied by boost constraints before renormalization
    BOOST_FACTOR: float = _env_float("SCORING_BOOST_FACTOR", 1.5)
    # Information gain heuristic
    GAIN_CERTAINTY_CUTOFF: float = 0.75
    GAIN_FLOOR: float = 0.1


@dataclass(frozen=True)
class ReasonerConstants:
    """Gateway call policy."""
    # Independent hard timeout around each provider call
    HARD_TIMEOUT_SECONDS: float = _env_float("REASONER_TIMEOUT_SECONDS", 30.0)
    # Total attempts per call (first try included)
    MAX_ATTEMPTS: int = _env_int("REASONER_MAX_ATTEMPTS", 3)
    BACKOFF_BASE_SECONDS: float = _env_float("REASONER_BACKOFF_BASE", 1.0)
    BACKOFF_FACTOR: float = 2.0
    BACKOFF_MAX_SECONDS: float = 10.0
    MAX_OUTPUT_TOKENS: int = _env_int("REASONER_MAX_OUTPUT_TOKENS", 500)


@dataclass(frozen=True)
class BreakerConstants:
    """Circuit breaker defaults."""
    FAILURE_THRESHOLD: int = _env_int("BREAKER_FAILURE_THRESHOLD", 3)
    SUCCESS_THRESHOLD: int = _env_int("BREAKER_SUCCESS_THRESHOLD", 2)
    TIMEOUT_MS: int = _env_int("BREAKER_TIMEOUT_MS", 60_000)


@dataclass(frozen=True)
class GuardrailConstants:
    """Per-session resource caps."""
    MAX_ITERATIONS: int = _env_int("GUARD_MAX_ITERATIONS", 10)
    MAX_TOKENS_PER_SESSION: int = _env_int("GUARD_MAX_TOKENS", 10_000)
    MAX_COST_PER_SESSION: float = _env_float("GUARD_MAX_COST", 0.50)
    HUMAN_APPROVAL_THRESHOLD: float = _env_float("GUARD_APPROVAL_THRESHOLD", 0.60)
    MAX_TOOL_CALLS_PER_ITERATION: int = _env_int("GUARD_MAX_TOOL_CALLS", 5)
    # Wall-clock session budget
    TIMEOUT_MS: int = _env_int("GUARD_TIMEOUT_MS", 30 * 60 * 1000)


@dataclass(frozen=True)
class MonitoringConstants:
    """Performance monitor window."""
    RESPONSE_WINDOW: int = _env_int("MONITOR_RESPONSE_WINDOW", 100)


@dataclass(frozen=True)
class Constants:
    """All advisor constants."""
    agent: AgentConstants = field(default_factory=AgentConstants)
    scoring: ScoringConstants = field(default_factory=ScoringConstants)
    reasoner: ReasonerConstants = field(default_factory=ReasonerConstants)
    breaker: BreakerConstants = field(default_factory=BreakerConstants)
    guardrails: GuardrailConstants = field(default_factory=GuardrailConstants)
    monitoring: MonitoringConstants = field(default_factory=MonitoringConstants)


# Singleton instance
CONSTANTS = Constants()
