"""
Guardrail Supervisor

Resource caps for a session and the policy for handing off to a human.

check_guardrails() reports at most one violation, in priority order:
iterations, tokens, cost, wall-clock timeout. A violation is a result, never
an exception; the orchestrator turns it into a safe termination message.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import Any, Dict, Optional

from advisor.agent.models import AgentState
from advisor.agent.scoring import top_hypotheses
from advisor.config.constants import CONSTANTS

logger = logging.getLogger(__name__)


class ViolationType(str, Enum):
    MAX_ITERATIONS = "max_iterations"
    MAX_TOKENS = "max_tokens"
    MAX_COST = "max_cost"
    TIMEOUT = "timeout"
    LOW_CONFIDENCE = "low_confidence"
    REASONER_UNAVAILABLE = "reasoner_unavailable"


@dataclass(frozen=True)
class GuardrailConfig:
    max_iterations: int = CONSTANTS.guardrails.MAX_ITERATIONS
    max_tokens_per_session: int = CONSTANTS.guardrails.MAX_TOKENS_PER_SESSION
    max_cost_per_session: float = CONSTANTS.guardrails.MAX_COST_PER_SESSION
    require_human_approval_threshold: float = CONSTANTS.guardrails.HUMAN_APPROVAL_THRESHOLD
    max_tool_calls_per_iteration: int = CONSTANTS.guardrails.MAX_TOOL_CALLS_PER_ITERATION
    timeout_ms: int = CONSTANTS.guardrails.TIMEOUT_MS


@dataclass
class SessionMetrics:
    """Monotonic usage counters for one session."""
    iterations: int = 0
    tokens_used: int = 0
    cost_accumulated: float = 0.0
    tool_calls_made: int = 0
    llm_calls: int = 0
    start_time: datetime = field(default_factory=datetime.utcnow)

    @property
    def elapsed_ms(self) -> float:
        return (datetime.utcnow() - self.start_time).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iterations": self.iterations,
            "tokens_used": self.tokens_used,
            "cost_accumulated": round(self.cost_accumulated, 6),
            "tool_calls_made": self.tool_calls_made,
            "llm_calls": self.llm_calls,
            "start_time": self.start_time.isoformat(),
            "elapsed_ms": round(self.elapsed_ms),
        }


@dataclass
class GuardrailResult:
    violated: bool
    type: Optional[ViolationType] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "violated": self.violated,
            "type": self.type.value if self.type else None,
            "message": self.message,
        }


OK = GuardrailResult(violated=False)


def initialize_metrics() -> SessionMetrics:
    return SessionMetrics()


def update_metrics(
    metrics: SessionMetrics,
    iterations: int = 0,
    tokens: int = 0,
    cost: float = 0.0,
    tool_calls: int = 0,
    llm_calls: int = 0,
) -> SessionMetrics:
    """Additive update. Negative deltas are ignored so counters never go down."""
    metrics.iterations += max(0, iterations)
    metrics.tokens_used += max(0, tokens)
    metrics.cost_accumulated += max(0.0, cost)
    metrics.tool_calls_made += max(0, tool_calls)
    metrics.llm_calls += max(0, llm_calls)
    return metrics


def check_guardrails(
    state: AgentState,
    metrics: SessionMetrics,
    config: GuardrailConfig,
) -> GuardrailResult:
    if state.iteration_count >= config.max_iterations:
        return GuardrailResult(
            True, ViolationType.MAX_ITERATIONS,
            f"Reached maximum iterations ({config.max_iterations})",
        )
    if metrics.tokens_used >= config.max_tokens_per_session:
        return GuardrailResult(
            True, ViolationType.MAX_TOKENS,
            f"Exceeded token limit ({metrics.tokens_used}/{config.max_tokens_per_session})",
        )
    if metrics.cost_accumulated >= config.max_cost_per_session:
        return GuardrailResult(
            True, ViolationType.MAX_COST,
            f"Exceeded cost limit (${metrics.cost_accumulated:.4f}/"
            f"${config.max_cost_per_session:.2f})",
        )
    if metrics.elapsed_ms >= config.timeout_ms:
        return GuardrailResult(
            True, ViolationType.TIMEOUT,
            f"Session timeout ({metrics.elapsed_ms:.0f}ms >= {config.timeout_ms}ms)",
        )
    return OK


def requires_human_approval(state: AgentState, config: GuardrailConfig) -> bool:
    top = top_hypotheses(state.current_hypotheses, 1)
    if not top:
        return True
    if top[0].confidence < config.require_human_approval_threshold:
        return True
    return len(top[0].contradicting_factors) > 0


def create_safe_termination(
    violation_type: ViolationType,
    message: str,
    state: AgentState,
) -> str:
    """User-facing text for a forced stop. Deterministic and never raises."""
    top = top_hypotheses(state.current_hypotheses, 3)
    best = top[0] if top and top[0].confidence > 0 else None
    best_name = best.entity.value if best else "a formally registered entity"
    best_pct = f"{best.confidence * 100:.0f}%" if best else "0%"

    if violation_type == ViolationType.MAX_ITERATIONS:
        return (
            f"I've reached my analysis limit. Based on what we've discussed, "
            f"**{best_name}** seems most suitable ({best_pct} confidence). "
            f"However, I recommend consulting with a legal expert for confirmation."
        )
    if violation_type in (ViolationType.MAX_COST, ViolationType.MAX_TOKENS):
        return (
            f"I need to wrap up our conversation due to resource limits. "
            f"Preliminary recommendation: **{best_name}**. "
            f"Please consult a professional for final advice."
        )
    if violation_type == ViolationType.TIMEOUT:
        return (
            f"Our session timed out. Based on current information: **{best_name}** "
            f"appears most suitable. Consider restarting for a more thorough analysis."
        )
    if violation_type == ViolationType.LOW_CONFIDENCE:
        options = ", ".join(
            f"{h.entity.value} ({h.confidence * 100:.0f}%)" for h in top if h.confidence > 0
        ) or best_name
        return (
            f"I'm not confident enough to make a definitive recommendation. "
            f"The top options are: {options}. "
            f"I recommend discussing your specific situation with a legal professional."
        )
    if violation_type == ViolationType.REASONER_UNAVAILABLE:
        return (
            f"I'm having trouble reaching my analysis service right now. "
            f"Tentatively, **{best_name}** looks like the best fit ({best_pct} confidence) "
            f"based on what you've told me. Please consult a human expert before deciding."
        )
    return (
        f"I need to stop here ({message}). Based on current information, "
        f"**{best_name}** appears most suitable. Please consult a legal professional."
    )


class MetricsRegistry:
    """Session metrics keyed by session id, with additive locked updates."""

    def __init__(self):
        self._lock = Lock()
        self._metrics: Dict[str, SessionMetrics] = {}

    def get(self, session_id: str) -> SessionMetrics:
        with self._lock:
            metrics = self._metrics.get(session_id)
            if metrics is None:
                metrics = initialize_metrics()
                self._metrics[session_id] = metrics
            return metrics

    def record(self, session_id: str, **deltas) -> SessionMetrics:
        with self._lock:
            metrics = self._metrics.get(session_id)
            if metrics is None:
                metrics = initialize_metrics()
                self._metrics[session_id] = metrics
            return update_metrics(metrics, **deltas)

    def snapshot(self, session_id: str) -> SessionMetrics:
        """Copy of the current counters."""
        with self._lock:
            m = self._metrics.get(session_id) or initialize_metrics()
            return SessionMetrics(
                iterations=m.iterations,
                tokens_used=m.tokens_used,
                cost_accumulated=m.cost_accumulated,
                tool_calls_made=m.tool_calls_made,
                llm_calls=m.llm_calls,
                start_time=m.start_time,
            )

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._metrics.pop(session_id, None)
