"""
Agent tools

Deterministic operations the orchestrator runs on the agent's behalf:

- update_scores:           extract evidence from unscored messages, update
                           beliefs, apply hard constraints
- analyze_gaps:            report missing critical factors and next question
- validate_recommendation: check whether the leading hypothesis is safe to
                           present without a human in the loop
- explain_reasoning:       rank the factors that pushed an entity up

ToolExecutor times each call, writes it to the audit log, counts it in the
session metrics and refuses calls beyond the per-iteration budget.
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Tuple

from advisor.agent import state as st
from advisor.agent.audit import AuditLogger
from advisor.agent.extractor import EvidenceExtractor
from advisor.agent.gaps import GapAnalyzer, GapReport
from advisor.agent.guardrails import GuardrailConfig, MetricsRegistry, requires_human_approval
from advisor.agent.knowledge import get_entity_rule
from advisor.agent.models import AgentState, BusinessFactor, EntityType
from advisor.agent.scoring import ConfidenceEngine, top_hypotheses

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    UPDATE_SCORES = "update_scores"
    ANALYZE_GAPS = "analyze_gaps"
    VALIDATE_RECOMMENDATION = "validate_recommendation"
    EXPLAIN_REASONING = "explain_reasoning"


@dataclass
class ToolResult:
    tool: ToolName
    success: bool
    data: Any = None
    state: Optional[AgentState] = None
    error: Optional[str] = None
    duration_ms: float = 0.0


# =============================================================================
# Tool implementations
# =============================================================================

def update_scores(
    state: AgentState,
    extractor: EvidenceExtractor,
    engine: ConfidenceEngine,
    gaps: GapAnalyzer,
) -> Tuple[AgentState, List[BusinessFactor]]:
    """
    Score every user message since the evidence cursor against the assistant
    question that preceded it. Running it twice in a row is a no-op.
    """
    history = state.conversation_history
    if state.evidence_cursor >= len(history):
        return state, []

    new_factors: List[BusinessFactor] = []
    for index in range(state.evidence_cursor, len(history)):
        message = history[index]
        if message.role != "user":
            continue
        question = st.last_assistant_message(state, before=index)
        new_factors.extend(extractor.extract(message.content, question))

    hypotheses = engine.update_all(state.current_hypotheses, new_factors)
    state = st.add_factors(state, new_factors)
    hypotheses = engine.apply_constraints(hypotheses, state.gathered_factors)
    hypotheses = gaps.annotate_missing(hypotheses, state)
    state = st.update_hypotheses(state, hypotheses)
    state = st.advance_evidence_cursor(state)
    return state, new_factors


def validate_recommendation(state: AgentState, config: GuardrailConfig) -> Dict[str, Any]:
    top = top_hypotheses(state.current_hypotheses, 1)
    issues: List[str] = []
    if not top or top[0].confidence <= 0:
        issues.append("No viable entity remains")
    else:
        leader = top[0]
        if leader.confidence < config.require_human_approval_threshold:
            issues.append(
                f"Confidence {leader.confidence:.0%} is below "
                f"{config.require_human_approval_threshold:.0%}"
            )
        if leader.contradicting_factors:
            issues.append(
                "Conflicting evidence: " + ", ".join(leader.contradicting_factors)
            )
        if leader.missing_information:
            issues.append(
                "Unanswered: " + ", ".join(leader.missing_information)
            )
    return {
        "valid": not issues,
        "requires_human_approval": requires_human_approval(state, config),
        "issues": issues,
    }


def explain_reasoning(state: AgentState, entity: EntityType, limit: int = 3) -> List[str]:
    """Factors that most favoured the entity, by impact times rule weight."""
    rule = get_entity_rule(entity)
    scored = []
    for factor in state.gathered_factors:
        if factor.type in rule.required_factors:
            weight = 1.0
        elif factor.type in rule.prohibited_factors:
            weight = -1.0
        else:
            weight = rule.scoring_weights.get(factor.type, 0.0)
        contribution = factor.impact * weight * factor.confidence
        if contribution > 0:
            scored.append((contribution, factor))

    scored.sort(key=lambda pair: pair[0], reverse=True)
    explanations = []
    for _, factor in scored[:limit]:
        text = _FACTOR_EXPLANATIONS.get((factor.type.value, factor.value))
        explanations.append(text or f"You indicated {factor.describe()}")
    return explanations


_FACTOR_EXPLANATIONS = {
    ("founders", "solo"): "You are the only founder",
    ("founders", "multiple"): "You are starting with co-founders or partners",
    ("nri", "yes"): "NRI or foreign founders are involved",
    ("nri", "no"): "All founders are resident Indians",
    ("investment", "vc"): "You plan to raise money from investors",
    ("investment", "foreign"): "You expect foreign investment",
    ("investment", "ipo"): "You plan to list publicly",
    ("investment", "bootstrap"): "You are funding the business yourself",
    ("risk", "needs_protection"): "Protecting personal assets matters to you",
    ("risk", "not_needed"): "Limited liability is not a priority",
    ("directors", "yes"): "You want a formal board and shareholders",
    ("directors", "no"): "You prefer an informal management structure",
    ("expansion", "yes"): "You plan franchises or multiple branches",
    ("expansion", "no"): "You plan to stay at a single location",
    ("revenue", "large"): "You expect to operate at large scale",
    ("revenue", "small"): "You expect a small, simple operation",
    ("business_type", "charity"): "Your venture is non-profit",
    ("business_type", "for_profit"): "Your venture is for-profit",
    ("professional_services", "yes"): "You are offering professional services",
}


# =============================================================================
# Executor
# =============================================================================

class ToolExecutor:

    def __init__(
        self,
        config: GuardrailConfig,
        metrics: MetricsRegistry,
        audit: AuditLogger,
        extractor: Optional[EvidenceExtractor] = None,
        engine: Optional[ConfidenceEngine] = None,
        gaps: Optional[GapAnalyzer] = None,
    ):
        self.config = config
        self.metrics = metrics
        self.audit = audit
        self.extractor = extractor or EvidenceExtractor()
        self.engine = engine or ConfidenceEngine()
        self.gaps = gaps or GapAnalyzer(engine=self.engine)
        self._lock = Lock()
        # session_id -> (iteration, calls in that iteration)
        self._budget: Dict[str, Tuple[int, int]] = {}
        self._stats: Dict[ToolName, Dict[str, float]] = {}

    def _consume_budget(self, state: AgentState) -> bool:
        with self._lock:
            iteration, used = self._budget.get(state.session_id, (state.iteration_count, 0))
            if iteration != state.iteration_count:
                iteration, used = state.iteration_count, 0
            if used >= self.config.max_tool_calls_per_iteration:
                return False
            self._budget[state.session_id] = (iteration, used + 1)
            return True

    def _record_stats(self, tool: ToolName, success: bool, duration_ms: float) -> None:
        with self._lock:
            s = self._stats.setdefault(
                tool, {"calls": 0, "failures": 0, "total_ms": 0.0}
            )
            s["calls"] += 1
            s["total_ms"] += duration_ms
            if not success:
                s["failures"] += 1

    def _run(self, tool: ToolName, state: AgentState,
             fn: Callable[[], Tuple[Any, Optional[AgentState]]]) -> ToolResult:
        if not self._consume_budget(state):
            logger.warning(
                f"[{state.session_id}] {tool.value} refused: "
                f"{self.config.max_tool_calls_per_iteration} tool calls already made "
                f"in iteration {state.iteration_count}"
            )
            self._record_stats(tool, False, 0.0)
            self.audit.error(state.session_id, {
                "tool": tool.value, "error": "tool budget exhausted",
            })
            return ToolResult(tool, success=False, state=state,
                              error="tool budget exhausted")

        start = time.perf_counter()
        data, new_state = fn()
        duration_ms = (time.perf_counter() - start) * 1000
        self.metrics.record(state.session_id, tool_calls=1)
        self._record_stats(tool, True, duration_ms)
        self.audit.action(
            state.session_id,
            {"tool": tool.value, "iteration": state.iteration_count},
            latency_ms=round(duration_ms, 3),
        )
        return ToolResult(tool, success=True, data=data,
                          state=new_state or state, duration_ms=duration_ms)

    def update_scores(self, state: AgentState) -> ToolResult:
        def run():
            new_state, factors = update_scores(state, self.extractor, self.engine, self.gaps)
            return [f.to_dict() for f in factors], new_state
        return self._run(ToolName.UPDATE_SCORES, state, run)

    def analyze_gaps(self, state: AgentState) -> ToolResult:
        def run():
            report: GapReport = self.gaps.analyze(state)
            return report, None
        return self._run(ToolName.ANALYZE_GAPS, state, run)

    def validate_recommendation(self, state: AgentState) -> ToolResult:
        return self._run(ToolName.VALIDATE_RECOMMENDATION, state,
                         lambda: (validate_recommendation(state, self.config), None))

    def explain_reasoning(self, state: AgentState, entity: EntityType) -> ToolResult:
        return self._run(ToolName.EXPLAIN_REASONING, state,
                         lambda: (explain_reasoning(state, entity), None))

    def reset_session(self, session_id: str) -> None:
        with self._lock:
            self._budget.pop(session_id, None)

    def get_stats(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            return {
                tool.value: {
                    "calls": s["calls"],
                    "failures": s["failures"],
                    "avg_ms": s["total_ms"] / s["calls"] if s["calls"] else 0.0,
                }
                for tool, s in self._stats.items()
            }
