"""
ReAct core: think, act, observe, reflect.

think()   asks the reasoner what to do next and validates the answer.
act()     maps the chosen action onto an internal operation.
observe() runs the operation against the state.
reflect() decides whether the conversation should continue.

The orchestrator sequences these and owns termination and persistence.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from advisor.agent.audit import AuditLogger
from advisor.agent.gaps import READY_TO_RECOMMEND
from advisor.agent.guardrails import GuardrailConfig, requires_human_approval
from advisor.agent.models import (
    AgentState,
    Alternative,
    FinalRecommendation,
    Thought,
    ThoughtAction,
)
from advisor.agent.scoring import top_hypotheses
from advisor.agent.tools import ToolExecutor
from advisor.config.constants import CONSTANTS
from advisor.errors import MalformedReasonerOutput
from advisor.llm.gateway import ReasonerGateway
from advisor.llm.reasoner import ReasonerResponse

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    GENERATE_QUESTION = "generate_question"
    UPDATE_SCORES = "update_scores"
    RECOMMEND = "recommend"
    ANALYZE_GAP = "analyze_gap"


ACTION_OPERATIONS: Dict[ThoughtAction, Operation] = {
    ThoughtAction.ASK_QUESTION: Operation.GENERATE_QUESTION,
    ThoughtAction.CLARIFY_ANSWER: Operation.GENERATE_QUESTION,
    ThoughtAction.USE_TOOL: Operation.UPDATE_SCORES,
    ThoughtAction.MAKE_RECOMMENDATION: Operation.RECOMMEND,
    ThoughtAction.REFLECT: Operation.ANALYZE_GAP,
}

_unmapped = set(ThoughtAction) - set(ACTION_OPERATIONS)
if _unmapped:
    raise RuntimeError(f"Thought actions without an operation: {sorted(_unmapped)}")


SYSTEM_PROMPT = (
    "You are the reasoning core of an advisor that helps founders in India choose "
    "a legal entity (Private Limited Company, LLP, OPC, Partnership Firm, Sole "
    "Proprietorship, Public Limited Company, Section 8 Company, Trust, Society). "
    "You decide the next step of the conversation. Respond only with valid JSON."
)


@dataclass
class ThinkOutcome:
    thought: Thought
    response: Optional[ReasonerResponse] = None
    fallback: bool = False


@dataclass
class Observation:
    operation: Operation
    state: AgentState
    question: Optional[str] = None
    recommendation: Optional[FinalRecommendation] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Reflection:
    should_continue: bool
    narrative: str


class ReActCore:

    def __init__(
        self,
        gateway: ReasonerGateway,
        tools: ToolExecutor,
        audit: AuditLogger,
        guardrails: GuardrailConfig,
        confidence_threshold: float = CONSTANTS.agent.CONFIDENCE_THRESHOLD,
        max_iterations: int = CONSTANTS.agent.MAX_ITERATIONS,
        history_window: int = CONSTANTS.agent.HISTORY_WINDOW,
        temperature: float = CONSTANTS.agent.THINK_TEMPERATURE,
    ):
        self.gateway = gateway
        self.tools = tools
        self.audit = audit
        self.guardrails = guardrails
        self.confidence_threshold = confidence_threshold
        self.max_iterations = max_iterations
        self.history_window = history_window
        self.temperature = temperature

    # =========================================================================
    # Evidence
    # =========================================================================

    def ingest(self, state: AgentState) -> AgentState:
        """Score any user messages not yet seen by the extractor."""
        result = self.tools.update_scores(state)
        if result.success and result.data:
            self.audit.observation(state.session_id, {
                "operation": Operation.UPDATE_SCORES.value,
                "new_factors": result.data,
                "top": [
                    f"{h.entity.value}:{h.confidence:.2f}"
                    for h in top_hypotheses(result.state.current_hypotheses, 3)
                ],
            })
        return result.state

    # =========================================================================
    # Think
    # =========================================================================

    def build_think_messages(self, state: AgentState) -> List[Dict[str, str]]:
        top = top_hypotheses(state.current_hypotheses, 3)
        hypotheses_text = "\n".join(
            f"  {i}. {h.entity.value}: {h.confidence * 100:.0f}% confidence"
            for i, h in enumerate(top, 1)
        )
        factors_text = ", ".join(f.describe() for f in state.gathered_factors) or "none"
        open_questions = sorted({
            gap for h in top for gap in h.missing_information
        })
        recent = state.conversation_history[-self.history_window:]
        history_text = "\n".join(f"{m.role}: {m.content}" for m in recent)

        prompt = f"""Current situation:
- Top hypotheses:
{hypotheses_text}
- Factors gathered ({len(state.gathered_factors)}): {factors_text}
- Open questions: {", ".join(open_questions) or "none"}
- Iteration: {state.iteration_count}/{self.max_iterations}

Recent conversation:
{history_text}

Decide the next action:
- ask_question: more information is needed
- clarify_answer: the user's last answer was unclear or off-topic
- use_tool: re-score the evidence gathered so far
- make_recommendation: top confidence is at least {self.confidence_threshold:.0%} or enough is known
- reflect: review which critical factors are still missing

Respond with JSON only:
{{"reasoning": "one or two sentences", "action": "<one of the actions above>", "confidence": 0.0-1.0, "priority": 0-10}}
"""
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

    def fallback_thought(self, state: AgentState) -> Thought:
        """Deterministic choice when the reasoner's output cannot be used."""
        if state.iteration_count >= self.max_iterations:
            return Thought(
                reasoning="Fallback: iteration cap reached",
                action=ThoughtAction.MAKE_RECOMMENDATION,
                confidence=0.5,
                priority=10,
            )
        return Thought(
            reasoning="Fallback: continue gathering information",
            action=ThoughtAction.ASK_QUESTION,
            confidence=0.5,
            priority=5,
        )

    async def think(self, state: AgentState) -> ThinkOutcome:
        """
        Ask the reasoner for the next action.

        Malformed output falls back to a deterministic thought. Transport
        failures and an open circuit propagate to the orchestrator.
        """
        messages = self.build_think_messages(state)
        try:
            thought, response = await self.gateway.complete_structured(
                messages, Thought, state.session_id, temperature=self.temperature
            )
            outcome = ThinkOutcome(thought, response)
        except MalformedReasonerOutput as e:
            logger.warning(f"[THINK] [{state.session_id}] unusable reasoner output: {e}")
            self.audit.error(state.session_id, {
                "stage": "think", "error": str(e), "raw": e.raw_text[:200],
            })
            outcome = ThinkOutcome(self.fallback_thought(state), e.response, fallback=True)

        response = outcome.response
        self.audit.thought(
            state.session_id,
            {
                "reasoning": outcome.thought.reasoning,
                "action": outcome.thought.action.value,
                "confidence": outcome.thought.confidence,
                "fallback": outcome.fallback,
            },
            cost=response.cost if response else None,
            latency_ms=round(response.latency_ms, 1) if response else None,
            model=response.model if response else None,
        )
        return outcome

    # =========================================================================
    # Act / Observe
    # =========================================================================

    def act(self, thought: Thought) -> Operation:
        return ACTION_OPERATIONS[thought.action]

    def observe(self, operation: Operation, state: AgentState) -> Observation:
        if operation == Operation.RECOMMEND:
            return Observation(operation, state,
                               recommendation=self.build_recommendation(state))

        data: Dict[str, Any] = {}
        if operation == Operation.UPDATE_SCORES:
            result = self.tools.update_scores(state)
            state = result.state
            data["new_factors"] = result.data or []
            question = self.tools.gaps.select_question(state)
        elif operation == Operation.ANALYZE_GAP:
            result = self.tools.analyze_gaps(state)
            if result.success:
                data.update(result.data.to_dict())
                question = result.data.next_question
            else:
                question = self.tools.gaps.select_question(state)
        else:
            question = self.tools.gaps.select_question(state)

        self.audit.observation(state.session_id, {
            "operation": operation.value,
            "question": question,
            **data,
        })
        if question == READY_TO_RECOMMEND:
            return Observation(operation, state,
                               recommendation=self.build_recommendation(state), data=data)
        return Observation(operation, state, question=question, data=data)

    # =========================================================================
    # Reflect
    # =========================================================================

    def reflect(self, state: AgentState) -> Reflection:
        top = top_hypotheses(state.current_hypotheses, 1)
        confidence = top[0].confidence if top else 0.0
        leader = top[0].entity.value if top else "none"

        if confidence >= self.confidence_threshold:
            reflection = Reflection(
                False,
                f"{leader} reached {confidence:.0%}, above the "
                f"{self.confidence_threshold:.0%} threshold",
            )
        elif state.iteration_count >= self.max_iterations:
            reflection = Reflection(
                False,
                f"Iteration cap {self.max_iterations} reached with {leader} "
                f"at {confidence:.0%}",
            )
        else:
            reflection = Reflection(
                True,
                f"{leader} leads at {confidence:.0%}; "
                f"{len(state.gathered_factors)} factors gathered, keep probing",
            )
        self.audit.reflection(state.session_id, {
            "should_continue": reflection.should_continue,
            "narrative": reflection.narrative,
        })
        return reflection

    # =========================================================================
    # Recommendation
    # =========================================================================

    def build_recommendation(self, state: AgentState, tentative: bool = False) -> FinalRecommendation:
        top = top_hypotheses(state.current_hypotheses, 3)
        leader = top[0]

        explained = self.tools.explain_reasoning(state, leader.entity)
        reasoning = list(explained.data or []) if explained.success else []
        if not reasoning:
            reasoning = [
                f"You indicated {item}" for item in leader.supporting_factors
                if not item.startswith("constraint:")
            ][:3]

        alternatives = tuple(
            Alternative(h.entity, h.confidence, f"Score: {h.confidence * 100:.0f}%")
            for h in top[1:3] if h.confidence > 0
        )

        caveats: List[str] = []
        if leader.confidence <= 0:
            caveats.append("None of the standard structures fits cleanly on the information given")
        elif leader.confidence < CONSTANTS.agent.LOW_CONFIDENCE_CAVEAT:
            caveats.append("Low confidence - consider consulting an expert")

        validation = self.tools.validate_recommendation(state)
        needs_review = requires_human_approval(state, self.guardrails)
        if validation.success:
            needs_review = needs_review or validation.data["requires_human_approval"]
        if tentative:
            caveats.append("This is a preliminary recommendation based on incomplete analysis")
        if needs_review or tentative:
            caveats.append(
                "Please have a legal professional review this before registering"
            )

        return FinalRecommendation(
            entity=leader.entity,
            confidence=leader.confidence,
            reasoning=tuple(reasoning),
            alternatives=alternatives,
            caveats=tuple(caveats),
            requires_human_review=needs_review or tentative,
            tentative=tentative,
        )


def format_recommendation(rec: FinalRecommendation) -> str:
    """Markdown message presenting a recommendation to the user."""
    lines = [f"**Recommended: {rec.entity.value}** ({rec.confidence * 100:.0f}% confidence)"]
    if rec.reasoning:
        lines.append("")
        lines.append("**Why this fits you:**")
        lines.extend(f"- {reason}" for reason in rec.reasoning)
    if rec.alternatives:
        lines.append("")
        lines.append("**Close alternatives:**")
        lines.extend(
            f"- {alt.entity.value} ({alt.confidence * 100:.0f}%)" for alt in rec.alternatives
        )
    if rec.caveats:
        lines.append("")
        lines.extend(f"**Note:** {caveat}" for caveat in rec.caveats)
    return "\n".join(lines)
