"""
ReAct Orchestrator

Runs one user turn through the loop:

    guardrails -> ingest evidence -> think -> guardrails -> act -> observe
    -> reflect -> (question | recommendation)

process_turn() never raises for reasoner outages or guardrail violations.
Those end the session with a tentative recommendation and a suggestion to
consult a professional. Any other exception is logged and the user gets a
generic apology with the session left as it was before the turn.
"""
import logging
from typing import Any, Dict, Optional

from advisor.agent import state as st
from advisor.agent.audit import AuditLogger
from advisor.agent.core import ReActCore, format_recommendation
from advisor.agent.gaps import READY_TO_RECOMMEND, GapAnalyzer
from advisor.agent.guardrails import (
    GuardrailConfig,
    MetricsRegistry,
    ViolationType,
    check_guardrails,
    create_safe_termination,
)
from advisor.agent.models import (
    AgentState,
    FinalRecommendation,
    NextAction,
    ThoughtAction,
    TurnResult,
)
from advisor.agent.session_store import InMemorySessionRepository, SessionRepository
from advisor.agent.tools import ToolExecutor
from advisor.config.constants import CONSTANTS
from advisor.errors import CircuitOpenError, ReasonerUnavailable
from advisor.llm.gateway import ReasonerGateway

logger = logging.getLogger(__name__)

GREETING = (
    "Hi! I'll help you pick the right legal structure for your venture. "
    "I'll ask a few questions about your plans."
)

GENERIC_ERROR = (
    "Sorry, something went wrong while processing your message. "
    "Please try again."
)

CLARIFY_PREFIX = "I want to make sure I understood you correctly. "


class AgentOrchestrator:

    def __init__(
        self,
        gateway: ReasonerGateway,
        sessions: Optional[SessionRepository] = None,
        guardrails: Optional[GuardrailConfig] = None,
        metrics: Optional[MetricsRegistry] = None,
        audit: Optional[AuditLogger] = None,
        gaps: Optional[GapAnalyzer] = None,
        confidence_threshold: float = CONSTANTS.agent.CONFIDENCE_THRESHOLD,
        max_iterations: int = CONSTANTS.agent.MAX_ITERATIONS,
        temperature: float = CONSTANTS.agent.THINK_TEMPERATURE,
    ):
        self.gateway = gateway
        self.sessions = sessions or InMemorySessionRepository()
        self.guardrails = guardrails or GuardrailConfig()
        self.metrics = metrics or MetricsRegistry()
        self.audit = audit or AuditLogger()
        self.confidence_threshold = confidence_threshold
        self.max_iterations = max_iterations

        self.tools = ToolExecutor(self.guardrails, self.metrics, self.audit, gaps=gaps)
        self.core = ReActCore(
            gateway,
            self.tools,
            self.audit,
            self.guardrails,
            confidence_threshold=confidence_threshold,
            max_iterations=max_iterations,
            temperature=temperature,
        )

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    async def open_session(self, session_id: Optional[str] = None) -> TurnResult:
        """Start a session and ask the first question."""
        state = await self.sessions.open(session_id)
        self.metrics.get(state.session_id)
        question = self.tools.gaps.select_question(state)
        message = f"{GREETING} {question}"
        state = st.add_message(state, "assistant", message)
        await self.sessions.put(state)
        return TurnResult(assistant_message=message, updated_state=state)

    async def end_session(self, session_id: str) -> None:
        await self.sessions.evict(session_id)
        self.metrics.clear(session_id)
        self.gateway.ledger.clear(session_id)
        self.tools.reset_session(session_id)
        logger.info(f"Ended session {session_id}")

    async def get_state(self, session_id: str) -> AgentState:
        return await self.sessions.require(session_id)

    def get_session_metrics(self, session_id: str) -> Dict[str, Any]:
        return {
            "session": self.metrics.snapshot(session_id).to_dict(),
            "cost": self.gateway.ledger.get(session_id).to_dict(),
        }

    # =========================================================================
    # Turn processing
    # =========================================================================

    async def process_turn(self, session_id: str, utterance: str) -> TurnResult:
        state = await self.sessions.get(session_id)
        if state is None:
            state = await self.sessions.open(session_id)

        if state.is_complete:
            return self._concluded(state)

        try:
            return await self._run_turn(state, utterance)
        except Exception as e:
            logger.exception(f"[{session_id}] turn failed: {e}")
            self.audit.error(session_id, {"stage": "process_turn", "error": str(e)})
            return TurnResult(assistant_message=GENERIC_ERROR, updated_state=state)

    async def _run_turn(self, state: AgentState, utterance: str) -> TurnResult:
        sid = state.session_id
        state = st.add_message(state, "user", utterance)

        verdict = check_guardrails(state, self.metrics.snapshot(sid), self.guardrails)
        if verdict.violated:
            return await self._terminate(state, verdict.type, verdict.message)

        state = st.increment_iteration(state)
        self.metrics.record(sid, iterations=1)
        logger.debug(f"[{sid}] iteration {state.iteration_count}/{self.max_iterations}")

        state = self.core.ingest(state)

        try:
            outcome = await self.core.think(state)
        except (CircuitOpenError, ReasonerUnavailable) as e:
            logger.warning(f"[THINK] [{sid}] reasoner unavailable: {e}")
            self.audit.error(sid, {"stage": "think", "error": str(e)})
            return await self._terminate(state, ViolationType.REASONER_UNAVAILABLE, str(e))

        if outcome.response is not None:
            self.metrics.record(
                sid,
                tokens=outcome.response.total_tokens,
                cost=outcome.response.cost,
                llm_calls=1,
            )

        # The loop's own cap concludes with a full recommendation below
        verdict = check_guardrails(state, self.metrics.snapshot(sid), self.guardrails)
        if verdict.violated and verdict.type != ViolationType.MAX_ITERATIONS:
            return await self._terminate(state, verdict.type, verdict.message)

        thought = outcome.thought
        if self._should_conclude(state, thought.action):
            return await self._finalize(state)

        operation = self.core.act(thought)
        self.audit.action(sid, {
            "action": thought.action.value, "operation": operation.value,
        })
        observation = self.core.observe(operation, state)
        state = observation.state

        if observation.recommendation is not None:
            return await self._finalize(state, observation.recommendation)

        reflection = self.core.reflect(state)
        if not reflection.should_continue:
            return await self._finalize(state)

        question = observation.question or self.tools.gaps.select_question(state)
        if question == READY_TO_RECOMMEND:
            return await self._finalize(state)

        next_action = NextAction.QUESTION
        if thought.action == ThoughtAction.CLARIFY_ANSWER:
            question = CLARIFY_PREFIX + question
            next_action = NextAction.CLARIFY

        state = st.add_message(state, "assistant", question)
        state = st.set_next_action(state, next_action)
        await self.sessions.put(state)
        return TurnResult(assistant_message=question, updated_state=state)

    def _should_conclude(self, state: AgentState, action: ThoughtAction) -> bool:
        if action == ThoughtAction.MAKE_RECOMMENDATION:
            return True
        return st.should_terminate(state, self.confidence_threshold, self.max_iterations)

    async def _finalize(
        self,
        state: AgentState,
        recommendation: Optional[FinalRecommendation] = None,
    ) -> TurnResult:
        rec = recommendation or self.core.build_recommendation(state)
        message = format_recommendation(rec)
        state = st.add_message(state, "assistant", message)
        state = st.conclude(state, rec)
        await self.sessions.put(state)

        self.audit.recommendation(state.session_id, rec.to_dict())
        logger.info(
            f"[RECOMMEND] [{state.session_id}] {rec.entity.value} "
            f"({rec.confidence:.0%}) after {state.iteration_count} iterations"
        )
        return TurnResult(
            assistant_message=message,
            updated_state=state,
            terminated=True,
            recommendation=rec,
            requires_human_review=rec.requires_human_review,
        )

    async def _terminate(
        self,
        state: AgentState,
        violation: ViolationType,
        detail: str,
    ) -> TurnResult:
        """Safe termination with a tentative recommendation."""
        rec = self.core.build_recommendation(state, tentative=True)
        message = create_safe_termination(violation, detail, state)
        state = st.add_message(state, "assistant", message)
        state = st.conclude(state, rec)
        await self.sessions.put(state)

        self.audit.error(state.session_id, {
            "stage": "guardrail", "violation": violation.value, "detail": detail,
        })
        logger.warning(f"[GUARD] [{state.session_id}] {violation.value}: {detail}")
        return TurnResult(
            assistant_message=message,
            updated_state=state,
            terminated=True,
            recommendation=rec,
            requires_human_review=True,
            violation=violation.value,
        )

    def _concluded(self, state: AgentState) -> TurnResult:
        rec = state.final_recommendation
        if rec is None:
            message = (
                "This consultation has ended. Please start a new session "
                "to continue."
            )
        else:
            message = (
                f"This consultation has ended. My recommendation was "
                f"**{rec.entity.value}** ({rec.confidence * 100:.0f}% confidence). "
                f"Start a new session if your plans have changed."
            )
        return TurnResult(
            assistant_message=message,
            updated_state=state,
            terminated=True,
            recommendation=rec,
            requires_human_review=bool(rec and rec.requires_human_review),
        )
