"""
End-to-end tests for the ReAct orchestrator with scripted reasoners.
"""
import pytest

from conftest import FailingReasoner, ScriptedReasoner, fast_retry, thought_json

from advisor.agent.audit import AuditLogger, EventKind, InMemoryAuditSink
from advisor.agent.guardrails import GuardrailConfig
from advisor.agent.knowledge import CRITICAL_FACTORS
from advisor.agent.models import EntityType, FactorType, NextAction
from advisor.agent.orchestrator import CLARIFY_PREFIX, GENERIC_ERROR, AgentOrchestrator
from advisor.agent.session_store import InMemorySessionRepository
from advisor.agent.tools import ToolExecutor
from advisor.agent.guardrails import MetricsRegistry
from advisor.agent import state as st
from advisor.llm import ReasonerClient, ReasonerGateway
from advisor.resilience import CircuitState


QUESTIONS = {cf.id: cf.question for cf in CRITICAL_FACTORS}


def make_orchestrator(client, sink=None, retries: int = 2, **kwargs) -> AgentOrchestrator:
    gateway = ReasonerGateway(client, retry=fast_retry(retries))
    audit = AuditLogger([sink or InMemoryAuditSink()])
    return AgentOrchestrator(
        gateway,
        sessions=InMemorySessionRepository(),
        audit=audit,
        **kwargs,
    )


class ExplodingReasoner(ReasonerClient):
    """Raises something outside the reasoner error taxonomy."""

    name = "exploding"
    model = "gpt-4o-mini"

    async def complete(self, messages, temperature=0.3, max_tokens=500):
        raise RuntimeError("unexpected bug")


# =============================================================================
# Happy path
# =============================================================================

class TestConversation:

    @pytest.mark.asyncio
    async def test_open_session_asks_first_question(self):
        orchestrator = make_orchestrator(ScriptedReasoner())
        result = await orchestrator.open_session("session-open")
        assert not result.terminated
        assert QUESTIONS["business_type"] in result.assistant_message
        assert result.updated_state.conversation_history[-1].role == "assistant"

    @pytest.mark.asyncio
    async def test_solo_nri_founder_gets_opc(self):
        sink = InMemoryAuditSink()
        orchestrator = make_orchestrator(ScriptedReasoner(), sink=sink)
        await orchestrator.open_session("session-opc")

        first = await orchestrator.process_turn("session-opc", "A for-profit tech startup")
        assert not first.terminated
        assert first.assistant_message == QUESTIONS["founders_count"]
        assert first.updated_state.iteration_count == 1

        second = await orchestrator.process_turn("session-opc", "Just me, and I'm an NRI")
        assert second.terminated
        assert second.violation is None
        rec = second.recommendation
        assert rec.entity == EntityType.OPC
        assert rec.confidence >= 0.75
        assert not rec.tentative
        assert not second.requires_human_review
        assert "**Recommended: OPC**" in second.assistant_message

        state = second.updated_state
        assert state.is_complete
        assert state.final_recommendation == rec
        hyps = {h.entity: h for h in state.current_hypotheses}
        assert hyps[EntityType.SOLE_PROPRIETORSHIP].confidence == 0.0
        assert hyps[EntityType.PARTNERSHIP].confidence == 0.0
        assert hyps[EntityType.TRUST].confidence == 0.0

        kinds = {e.event_kind for e in sink.get_session_logs("session-opc")}
        assert {EventKind.THOUGHT, EventKind.ACTION, EventKind.OBSERVATION,
                EventKind.REFLECTION, EventKind.RECOMMENDATION} <= kinds

    @pytest.mark.asyncio
    async def test_concluded_session_does_not_advance(self):
        orchestrator = make_orchestrator(ScriptedReasoner([thought_json("make_recommendation")]))
        await orchestrator.open_session("session-done")
        done = await orchestrator.process_turn("session-done", "A for-profit tech startup")
        assert done.terminated

        again = await orchestrator.process_turn("session-done", "what about an LLP?")
        assert again.terminated
        assert "consultation has ended" in again.assistant_message
        assert again.updated_state.iteration_count == done.updated_state.iteration_count
        assert again.recommendation == done.recommendation

    @pytest.mark.asyncio
    async def test_reasoner_can_recommend_early(self):
        orchestrator = make_orchestrator(ScriptedReasoner([thought_json("make_recommendation")]))
        await orchestrator.open_session("session-early")
        result = await orchestrator.process_turn("session-early", "A for-profit tech startup")
        assert result.terminated
        assert result.violation is None
        # Low confidence recommendations go to a human
        assert result.requires_human_review
        assert result.recommendation.caveats

    @pytest.mark.asyncio
    async def test_clarify_prefixes_question(self):
        orchestrator = make_orchestrator(ScriptedReasoner([thought_json("clarify_answer")]))
        await orchestrator.open_session("session-clarify")
        result = await orchestrator.process_turn("session-clarify", "bananas")
        assert result.assistant_message.startswith(CLARIFY_PREFIX)
        assert result.updated_state.next_action == NextAction.CLARIFY

    @pytest.mark.asyncio
    async def test_use_tool_and_reflect_continue(self):
        client = ScriptedReasoner([thought_json("use_tool"), thought_json("reflect")])
        orchestrator = make_orchestrator(client)
        await orchestrator.open_session("session-tools")
        first = await orchestrator.process_turn("session-tools", "A for-profit tech startup")
        assert first.assistant_message == QUESTIONS["founders_count"]
        second = await orchestrator.process_turn("session-tools", "Two of us")
        assert not second.terminated
        assert second.assistant_message in QUESTIONS.values()

    @pytest.mark.asyncio
    async def test_charity_survives_casual_business_wording(self):
        orchestrator = make_orchestrator(ScriptedReasoner())
        await orchestrator.open_session("session-charity")
        await orchestrator.process_turn("session-charity", "It's a charity")
        result = await orchestrator.process_turn(
            "session-charity", "Just me, running it like a small local business"
        )

        state = result.updated_state
        business_types = [f.value for f in state.gathered_factors
                          if f.type == FactorType.BUSINESS_TYPE]
        assert business_types == ["charity"]
        assert sum(h.confidence for h in state.current_hypotheses) == pytest.approx(1.0)
        top = max(state.current_hypotheses, key=lambda h: h.confidence)
        assert top.entity in {EntityType.SECTION_8, EntityType.TRUST, EntityType.SOCIETY}

    @pytest.mark.asyncio
    async def test_unknown_session_is_opened(self):
        orchestrator = make_orchestrator(ScriptedReasoner())
        result = await orchestrator.process_turn("brand-new-session", "We are a non-profit")
        assert result.updated_state.session_id == "brand-new-session"
        assert result.updated_state.iteration_count == 1


# =============================================================================
# Termination
# =============================================================================

class TestTermination:

    @pytest.mark.asyncio
    async def test_iteration_cap_concludes(self):
        orchestrator = make_orchestrator(
            ScriptedReasoner(),
            guardrails=GuardrailConfig(max_iterations=3),
            max_iterations=3,
        )
        await orchestrator.open_session("session-cap")

        counts = []
        result = None
        for _ in range(3):
            result = await orchestrator.process_turn("session-cap", "hmm, hard to say")
            counts.append(result.updated_state.iteration_count)

        assert counts == [1, 2, 3]
        assert result.terminated
        assert result.violation is None
        assert result.recommendation is not None
        assert result.requires_human_review

    @pytest.mark.asyncio
    async def test_cost_limit_terminates_safely(self):
        client = ScriptedReasoner(model="gpt-4-turbo", input_tokens=1000, output_tokens=500)
        orchestrator = make_orchestrator(
            client, guardrails=GuardrailConfig(max_cost_per_session=0.01),
        )
        await orchestrator.open_session("session-cost")
        result = await orchestrator.process_turn("session-cost", "A for-profit tech startup")
        assert result.terminated
        assert result.violation == "max_cost"
        assert result.recommendation.tentative
        assert "resource limits" in result.assistant_message

        metrics = orchestrator.get_session_metrics("session-cost")
        assert metrics["session"]["llm_calls"] == 1
        assert metrics["cost"]["request_count"] == 1


# =============================================================================
# Failure handling
# =============================================================================

class TestFailures:

    @pytest.mark.asyncio
    async def test_outage_gives_tentative_recommendation(self):
        client = FailingReasoner()
        orchestrator = make_orchestrator(client)
        await orchestrator.open_session("session-outage")
        result = await orchestrator.process_turn("session-outage", "A for-profit tech startup")

        assert result.terminated
        assert result.violation == "reasoner_unavailable"
        assert result.requires_human_review
        assert result.recommendation.tentative
        assert "Tentatively" in result.assistant_message
        assert result.updated_state.is_complete
        # Evidence from the turn was still scored
        assert result.updated_state.gathered_factors
        assert client.calls == 3

    @pytest.mark.asyncio
    async def test_open_circuit_skips_provider(self):
        client = FailingReasoner()
        orchestrator = make_orchestrator(client, retries=0)
        for i in range(3):
            sid = f"session-fail-{i}"
            await orchestrator.open_session(sid)
            await orchestrator.process_turn(sid, "hello")
        assert orchestrator.gateway.breaker.state == CircuitState.OPEN

        await orchestrator.open_session("session-after")
        result = await orchestrator.process_turn("session-after", "hello")
        assert result.violation == "reasoner_unavailable"
        assert client.calls == 3

    @pytest.mark.asyncio
    async def test_malformed_output_falls_back(self):
        client = ScriptedReasoner(["I'd ask about founders next."])
        orchestrator = make_orchestrator(client)
        await orchestrator.open_session("session-malformed")
        result = await orchestrator.process_turn("session-malformed", "A for-profit tech startup")

        assert not result.terminated
        assert result.assistant_message == QUESTIONS["founders_count"]
        assert orchestrator.gateway.breaker.state == CircuitState.CLOSED
        metrics = orchestrator.get_session_metrics("session-malformed")
        assert metrics["session"]["tokens_used"] == 120

    @pytest.mark.asyncio
    async def test_unexpected_error_keeps_state(self):
        orchestrator = make_orchestrator(ExplodingReasoner())
        opened = await orchestrator.open_session("session-bug")
        result = await orchestrator.process_turn("session-bug", "A for-profit tech startup")

        assert result.assistant_message == GENERIC_ERROR
        assert not result.terminated
        stored = await orchestrator.get_state("session-bug")
        assert stored == opened.updated_state


# =============================================================================
# Session lifecycle and tools
# =============================================================================

class TestLifecycle:

    @pytest.mark.asyncio
    async def test_end_session_clears_everything(self):
        orchestrator = make_orchestrator(ScriptedReasoner())
        await orchestrator.open_session("session-end")
        await orchestrator.process_turn("session-end", "A for-profit tech startup")
        await orchestrator.end_session("session-end")

        assert await orchestrator.sessions.get("session-end") is None
        metrics = orchestrator.get_session_metrics("session-end")
        assert metrics["session"]["llm_calls"] == 0
        assert metrics["cost"]["request_count"] == 0


class TestToolExecutor:

    def make(self, budget: int = 5) -> ToolExecutor:
        return ToolExecutor(
            GuardrailConfig(max_tool_calls_per_iteration=budget),
            MetricsRegistry(),
            AuditLogger([InMemoryAuditSink()]),
        )

    def test_update_scores_is_idempotent(self):
        tools = self.make()
        state = st.initialize_agent_state("tools-session")
        state = st.add_message(state, "assistant", QUESTIONS["founders_count"])
        state = st.add_message(state, "user", "just me")
        state = st.increment_iteration(state)

        first = tools.update_scores(state)
        assert len(first.data) == 1
        second = tools.update_scores(first.state)
        assert second.data == []
        assert second.state.gathered_factors == first.state.gathered_factors

    def test_budget_per_iteration(self):
        tools = self.make(budget=1)
        state = st.increment_iteration(st.initialize_agent_state("budget-session"))
        assert tools.analyze_gaps(state).success
        refused = tools.analyze_gaps(state)
        assert not refused.success
        assert refused.error == "tool budget exhausted"

        next_iteration = st.increment_iteration(state)
        assert tools.analyze_gaps(next_iteration).success
        assert tools.get_stats()["analyze_gaps"]["failures"] == 1

    def test_explain_reasoning(self):
        tools = self.make()
        state = st.initialize_agent_state("explain-session")
        state = st.add_message(state, "assistant", QUESTIONS["founders_count"])
        state = st.add_message(state, "user", "just me")
        state = tools.update_scores(state).state

        result = tools.explain_reasoning(state, EntityType.SOLE_PROPRIETORSHIP)
        assert result.data == ["You are the only founder"]
