"""
Tests for the reasoner gateway: timeout, retry, breaker and cost accounting.
"""
import pytest

from conftest import (
    FailingReasoner,
    ScriptedReasoner,
    SlowReasoner,
    fast_retry,
    thought_json,
)

from advisor.agent.models import Thought, ThoughtAction
from advisor.errors import (
    CircuitOpenError,
    MalformedReasonerOutput,
    ReasonerTimeout,
    ReasonerTransportError,
    ReasonerUnavailable,
)
from advisor.llm import (
    CostLedger,
    PerformanceMonitor,
    ReasonerGateway,
    RuleBasedReasoner,
    calculate_cost,
    create_reasoner,
)
from advisor.llm.gateway import extract_json
from advisor.resilience import BreakerRegistry, CircuitBreakerConfig, CircuitState


MESSAGES = [{"role": "user", "content": "next?"}]


def _transport_error():
    return ReasonerTransportError("503 from provider", provider="scripted")


def make_gateway(client, clock=None, retries: int = 2, threshold: int = 3, **kwargs):
    breakers = BreakerRegistry(
        CircuitBreakerConfig(failure_threshold=threshold, success_threshold=2, timeout_ms=1000),
        **({"clock": clock} if clock else {}),
    )
    return ReasonerGateway(client, breakers=breakers, retry=fast_retry(retries), **kwargs)


# =============================================================================
# JSON extraction
# =============================================================================

class TestExtractJson:

    def test_wrapped_in_prose(self):
        assert extract_json('Sure! {"action": "reflect"} Hope that helps') == {"action": "reflect"}

    def test_no_object(self):
        with pytest.raises(ValueError):
            extract_json("no json here")

    def test_invalid_json(self):
        with pytest.raises(ValueError):
            extract_json("{not: valid}")


# =============================================================================
# Successful calls
# =============================================================================

class TestGatewaySuccess:

    @pytest.mark.asyncio
    async def test_structured_output(self):
        gateway = make_gateway(ScriptedReasoner([thought_json("use_tool")]))
        thought, response = await gateway.complete_structured(MESSAGES, Thought, "s1")
        assert thought.action == ThoughtAction.USE_TOOL
        assert response.total_tokens == 120

    @pytest.mark.asyncio
    async def test_cost_recorded_per_session(self):
        client = ScriptedReasoner(model="gpt-4o-mini", input_tokens=1000, output_tokens=500)
        gateway = make_gateway(client)
        response = await gateway.complete(MESSAGES, "s1")
        await gateway.complete(MESSAGES, "s1")

        expected = calculate_cost("gpt-4o-mini", 1000, 500)
        assert response.cost == pytest.approx(expected)
        metrics = gateway.ledger.get("s1")
        assert metrics.request_count == 2
        assert metrics.total_tokens == 3000
        assert metrics.total_cost == pytest.approx(2 * expected)
        assert gateway.ledger.get("other").request_count == 0

    @pytest.mark.asyncio
    async def test_monitor_records_latency(self):
        gateway = make_gateway(ScriptedReasoner())
        await gateway.complete(MESSAGES, "s1")
        metrics = gateway.monitor.get_metrics()
        assert metrics["total_requests"] == 1
        assert metrics["success_rate"] == 1.0


# =============================================================================
# Failures
# =============================================================================

class TestGatewayFailures:

    @pytest.mark.asyncio
    async def test_hard_timeout(self):
        client = SlowReasoner(delay=5.0)
        gateway = make_gateway(client, retries=0, hard_timeout=0.01)
        with pytest.raises(ReasonerUnavailable) as exc_info:
            await gateway.complete(MESSAGES, "s1")
        assert isinstance(exc_info.value.cause, ReasonerTimeout)
        assert gateway.monitor.get_metrics()["failed_requests"] == 1

    @pytest.mark.asyncio
    async def test_retries_then_unavailable(self):
        client = FailingReasoner()
        gateway = make_gateway(client, retries=2)
        with pytest.raises(ReasonerUnavailable):
            await gateway.complete(MESSAGES, "s1")
        assert client.calls == 3
        # One breaker failure per exhausted call, not per attempt
        assert gateway.breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_breaker_opens_and_short_circuits(self, clock):
        client = FailingReasoner()
        gateway = make_gateway(client, clock=clock, retries=0, threshold=3)
        for _ in range(3):
            with pytest.raises(ReasonerUnavailable):
                await gateway.complete(MESSAGES, "s1")
        assert gateway.breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitOpenError):
            await gateway.complete(MESSAGES, "s1")
        assert client.calls == 3

    @pytest.mark.asyncio
    async def test_recovers_after_cooldown(self, clock):
        client = ScriptedReasoner([
            _transport_error(),
            thought_json("ask_question"),
        ])
        gateway = make_gateway(client, clock=clock, retries=0, threshold=1)
        with pytest.raises(ReasonerUnavailable):
            await gateway.complete(MESSAGES, "s1")
        assert gateway.breaker.state == CircuitState.OPEN

        clock.advance(1.1)
        await gateway.complete(MESSAGES, "s1")
        await gateway.complete(MESSAGES, "s1")
        assert gateway.breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_malformed_not_retried_or_counted(self):
        client = ScriptedReasoner(["I think we should ask another question."])
        gateway = make_gateway(client, retries=2, threshold=1)
        with pytest.raises(MalformedReasonerOutput) as exc_info:
            await gateway.complete_structured(MESSAGES, Thought, "s1")

        assert client.calls == 1
        assert gateway.breaker.state == CircuitState.CLOSED
        assert exc_info.value.raw_text.startswith("I think")
        # Tokens were still spent
        assert exc_info.value.response.total_tokens == 120
        assert gateway.ledger.get("s1").request_count == 1

    @pytest.mark.asyncio
    async def test_invalid_action_is_malformed(self):
        client = ScriptedReasoner([thought_json("book_a_meeting")])
        gateway = make_gateway(client)
        with pytest.raises(MalformedReasonerOutput):
            await gateway.complete_structured(MESSAGES, Thought, "s1")


# =============================================================================
# Clients
# =============================================================================

class TestClients:

    def test_missing_key_falls_back_to_rule_based(self):
        assert isinstance(create_reasoner("groq", api_key=""), RuleBasedReasoner)

    def test_groq_uses_openai_compatible_client(self):
        client = create_reasoner("groq", api_key="test-key")
        assert client.name == "groq"
        assert client.model == "llama-3.3-70b-versatile"

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_reasoner("mystery", api_key="k")

    @pytest.mark.asyncio
    async def test_rule_based_reply_is_valid_thought(self):
        response = await RuleBasedReasoner().complete(MESSAGES)
        thought = Thought.model_validate(extract_json(response.text))
        assert thought.action == ThoughtAction.ASK_QUESTION
        assert response.total_tokens == 0


class TestMonitoring:

    def test_unknown_model_uses_default_pricing(self):
        assert calculate_cost("some-new-model", 1_000_000, 0) == pytest.approx(0.5)

    def test_ledger_totals(self):
        ledger = CostLedger()
        ledger.record("a", "gpt-4o-mini", 100, 10)
        ledger.record("b", "gpt-4o-mini", 100, 10)
        totals = ledger.totals()
        assert totals.request_count == 2
        assert totals.model_usage == {"gpt-4o-mini": 2}

    def test_performance_window(self):
        monitor = PerformanceMonitor(window=2)
        monitor.record(10.0, True)
        monitor.record(20.0, False)
        monitor.record(30.0, True)
        metrics = monitor.get_metrics()
        assert metrics["total_requests"] == 3
        assert metrics["avg_response_ms"] == pytest.approx(25.0)
        assert metrics["error_rate"] == pytest.approx(1 / 3)
