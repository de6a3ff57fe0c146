from advisor.llm.gateway import ReasonerGateway
from advisor.llm.monitoring import CostLedger, PerformanceMonitor, calculate_cost
from advisor.llm.reasoner import (
    AnthropicReasoner,
    OpenAIReasoner,
    ReasonerClient,
    ReasonerResponse,
    RuleBasedReasoner,
    create_reasoner,
)

__all__ = [
    "ReasonerGateway",
    "CostLedger",
    "PerformanceMonitor",
    "calculate_cost",
    "AnthropicReasoner",
    "OpenAIReasoner",
    "ReasonerClient",
    "ReasonerResponse",
    "RuleBasedReasoner",
    "create_reasoner",
]
