"""
Agent decision core: knowledge base, evidence scoring, gap analysis,
guardrails and the ReAct orchestrator.
"""
from advisor.agent.models import (
    EntityType,
    FactorType,
    BusinessFactor,
    EntityHypothesis,
    Message,
    AgentState,
    NextAction,
    ThoughtAction,
    Thought,
    FinalRecommendation,
    TurnResult,
)

__all__ = [
    "EntityType",
    "FactorType",
    "BusinessFactor",
    "EntityHypothesis",
    "Message",
    "AgentState",
    "NextAction",
    "ThoughtAction",
    "Thought",
    "FinalRecommendation",
    "TurnResult",
]
