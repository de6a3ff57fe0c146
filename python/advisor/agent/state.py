"""
Agent state transitions.

Every function takes an AgentState and returns a new one; nothing mutates in
place. iteration_count only ever goes up.
"""
import json
import secrets
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional, Sequence

from advisor.agent.models import (
    AgentState,
    BusinessFactor,
    EntityHypothesis,
    FinalRecommendation,
    Message,
    NextAction,
)
from advisor.agent.scoring import top_hypotheses, uniform_prior


def new_session_id() -> str:
    return secrets.token_urlsafe(16)


def initialize_agent_state(session_id: Optional[str] = None) -> AgentState:
    """Fresh session with a uniform prior over all entities."""
    now = datetime.utcnow()
    return AgentState(
        session_id=session_id or new_session_id(),
        current_hypotheses=uniform_prior(),
        start_time=now,
        last_update_time=now,
    )


def _touch(state: AgentState, **changes) -> AgentState:
    return replace(state, last_update_time=datetime.utcnow(), **changes)


def add_message(state: AgentState, role: str, content: str) -> AgentState:
    message = Message(role=role, content=content)
    return _touch(state, conversation_history=state.conversation_history + (message,))


def add_factors(state: AgentState, factors: Iterable[BusinessFactor]) -> AgentState:
    factors = tuple(factors)
    if not factors:
        return state
    return _touch(state, gathered_factors=state.gathered_factors + factors)


def update_hypotheses(state: AgentState,
                      hypotheses: Sequence[EntityHypothesis]) -> AgentState:
    return _touch(state, current_hypotheses=tuple(hypotheses))


def set_next_action(state: AgentState, action: NextAction) -> AgentState:
    return _touch(state, next_action=action)


def increment_iteration(state: AgentState) -> AgentState:
    return _touch(state, iteration_count=state.iteration_count + 1)


def advance_evidence_cursor(state: AgentState) -> AgentState:
    """Mark every message so far as scored."""
    return _touch(state, evidence_cursor=len(state.conversation_history))


def conclude(state: AgentState, recommendation: FinalRecommendation) -> AgentState:
    return _touch(
        state,
        final_recommendation=recommendation,
        next_action=NextAction.COMPLETE,
    )


def get_top_hypotheses(state: AgentState, n: int = 3) -> tuple:
    return top_hypotheses(state.current_hypotheses, n)


def should_terminate(state: AgentState, threshold: float, max_iterations: int) -> bool:
    top = get_top_hypotheses(state, 1)
    if top and top[0].confidence >= threshold:
        return True
    return state.iteration_count >= max_iterations


def last_assistant_message(state: AgentState, before: Optional[int] = None) -> str:
    """Most recent assistant message content, optionally before an index."""
    history = state.conversation_history[:before]
    for message in reversed(history):
        if message.role == "assistant":
            return message.content
    return ""


def serialize_state(state: AgentState) -> str:
    return json.dumps(state.to_dict())


def deserialize_state(payload: str) -> AgentState:
    return AgentState.from_dict(json.loads(payload))
