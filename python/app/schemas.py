from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from advisor.agent.models import (
    AgentState,
    EntityHypothesis,
    FinalRecommendation,
    TurnResult,
)
from advisor.agent.scoring import top_hypotheses


# Request schemas
class CreateSessionRequest(BaseModel):
    session_id: Optional[str] = Field(
        None, min_length=8, max_length=64,
        description="Client-chosen session id; generated when omitted",
    )


class TurnRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=4000)


# Response schemas
class HypothesisResponse(BaseModel):
    entity: str
    confidence: float
    supporting_factors: List[str] = []
    contradicting_factors: List[str] = []
    missing_information: List[str] = []

    @classmethod
    def from_hypothesis(cls, h: EntityHypothesis) -> "HypothesisResponse":
        return cls(**h.to_dict())


class AlternativeResponse(BaseModel):
    entity: str
    confidence: float
    reason: str


class RecommendationResponse(BaseModel):
    entity: str
    confidence: float
    reasoning: List[str]
    alternatives: List[AlternativeResponse]
    caveats: List[str]
    requires_human_review: bool
    tentative: bool

    @classmethod
    def from_recommendation(
        cls, rec: Optional[FinalRecommendation]
    ) -> Optional["RecommendationResponse"]:
        if rec is None:
            return None
        return cls(**rec.to_dict())


class TurnResponse(BaseModel):
    session_id: str
    message: str
    terminated: bool
    requires_human_review: bool = False
    violation: Optional[str] = None
    iteration_count: int
    recommendation: Optional[RecommendationResponse] = None
    top_hypotheses: List[HypothesisResponse]

    @classmethod
    def from_result(cls, result: TurnResult) -> "TurnResponse":
        state = result.updated_state
        return cls(
            session_id=state.session_id,
            message=result.assistant_message,
            terminated=result.terminated,
            requires_human_review=result.requires_human_review,
            violation=result.violation,
            iteration_count=state.iteration_count,
            recommendation=RecommendationResponse.from_recommendation(result.recommendation),
            top_hypotheses=[
                HypothesisResponse.from_hypothesis(h)
                for h in top_hypotheses(state.current_hypotheses, 3)
            ],
        )


class FactorResponse(BaseModel):
    type: str
    value: str
    impact: float
    confidence: float
    source: str = ""


class MessageResponse(BaseModel):
    role: str
    content: str
    timestamp: datetime


class SessionResponse(BaseModel):
    session_id: str
    next_action: str
    iteration_count: int
    start_time: datetime
    last_update_time: datetime
    hypotheses: List[HypothesisResponse]
    factors: List[FactorResponse]
    messages: List[MessageResponse]
    recommendation: Optional[RecommendationResponse] = None

    @classmethod
    def from_state(cls, state: AgentState) -> "SessionResponse":
        return cls(
            session_id=state.session_id,
            next_action=state.next_action.value,
            iteration_count=state.iteration_count,
            start_time=state.start_time,
            last_update_time=state.last_update_time,
            hypotheses=[
                HypothesisResponse.from_hypothesis(h)
                for h in top_hypotheses(state.current_hypotheses, len(state.current_hypotheses))
            ],
            factors=[FactorResponse(**f.to_dict()) for f in state.gathered_factors],
            messages=[
                MessageResponse(role=m.role, content=m.content, timestamp=m.timestamp)
                for m in state.conversation_history
            ],
            recommendation=RecommendationResponse.from_recommendation(
                state.final_recommendation
            ),
        )


class MetricsResponse(BaseModel):
    session_id: str
    session: Dict[str, Any]
    cost: Dict[str, Any]


class BreakersResponse(BaseModel):
    breakers: Dict[str, Dict[str, Any]]
    performance: Dict[str, Any]
