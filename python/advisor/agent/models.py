"""
Domain types for the advisor agent.

State objects are frozen dataclasses; every change goes through the pure
functions in advisor.agent.state and returns a new object. The reasoner's
structured output is a pydantic model so it is validated on parse.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


class EntityType(str, Enum):
    """The nine candidate legal-entity categories."""
    PRIVATE_LIMITED = "Private Limited Company"
    LLP = "LLP"
    OPC = "OPC"
    PARTNERSHIP = "Partnership Firm"
    SOLE_PROPRIETORSHIP = "Sole Proprietorship"
    PUBLIC_LIMITED = "Public Limited Company"
    SECTION_8 = "Section 8 Company"
    TRUST = "Trust"
    SOCIETY = "Society"


ALL_ENTITIES: Tuple[EntityType, ...] = tuple(EntityType)


class FactorType(str, Enum):
    """
    Kinds of evidence. The sign of a factor's impact carries its polarity:

    founders               > 0 solo founder,      < 0 several founders
    investment             > 0 external equity,   < 0 bootstrapped
    revenue                > 0 large scale,       < 0 small scale
    risk                   > 0 wants protection,  < 0 indifferent
    nri                    > 0 NRI/foreign,       < 0 resident Indian
    expansion              > 0 franchise/branches, < 0 single location
    directors              > 0 formal board,      < 0 informal
    business_type          > 0 non-profit,        < 0 for-profit
    professional_services  > 0 professional practice
    """
    FOUNDERS = "founders"
    INVESTMENT = "investment"
    REVENUE = "revenue"
    RISK = "risk"
    NRI = "nri"
    EXPANSION = "expansion"
    DIRECTORS = "directors"
    BUSINESS_TYPE = "business_type"
    PROFESSIONAL_SERVICES = "professional_services"


class NextAction(str, Enum):
    """What the session is waiting on."""
    QUESTION = "question"
    CLARIFY = "clarify"
    COMPLETE = "complete"


class ThoughtAction(str, Enum):
    """Closed set of actions the reasoner may choose."""
    ASK_QUESTION = "ask_question"
    CLARIFY_ANSWER = "clarify_answer"
    USE_TOOL = "use_tool"
    MAKE_RECOMMENDATION = "make_recommendation"
    REFLECT = "reflect"


@dataclass(frozen=True)
class BusinessFactor:
    """One atomic piece of evidence extracted from an utterance."""
    type: FactorType
    value: str
    impact: float
    confidence: float
    source: str = ""

    def describe(self) -> str:
        return f"{self.type.value}={self.value}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "value": self.value,
            "impact": self.impact,
            "confidence": self.confidence,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BusinessFactor":
        return cls(
            type=FactorType(data["type"]),
            value=data["value"],
            impact=float(data["impact"]),
            confidence=float(data["confidence"]),
            source=data.get("source", ""),
        )


@dataclass(frozen=True)
class EntityHypothesis:
    """Belief that one entity is the right fit, with its evidence trail."""
    entity: EntityType
    confidence: float
    supporting_factors: Tuple[str, ...] = ()
    contradicting_factors: Tuple[str, ...] = ()
    missing_information: Tuple[str, ...] = ()

    @property
    def eliminated(self) -> bool:
        return self.confidence == 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity.value,
            "confidence": self.confidence,
            "supporting_factors": list(self.supporting_factors),
            "contradicting_factors": list(self.contradicting_factors),
            "missing_information": list(self.missing_information),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntityHypothesis":
        return cls(
            entity=EntityType(data["entity"]),
            confidence=float(data["confidence"]),
            supporting_factors=tuple(data.get("supporting_factors", [])),
            contradicting_factors=tuple(data.get("contradicting_factors", [])),
            missing_information=tuple(data.get("missing_information", [])),
        )


@dataclass(frozen=True)
class Message:
    role: str  # "user" | "assistant" | "system"
    content: str
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            role=data["role"],
            content=data["content"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass(frozen=True)
class Alternative:
    entity: EntityType
    confidence: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity.value,
            "confidence": self.confidence,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Alternative":
        return cls(
            entity=EntityType(data["entity"]),
            confidence=float(data["confidence"]),
            reason=data.get("reason", ""),
        )


@dataclass(frozen=True)
class FinalRecommendation:
    """Conclusion of a session."""
    entity: EntityType
    confidence: float
    reasoning: Tuple[str, ...] = ()
    alternatives: Tuple[Alternative, ...] = ()
    caveats: Tuple[str, ...] = ()
    requires_human_review: bool = False
    tentative: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity.value,
            "confidence": self.confidence,
            "reasoning": list(self.reasoning),
            "alternatives": [a.to_dict() for a in self.alternatives],
            "caveats": list(self.caveats),
            "requires_human_review": self.requires_human_review,
            "tentative": self.tentative,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FinalRecommendation":
        return cls(
            entity=EntityType(data["entity"]),
            confidence=float(data["confidence"]),
            reasoning=tuple(data.get("reasoning", [])),
            alternatives=tuple(
                Alternative.from_dict(a) for a in data.get("alternatives", [])
            ),
            caveats=tuple(data.get("caveats", [])),
            requires_human_review=bool(data.get("requires_human_review", False)),
            tentative=bool(data.get("tentative", False)),
        )


@dataclass(frozen=True)
class AgentState:
    """
    Aggregate root for one advisory session.

    evidence_cursor is the index of the first conversation message that has
    not been run through the evidence extractor yet.
    """
    session_id: str
    conversation_history: Tuple[Message, ...] = ()
    gathered_factors: Tuple[BusinessFactor, ...] = ()
    current_hypotheses: Tuple[EntityHypothesis, ...] = ()
    next_action: NextAction = NextAction.QUESTION
    iteration_count: int = 0
    start_time: datetime = field(default_factory=datetime.utcnow)
    last_update_time: datetime = field(default_factory=datetime.utcnow)
    evidence_cursor: int = 0
    final_recommendation: Optional[FinalRecommendation] = None

    @property
    def is_complete(self) -> bool:
        return self.next_action == NextAction.COMPLETE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "conversation_history": [m.to_dict() for m in self.conversation_history],
            "gathered_factors": [f.to_dict() for f in self.gathered_factors],
            "current_hypotheses": [h.to_dict() for h in self.current_hypotheses],
            "next_action": self.next_action.value,
            "iteration_count": self.iteration_count,
            "start_time": self.start_time.isoformat(),
            "last_update_time": self.last_update_time.isoformat(),
            "evidence_cursor": self.evidence_cursor,
            "final_recommendation": (
                self.final_recommendation.to_dict()
                if self.final_recommendation else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentState":
        rec = data.get("final_recommendation")
        return cls(
            session_id=data["session_id"],
            conversation_history=tuple(
                Message.from_dict(m) for m in data.get("conversation_history", [])
            ),
            gathered_factors=tuple(
                BusinessFactor.from_dict(f) for f in data.get("gathered_factors", [])
            ),
            current_hypotheses=tuple(
                EntityHypothesis.from_dict(h) for h in data.get("current_hypotheses", [])
            ),
            next_action=NextAction(data.get("next_action", NextAction.QUESTION.value)),
            iteration_count=int(data.get("iteration_count", 0)),
            start_time=datetime.fromisoformat(data["start_time"]),
            last_update_time=datetime.fromisoformat(data["last_update_time"]),
            evidence_cursor=int(data.get("evidence_cursor", 0)),
            final_recommendation=FinalRecommendation.from_dict(rec) if rec else None,
        )


class Thought(BaseModel):
    """Structured output of the think step."""
    reasoning: str = Field(default="", description="Short rationale for the chosen action")
    action: ThoughtAction = Field(description="Next action for the agent")
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    priority: int = Field(default=5, ge=0, le=10)


@dataclass(frozen=True)
class TurnResult:
    """Outcome of one processed user turn."""
    assistant_message: str
    updated_state: AgentState
    terminated: bool = False
    recommendation: Optional[FinalRecommendation] = None
    requires_human_review: bool = False
    # Guardrail or outage type when the turn ended in a safe termination
    violation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assistant_message": self.assistant_message,
            "terminated": self.terminated,
            "recommendation": (
                self.recommendation.to_dict() if self.recommendation else None
            ),
            "requires_human_review": self.requires_human_review,
            "violation": self.violation,
            "iteration_count": self.updated_state.iteration_count,
        }
