"""
Gap Analyzer

Works out which critical factors are still unknown and picks the next
question. Returns READY_TO_RECOMMEND when there is nothing left worth asking,
or once enough evidence has been gathered over enough turns.
"""
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

from advisor.agent.knowledge import CRITICAL_FACTORS, CriticalFactor
from advisor.agent.models import AgentState, EntityHypothesis
from advisor.agent.scoring import ConfidenceEngine
from advisor.config.constants import CONSTANTS

READY_TO_RECOMMEND = "[READY_TO_RECOMMEND]"


@dataclass
class GapReport:
    gaps: List[CriticalFactor]
    information_gain: float
    next_question: str

    @property
    def ready(self) -> bool:
        return self.next_question == READY_TO_RECOMMEND

    def to_dict(self) -> dict:
        return {
            "gaps": [g.id for g in self.gaps],
            "information_gain": round(self.information_gain, 4),
            "next_question": self.next_question,
            "ready": self.ready,
        }


class GapAnalyzer:

    def __init__(
        self,
        critical_factors: Sequence[CriticalFactor] = CRITICAL_FACTORS,
        ready_min_factors: int = CONSTANTS.agent.READY_MIN_FACTORS,
        ready_min_iterations: int = CONSTANTS.agent.READY_MIN_ITERATIONS,
        engine: Optional[ConfidenceEngine] = None,
    ):
        self.critical_factors = tuple(critical_factors)
        self.ready_min_factors = ready_min_factors
        self.ready_min_iterations = ready_min_iterations
        self.engine = engine or ConfidenceEngine()

    def identify_gaps(self, state: AgentState) -> List[CriticalFactor]:
        """Critical factors with no gathered evidence, most important first."""
        known = {f.type for f in state.gathered_factors}
        gaps = [cf for cf in self.critical_factors if cf.factor_type not in known]
        # Stable sort keeps declaration order among equal importance
        return sorted(gaps, key=lambda cf: cf.importance, reverse=True)

    def select_question(self, state: AgentState) -> str:
        gaps = self.identify_gaps(state)
        if not gaps:
            return READY_TO_RECOMMEND
        if (len(state.gathered_factors) >= self.ready_min_factors
                and state.iteration_count >= self.ready_min_iterations):
            return READY_TO_RECOMMEND
        return self._rank(gaps, state.current_hypotheses)[0].question

    def analyze(self, state: AgentState) -> GapReport:
        gaps = self.identify_gaps(state)
        return GapReport(
            gaps=gaps,
            information_gain=self.engine.information_gain(state.current_hypotheses),
            next_question=self.select_question(state),
        )

    def annotate_missing(
        self,
        hypotheses: Sequence[EntityHypothesis],
        state: AgentState,
    ) -> Tuple[EntityHypothesis, ...]:
        """Record on each hypothesis the open questions that would move it."""
        gaps = self.identify_gaps(state)
        return tuple(
            replace(h, missing_information=tuple(
                g.id for g in gaps if h.entity in g.differentiates
            ))
            for h in hypotheses
        )

    def _rank(
        self,
        gaps: List[CriticalFactor],
        hypotheses: Sequence[EntityHypothesis],
    ) -> List[CriticalFactor]:
        # Ties on importance go to the gap covering more live belief mass
        mass = {h.entity: h.confidence for h in hypotheses}

        def live_mass(cf: CriticalFactor) -> float:
            return sum(mass.get(e, 0.0) for e in cf.differentiates)

        return sorted(gaps, key=lambda cf: (cf.importance, live_mass(cf)), reverse=True)
