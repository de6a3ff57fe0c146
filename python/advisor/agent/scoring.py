"""
Confidence Engine

Bayesian-style belief updates over the nine entity hypotheses.

update():            likelihood per hypothesis, blended by factor confidence,
                     posterior ∝ likelihood × prior, renormalized.
apply_constraints(): hard gates. Eliminated hypotheses are forced to exactly
                     0 and stay there; boosts scale survivors. Survivors are
                     renormalized afterwards.
information_gain():  heuristic used to rank candidate questions.

All functions are pure: they take tuples of frozen hypotheses and return
new tuples.
"""
import logging
from dataclasses import replace
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

from advisor.agent.knowledge import (
    ConstraintEffect,
    HardConstraint,
    evaluate_condition,
    get_all_constraints,
    get_entity_rule,
)
from advisor.agent.models import (
    ALL_ENTITIES,
    BusinessFactor,
    EntityHypothesis,
    EntityType,
    FactorType,
)
from advisor.config.constants import CONSTANTS

logger = logging.getLogger(__name__)

Hypotheses = Tuple[EntityHypothesis, ...]


def uniform_prior(entities: Sequence[EntityType] = ALL_ENTITIES) -> Hypotheses:
    p = 1.0 / len(entities)
    return tuple(EntityHypothesis(entity=e, confidence=p) for e in entities)


def normalize(hypotheses: Sequence[EntityHypothesis]) -> Hypotheses:
    """Rescale to sum 1. A zero total is returned unchanged."""
    confidences = np.array([h.confidence for h in hypotheses], dtype=float)
    total = float(confidences.sum())
    if total <= 0:
        return tuple(hypotheses)
    return tuple(
        replace(h, confidence=float(c / total))
        for h, c in zip(hypotheses, confidences)
    )


def _append(items: Tuple[str, ...], item: str) -> Tuple[str, ...]:
    return items if item in items else items + (item,)


class ConfidenceEngine:
    """Likelihood model and constraint gates over entity hypotheses."""

    def __init__(
        self,
        contradiction_cutoff: float = CONSTANTS.scoring.CONTRADICTION_CUTOFF,
        boost_factor: float = CONSTANTS.scoring.BOOST_FACTOR,
    ):
        self.contradiction_cutoff = contradiction_cutoff
        self.boost_factor = boost_factor

    def likelihood(self, entity: EntityType, factor: BusinessFactor) -> float:
        """Raw likelihood of the factor under the entity, before blending."""
        rule = get_entity_rule(entity)
        floor = CONSTANTS.scoring.LIKELIHOOD_FLOOR
        ceil = CONSTANTS.scoring.LIKELIHOOD_CEIL

        if factor.type in rule.required_factors:
            return ceil if factor.impact > 0 else floor
        if factor.type in rule.prohibited_factors:
            return floor if factor.impact > 0 else ceil
        weight = rule.scoring_weights.get(factor.type)
        if weight is not None:
            return float(np.clip(0.5 + factor.impact * weight, floor, ceil))
        return 0.5

    def blended_likelihood(self, entity: EntityType, factor: BusinessFactor) -> float:
        """Pull the likelihood toward 0.5 in proportion to extraction doubt."""
        raw = self.likelihood(entity, factor)
        return 0.5 + (raw - 0.5) * factor.confidence

    def update(
        self,
        hypotheses: Sequence[EntityHypothesis],
        factor: BusinessFactor,
    ) -> Hypotheses:
        updated = []
        description = factor.describe()
        for h in hypotheses:
            lk = self.blended_likelihood(h.entity, factor)
            supporting = h.supporting_factors
            contradicting = h.contradicting_factors
            if lk > 0.5:
                supporting = _append(supporting, description)
            elif lk < self.contradiction_cutoff:
                contradicting = _append(contradicting, description)
            updated.append(replace(
                h,
                confidence=h.confidence * lk,
                supporting_factors=supporting,
                contradicting_factors=contradicting,
            ))
        return normalize(updated)

    def update_all(
        self,
        hypotheses: Sequence[EntityHypothesis],
        factors: Iterable[BusinessFactor],
    ) -> Hypotheses:
        result = tuple(hypotheses)
        for factor in factors:
            result = self.update(result, factor)
        return result

    def apply_constraints(
        self,
        hypotheses: Sequence[EntityHypothesis],
        all_factors: Sequence[BusinessFactor],
        constraints: Optional[Sequence[HardConstraint]] = None,
    ) -> Hypotheses:
        """
        Apply every hard constraint whose condition holds on the factor set.

        Eliminations are evaluated first so a boost can never revive an
        eliminated hypothesis. Survivors are renormalized when their total is
        nonzero.
        """
        if constraints is None:
            constraints = get_all_constraints()
        by_entity = {h.entity: h for h in hypotheses}

        ordered = sorted(
            constraints,
            key=lambda c: (c.effect != ConstraintEffect.ELIMINATE, -c.priority),
        )
        for constraint in ordered:
            h = by_entity.get(constraint.entity)
            if h is None or not evaluate_condition(constraint.condition, all_factors):
                continue
            marker = f"constraint:{constraint.condition.value}"
            if constraint.effect == ConstraintEffect.ELIMINATE:
                if not h.eliminated:
                    logger.debug(
                        f"Eliminated {h.entity.value}: {constraint.description or marker}"
                    )
                by_entity[h.entity] = replace(
                    h,
                    confidence=0.0,
                    contradicting_factors=_append(h.contradicting_factors, marker),
                )
            elif not h.eliminated and marker not in h.supporting_factors:
                # One boost per constraint per session
                by_entity[h.entity] = replace(
                    h,
                    confidence=h.confidence * self.boost_factor,
                    supporting_factors=_append(h.supporting_factors, marker),
                )

        return normalize([by_entity[h.entity] for h in hypotheses])

    def information_gain(
        self,
        hypotheses: Sequence[EntityHypothesis],
        factor_type: Optional[FactorType] = None,
    ) -> float:
        """
        Variance of the current confidences while the leader is still
        uncertain, otherwise a small constant. Independent of factor_type for
        now; the argument keeps the call sites stable.
        """
        if not hypotheses:
            return 0.0
        confidences = np.array([h.confidence for h in hypotheses], dtype=float)
        if confidences.max() > CONSTANTS.scoring.GAIN_CERTAINTY_CUTOFF:
            return CONSTANTS.scoring.GAIN_FLOOR
        return float(np.var(confidences))


def top_hypotheses(hypotheses: Sequence[EntityHypothesis], n: int = 3) -> Hypotheses:
    """Highest confidence first; ties keep knowledge-base order."""
    return tuple(sorted(hypotheses, key=lambda h: h.confidence, reverse=True)[:n])
