"""
Tests for the confidence engine and knowledge base.

Covers:
- Likelihood and blending
- Normalization
- Hard constraint elimination and boosts
- Information gain heuristic
"""
import pytest

from advisor.agent.knowledge import (
    CRITICAL_FACTORS,
    ConstraintCondition,
    ConstraintEffect,
    ENTITY_RULES,
    evaluate_condition,
    get_all_constraints,
)
from advisor.agent.models import (
    ALL_ENTITIES,
    BusinessFactor,
    EntityHypothesis,
    EntityType,
    FactorType,
)
from advisor.agent.scoring import (
    ConfidenceEngine,
    normalize,
    top_hypotheses,
    uniform_prior,
)


def by_entity(hypotheses):
    return {h.entity: h for h in hypotheses}


SOLO = BusinessFactor(FactorType.FOUNDERS, "solo", 0.9, 0.95)
MULTIPLE = BusinessFactor(FactorType.FOUNDERS, "multiple", -0.8, 0.85)
NRI_YES = BusinessFactor(FactorType.NRI, "yes", 0.9, 0.95)
FOREIGN = BusinessFactor(FactorType.INVESTMENT, "foreign", 0.9, 0.9)
FOR_PROFIT = BusinessFactor(FactorType.BUSINESS_TYPE, "for_profit", -0.9, 0.9)
CHARITY = BusinessFactor(FactorType.BUSINESS_TYPE, "charity", 0.9, 0.9)


@pytest.fixture
def engine():
    return ConfidenceEngine()


# =============================================================================
# Knowledge base
# =============================================================================

class TestKnowledgeBase:

    def test_every_entity_has_a_rule(self):
        assert set(ENTITY_RULES) == set(ALL_ENTITIES)

    def test_constraints_sorted_by_priority(self):
        priorities = [c.priority for c in get_all_constraints()]
        assert priorities == sorted(priorities, reverse=True)

    def test_critical_factors_in_importance_order(self):
        importance = [cf.importance for cf in CRITICAL_FACTORS]
        assert importance == sorted(importance, reverse=True)
        assert CRITICAL_FACTORS[0].id == "business_type"

    def test_not_charity_needs_explicit_for_profit(self):
        # No business_type evidence at all must not eliminate the non-profits
        assert not evaluate_condition(ConstraintCondition.BUSINESS_TYPE_NOT_CHARITY, [])
        assert evaluate_condition(ConstraintCondition.BUSINESS_TYPE_NOT_CHARITY, [FOR_PROFIT])
        assert not evaluate_condition(ConstraintCondition.BUSINESS_TYPE_NOT_CHARITY, [CHARITY])

    def test_business_type_reads_latest_answer(self):
        factors = [CHARITY, FOR_PROFIT]
        assert evaluate_condition(ConstraintCondition.BUSINESS_TYPE_NOT_CHARITY, factors)
        assert not evaluate_condition(ConstraintCondition.BUSINESS_TYPE_CHARITY, factors)
        assert evaluate_condition(ConstraintCondition.BUSINESS_TYPE_CHARITY, factors[::-1])

    def test_founder_predicates_follow_impact_sign(self):
        assert evaluate_condition(ConstraintCondition.FOUNDERS_GT_1, [MULTIPLE])
        assert not evaluate_condition(ConstraintCondition.FOUNDERS_GT_1, [SOLO])
        assert evaluate_condition(ConstraintCondition.FOUNDERS_SOLO, [SOLO])

    def test_foreign_investment_matches_value(self):
        assert evaluate_condition(ConstraintCondition.HAS_FOREIGN_INVESTMENT, [FOREIGN])
        vc = BusinessFactor(FactorType.INVESTMENT, "vc", 0.8, 0.9)
        assert not evaluate_condition(ConstraintCondition.HAS_FOREIGN_INVESTMENT, [vc])


# =============================================================================
# Likelihoods
# =============================================================================

class TestLikelihood:

    def test_required_factor_positive(self, engine):
        assert engine.likelihood(EntityType.SOLE_PROPRIETORSHIP, SOLO) == pytest.approx(0.9)

    def test_required_factor_negative(self, engine):
        assert engine.likelihood(EntityType.OPC, MULTIPLE) == pytest.approx(0.1)

    def test_prohibited_factor(self, engine):
        assert engine.likelihood(EntityType.PRIVATE_LIMITED, CHARITY) == pytest.approx(0.1)
        assert engine.likelihood(EntityType.PRIVATE_LIMITED, FOR_PROFIT) == pytest.approx(0.9)

    def test_weighted_factor_is_clipped(self, engine):
        # 0.5 + 0.9 * -0.6 falls below the floor
        assert engine.likelihood(EntityType.LLP, SOLO) == pytest.approx(0.1)
        assert engine.likelihood(EntityType.PRIVATE_LIMITED, SOLO) == pytest.approx(0.14)

    def test_unweighted_factor_is_neutral(self, engine):
        assert engine.likelihood(EntityType.SOLE_PROPRIETORSHIP, NRI_YES) == pytest.approx(0.5)

    def test_blending_pulls_toward_half(self, engine):
        assert engine.blended_likelihood(EntityType.SOLE_PROPRIETORSHIP, SOLO) == pytest.approx(0.88)
        unsure = BusinessFactor(FactorType.FOUNDERS, "solo", 0.9, 0.0)
        assert engine.blended_likelihood(EntityType.SOLE_PROPRIETORSHIP, unsure) == pytest.approx(0.5)


# =============================================================================
# Updates and normalization
# =============================================================================

class TestUpdate:

    def test_uniform_prior(self):
        prior = uniform_prior()
        assert len(prior) == 9
        assert sum(h.confidence for h in prior) == pytest.approx(1.0)
        assert all(h.confidence == pytest.approx(1 / 9) for h in prior)

    def test_normalize_zero_total_unchanged(self):
        zeros = tuple(EntityHypothesis(e, 0.0) for e in ALL_ENTITIES)
        assert normalize(zeros) == zeros

    def test_update_keeps_distribution_normalized(self, engine):
        result = engine.update(uniform_prior(), SOLO)
        assert sum(h.confidence for h in result) == pytest.approx(1.0)

    def test_update_records_supporting_and_contradicting(self, engine):
        result = by_entity(engine.update(uniform_prior(), SOLO))
        assert "founders=solo" in result[EntityType.SOLE_PROPRIETORSHIP].supporting_factors
        assert "founders=solo" in result[EntityType.PARTNERSHIP].contradicting_factors

    def test_repeated_factor_not_duplicated_in_trail(self, engine):
        result = engine.update_all(uniform_prior(), [SOLO, SOLO])
        sole = by_entity(result)[EntityType.SOLE_PROPRIETORSHIP]
        assert sole.supporting_factors.count("founders=solo") == 1

    def test_solo_founder_ranking(self, engine):
        """Solo founder favours sole proprietorship and OPC, rules out partnership."""
        hyps = engine.update(uniform_prior(), SOLO)
        hyps = engine.apply_constraints(hyps, [SOLO])
        result = by_entity(hyps)

        sole = result[EntityType.SOLE_PROPRIETORSHIP].confidence
        opc = result[EntityType.OPC].confidence
        assert sole == pytest.approx(opc)
        assert sole > result[EntityType.PRIVATE_LIMITED].confidence
        assert result[EntityType.PARTNERSHIP].confidence == 0.0
        assert result[EntityType.LLP].confidence == 0.0
        assert sum(h.confidence for h in hyps) == pytest.approx(1.0)


# =============================================================================
# Hard constraints
# =============================================================================

class TestConstraints:

    def test_nri_eliminates_sole_prop_and_partnership(self, engine):
        hyps = engine.apply_constraints(uniform_prior(), [NRI_YES])
        result = by_entity(hyps)
        assert result[EntityType.SOLE_PROPRIETORSHIP].confidence == 0.0
        assert result[EntityType.PARTNERSHIP].confidence == 0.0
        assert "constraint:has_nri_positive" in result[EntityType.PARTNERSHIP].contradicting_factors
        assert result[EntityType.OPC].confidence > 0

    def test_elimination_is_sticky(self, engine):
        hyps = engine.apply_constraints(uniform_prior(), [NRI_YES])
        # Later evidence that would favour the eliminated entity
        hyps = engine.update(hyps, SOLO)
        hyps = engine.apply_constraints(hyps, [NRI_YES, SOLO])
        assert by_entity(hyps)[EntityType.SOLE_PROPRIETORSHIP].confidence == 0.0

    def test_boost_applied_once(self, engine):
        first = engine.apply_constraints(uniform_prior(), [FOREIGN])
        pvt = by_entity(first)[EntityType.PRIVATE_LIMITED]
        assert pvt.confidence == pytest.approx(1.5 / 8.5)
        assert "constraint:has_foreign_investment" in pvt.supporting_factors

        second = engine.apply_constraints(first, [FOREIGN])
        assert by_entity(second)[EntityType.PRIVATE_LIMITED].confidence == pytest.approx(pvt.confidence)

    def test_boost_never_revives(self, engine):
        hyps = engine.apply_constraints(uniform_prior(), [CHARITY])
        hyps = engine.apply_constraints(hyps, [CHARITY, FOREIGN])
        assert by_entity(hyps)[EntityType.PRIVATE_LIMITED].confidence == 0.0

    def test_charity_leaves_only_non_profits(self, engine):
        hyps = engine.update(uniform_prior(), CHARITY)
        hyps = engine.apply_constraints(hyps, [CHARITY])
        live = {h.entity for h in hyps if h.confidence > 0}
        assert live == {EntityType.SECTION_8, EntityType.TRUST, EntityType.SOCIETY}

    def test_all_eliminated_stays_zero(self, engine):
        constraints = [
            c for c in get_all_constraints() if c.effect == ConstraintEffect.ELIMINATE
        ]
        # Contradictory evidence can knock out everything
        factors = [CHARITY, FOR_PROFIT, SOLO, MULTIPLE]
        hyps = engine.apply_constraints(uniform_prior(), factors, constraints)
        assert all(h.confidence == 0.0 for h in hyps)


# =============================================================================
# Information gain / ranking
# =============================================================================

class TestInformationGain:

    def test_uniform_has_zero_variance(self, engine):
        assert engine.information_gain(uniform_prior()) == pytest.approx(0.0)

    def test_confident_leader_returns_floor(self, engine):
        hyps = tuple(
            EntityHypothesis(e, 0.8 if e == EntityType.OPC else 0.2 / 8)
            for e in ALL_ENTITIES
        )
        assert engine.information_gain(hyps) == pytest.approx(0.1)

    def test_empty(self, engine):
        assert engine.information_gain(()) == 0.0

    def test_top_hypotheses_stable_on_ties(self):
        top = top_hypotheses(uniform_prior(), 3)
        assert [h.entity for h in top] == list(ALL_ENTITIES[:3])
