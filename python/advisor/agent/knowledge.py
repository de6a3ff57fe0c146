"""
Knowledge Base

Static per-entity rules (required/prohibited factor types, likelihood
weights, hard constraints) and the ordered list of critical factors the gap
analyzer asks about. No I/O.

Constraint conditions are a closed enum; each one maps to a named predicate
over the accumulated factor set.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from advisor.agent.models import BusinessFactor, EntityType, FactorType


class ConstraintCondition(str, Enum):
    HAS_NRI_POSITIVE = "has_nri_positive"
    HAS_FOREIGN_INVESTMENT = "has_foreign_investment"
    FOUNDERS_GT_1 = "founders_gt_1"
    FOUNDERS_SOLO = "founders_solo"
    BUSINESS_TYPE_NOT_CHARITY = "business_type_not_charity"
    BUSINESS_TYPE_CHARITY = "business_type_charity"
    PLANS_IPO = "plans_ipo"


class ConstraintEffect(str, Enum):
    ELIMINATE = "eliminate"
    BOOST = "boost"


@dataclass(frozen=True)
class HardConstraint:
    entity: EntityType
    condition: ConstraintCondition
    effect: ConstraintEffect
    priority: int
    description: str = ""


@dataclass(frozen=True)
class EntityRule:
    required_factors: Tuple[FactorType, ...] = ()
    prohibited_factors: Tuple[FactorType, ...] = ()
    scoring_weights: Dict[FactorType, float] = field(default_factory=dict)
    hard_constraints: Tuple[HardConstraint, ...] = ()


@dataclass(frozen=True)
class CriticalFactor:
    """A question worth asking, and the entities its answer separates."""
    id: str
    factor_type: FactorType
    question: str
    importance: int
    differentiates: Tuple[EntityType, ...]


# =============================================================================
# Constraint predicates
# =============================================================================

def _any(factors: Sequence[BusinessFactor], ftype: FactorType,
         test: Callable[[BusinessFactor], bool]) -> bool:
    return any(f.type == ftype and test(f) for f in factors)


def has_nri_positive(factors: Sequence[BusinessFactor]) -> bool:
    return _any(factors, FactorType.NRI, lambda f: f.impact > 0)


def has_foreign_investment(factors: Sequence[BusinessFactor]) -> bool:
    return _any(factors, FactorType.INVESTMENT, lambda f: "foreign" in f.value.lower())


def founders_gt_1(factors: Sequence[BusinessFactor]) -> bool:
    return _any(factors, FactorType.FOUNDERS, lambda f: f.impact < 0)


def founders_solo(factors: Sequence[BusinessFactor]) -> bool:
    return _any(factors, FactorType.FOUNDERS, lambda f: f.impact > 0)


def _latest(factors: Sequence[BusinessFactor], ftype: FactorType) -> Optional[BusinessFactor]:
    for factor in reversed(factors):
        if factor.type == ftype:
            return factor
    return None


# Business type is mutually exclusive, so only the latest answer counts
def business_type_charity(factors: Sequence[BusinessFactor]) -> bool:
    latest = _latest(factors, FactorType.BUSINESS_TYPE)
    return latest is not None and latest.impact > 0


def business_type_not_charity(factors: Sequence[BusinessFactor]) -> bool:
    # Fires on an explicit for-profit answer only, never on missing evidence
    latest = _latest(factors, FactorType.BUSINESS_TYPE)
    return latest is not None and latest.impact < 0


def plans_ipo(factors: Sequence[BusinessFactor]) -> bool:
    return _any(factors, FactorType.INVESTMENT, lambda f: f.value == "ipo")


CONDITION_PREDICATES: Dict[ConstraintCondition, Callable[[Sequence[BusinessFactor]], bool]] = {
    ConstraintCondition.HAS_NRI_POSITIVE: has_nri_positive,
    ConstraintCondition.HAS_FOREIGN_INVESTMENT: has_foreign_investment,
    ConstraintCondition.FOUNDERS_GT_1: founders_gt_1,
    ConstraintCondition.FOUNDERS_SOLO: founders_solo,
    ConstraintCondition.BUSINESS_TYPE_NOT_CHARITY: business_type_not_charity,
    ConstraintCondition.BUSINESS_TYPE_CHARITY: business_type_charity,
    ConstraintCondition.PLANS_IPO: plans_ipo,
}

missing = set(ConstraintCondition) - set(CONDITION_PREDICATES)
if missing:
    raise RuntimeError(f"Constraint conditions without predicates: {sorted(missing)}")
del missing


def evaluate_condition(condition: ConstraintCondition,
                       factors: Sequence[BusinessFactor]) -> bool:
    return CONDITION_PREDICATES[condition](factors)


# =============================================================================
# Entity rules
# =============================================================================

def _eliminate(entity: EntityType, condition: ConstraintCondition,
               priority: int, description: str) -> HardConstraint:
    return HardConstraint(entity, condition, ConstraintEffect.ELIMINATE, priority, description)


def _boost(entity: EntityType, condition: ConstraintCondition,
           priority: int, description: str) -> HardConstraint:
    return HardConstraint(entity, condition, ConstraintEffect.BOOST, priority, description)


E = EntityType
F = FactorType
C = ConstraintCondition

_FOR_PROFIT_ONLY = "Not available to non-profit ventures"

ENTITY_RULES: Dict[EntityType, EntityRule] = {
    E.SOLE_PROPRIETORSHIP: EntityRule(
        required_factors=(F.FOUNDERS,),
        prohibited_factors=(F.BUSINESS_TYPE,),
        scoring_weights={
            F.INVESTMENT: -0.4,
            F.RISK: -0.4,
            F.DIRECTORS: -0.4,
            F.REVENUE: -0.3,
            F.EXPANSION: -0.3,
            F.PROFESSIONAL_SERVICES: 0.2,
        },
        hard_constraints=(
            _eliminate(E.SOLE_PROPRIETORSHIP, C.HAS_NRI_POSITIVE, 10,
                       "NRIs cannot run a sole proprietorship"),
            _eliminate(E.SOLE_PROPRIETORSHIP, C.HAS_FOREIGN_INVESTMENT, 10,
                       "Cannot take foreign investment"),
            _eliminate(E.SOLE_PROPRIETORSHIP, C.FOUNDERS_GT_1, 10,
                       "Only one owner allowed"),
            _eliminate(E.SOLE_PROPRIETORSHIP, C.BUSINESS_TYPE_CHARITY, 9, _FOR_PROFIT_ONLY),
        ),
    ),
    E.OPC: EntityRule(
        required_factors=(F.FOUNDERS,),
        prohibited_factors=(F.BUSINESS_TYPE,),
        scoring_weights={
            F.RISK: 0.5,
            F.DIRECTORS: 0.4,
            F.NRI: 0.3,
            F.REVENUE: 0.1,
            F.INVESTMENT: -0.2,
            F.EXPANSION: -0.2,
        },
        hard_constraints=(
            _eliminate(E.OPC, C.FOUNDERS_GT_1, 10, "Limited to a single member"),
            _eliminate(E.OPC, C.PLANS_IPO, 8, "Cannot list on an exchange"),
            _eliminate(E.OPC, C.BUSINESS_TYPE_CHARITY, 9, _FOR_PROFIT_ONLY),
        ),
    ),
    E.PRIVATE_LIMITED: EntityRule(
        prohibited_factors=(F.BUSINESS_TYPE,),
        scoring_weights={
            F.INVESTMENT: 0.8,
            F.EXPANSION: 0.6,
            F.RISK: 0.6,
            F.DIRECTORS: 0.5,
            F.REVENUE: 0.5,
            F.NRI: 0.2,
            F.FOUNDERS: -0.4,
        },
        hard_constraints=(
            _boost(E.PRIVATE_LIMITED, C.HAS_FOREIGN_INVESTMENT, 8,
                   "Preferred vehicle for foreign investment"),
            _eliminate(E.PRIVATE_LIMITED, C.BUSINESS_TYPE_CHARITY, 9, _FOR_PROFIT_ONLY),
        ),
    ),
    E.LLP: EntityRule(
        prohibited_factors=(F.BUSINESS_TYPE,),
        scoring_weights={
            F.PROFESSIONAL_SERVICES: 0.7,
            F.RISK: 0.5,
            F.EXPANSION: 0.2,
            F.INVESTMENT: -0.3,
            F.DIRECTORS: -0.4,
            F.FOUNDERS: -0.6,
        },
        hard_constraints=(
            _eliminate(E.LLP, C.FOUNDERS_SOLO, 10, "Needs at least two partners"),
            _eliminate(E.LLP, C.BUSINESS_TYPE_CHARITY, 9, _FOR_PROFIT_ONLY),
        ),
    ),
    E.PARTNERSHIP: EntityRule(
        prohibited_factors=(F.BUSINESS_TYPE,),
        scoring_weights={
            F.PROFESSIONAL_SERVICES: 0.3,
            F.EXPANSION: -0.2,
            F.INVESTMENT: -0.4,
            F.DIRECTORS: -0.4,
            F.RISK: -0.5,
            F.FOUNDERS: -0.6,
        },
        hard_constraints=(
            _eliminate(E.PARTNERSHIP, C.HAS_NRI_POSITIVE, 10,
                       "NRI partners need government approval"),
            _eliminate(E.PARTNERSHIP, C.FOUNDERS_SOLO, 10, "Needs at least two partners"),
            _eliminate(E.PARTNERSHIP, C.BUSINESS_TYPE_CHARITY, 9, _FOR_PROFIT_ONLY),
        ),
    ),
    E.PUBLIC_LIMITED: EntityRule(
        prohibited_factors=(F.BUSINESS_TYPE,),
        scoring_weights={
            F.REVENUE: 0.8,
            F.INVESTMENT: 0.7,
            F.EXPANSION: 0.6,
            F.DIRECTORS: 0.6,
            F.RISK: 0.4,
            F.FOUNDERS: -0.6,
        },
        hard_constraints=(
            _boost(E.PUBLIC_LIMITED, C.PLANS_IPO, 9, "Only entity that can list publicly"),
            _eliminate(E.PUBLIC_LIMITED, C.BUSINESS_TYPE_CHARITY, 9, _FOR_PROFIT_ONLY),
        ),
    ),
    E.SECTION_8: EntityRule(
        required_factors=(F.BUSINESS_TYPE,),
        scoring_weights={
            F.DIRECTORS: 0.5,
            F.RISK: 0.5,
            F.REVENUE: 0.3,
            F.EXPANSION: 0.3,
            F.INVESTMENT: -0.3,
        },
        hard_constraints=(
            _eliminate(E.SECTION_8, C.BUSINESS_TYPE_NOT_CHARITY, 10,
                       "Restricted to charitable objects"),
        ),
    ),
    E.TRUST: EntityRule(
        required_factors=(F.BUSINESS_TYPE,),
        scoring_weights={
            F.FOUNDERS: 0.3,
            F.RISK: -0.3,
            F.REVENUE: -0.3,
            F.EXPANSION: -0.3,
            F.DIRECTORS: -0.5,
        },
        hard_constraints=(
            _eliminate(E.TRUST, C.BUSINESS_TYPE_NOT_CHARITY, 10,
                       "Restricted to charitable objects"),
        ),
    ),
    E.SOCIETY: EntityRule(
        required_factors=(F.BUSINESS_TYPE,),
        scoring_weights={
            F.DIRECTORS: 0.2,
            F.EXPANSION: 0.2,
            F.RISK: -0.2,
            F.FOUNDERS: -0.5,
        },
        hard_constraints=(
            _eliminate(E.SOCIETY, C.BUSINESS_TYPE_NOT_CHARITY, 10,
                       "Restricted to charitable objects"),
            _eliminate(E.SOCIETY, C.FOUNDERS_SOLO, 9, "Needs at least seven members"),
        ),
    ),
}

del E, F, C


def get_entity_rule(entity: EntityType) -> EntityRule:
    return ENTITY_RULES[entity]


def get_all_constraints() -> List[HardConstraint]:
    """All hard constraints across entities, highest priority first."""
    constraints = [c for rule in ENTITY_RULES.values() for c in rule.hard_constraints]
    return sorted(constraints, key=lambda c: c.priority, reverse=True)


# =============================================================================
# Critical factors (ordered by importance)
# =============================================================================

CRITICAL_FACTORS: Tuple[CriticalFactor, ...] = (
    CriticalFactor(
        id="business_type",
        factor_type=FactorType.BUSINESS_TYPE,
        question="Are you starting a for-profit business or a non-profit/charity?",
        importance=10,
        differentiates=(EntityType.SECTION_8, EntityType.TRUST, EntityType.SOCIETY),
    ),
    CriticalFactor(
        id="founders_count",
        factor_type=FactorType.FOUNDERS,
        question="How many people will own and run this business?",
        importance=9,
        differentiates=(EntityType.SOLE_PROPRIETORSHIP, EntityType.OPC,
                        EntityType.PARTNERSHIP, EntityType.LLP),
    ),
    CriticalFactor(
        id="nri_status",
        factor_type=FactorType.NRI,
        question=(
            "Are you or any of the founders NRI (Non-Resident Indian) "
            "or foreign citizens?"
        ),
        importance=9,
        differentiates=(EntityType.SOLE_PROPRIETORSHIP, EntityType.PARTNERSHIP,
                        EntityType.OPC),
    ),
    CriticalFactor(
        id="funding_type",
        factor_type=FactorType.INVESTMENT,
        question="How do you plan to fund this - own money, VC/investors, or loans?",
        importance=8,
        differentiates=(EntityType.PRIVATE_LIMITED, EntityType.LLP,
                        EntityType.PUBLIC_LIMITED),
    ),
    CriticalFactor(
        id="liability_protection",
        factor_type=FactorType.RISK,
        question=(
            "How important is it to protect your personal assets "
            "from business liabilities?"
        ),
        importance=7,
        differentiates=(EntityType.PRIVATE_LIMITED, EntityType.LLP, EntityType.OPC),
    ),
    CriticalFactor(
        id="expansion_plans",
        factor_type=FactorType.EXPANSION,
        question="Do you plan to open franchises or multiple branches?",
        importance=7,
        differentiates=(EntityType.PRIVATE_LIMITED, EntityType.LLP),
    ),
    CriticalFactor(
        id="directors_shareholders",
        factor_type=FactorType.DIRECTORS,
        question="Do you want a formal structure with directors and shareholders?",
        importance=6,
        differentiates=(EntityType.PRIVATE_LIMITED, EntityType.OPC, EntityType.LLP),
    ),
    CriticalFactor(
        id="revenue_scale",
        factor_type=FactorType.REVENUE,
        question=(
            "What scale do you expect in the first few years - a small local "
            "business or a large operation?"
        ),
        importance=5,
        differentiates=(EntityType.PUBLIC_LIMITED, EntityType.PRIVATE_LIMITED,
                        EntityType.SOLE_PROPRIETORSHIP),
    ),
)
