"""
Evidence Extractor

Turns a free-text answer into zero or more BusinessFactors. Deterministic:
the same (answer, question) pair always yields the same factors in the same
order. Short yes/no answers are read against the question that was asked.
Text that matches nothing yields an empty list.
"""
import logging
import re
from typing import List, Optional

from advisor.agent.models import BusinessFactor, FactorType

logger = logging.getLogger(__name__)


def _rx(pattern: str) -> "re.Pattern[str]":
    return re.compile(pattern, re.IGNORECASE)


# Business type
CHARITY = _rx(r"\b(charity|charitable|ngo|non-?profit|not[- ]for[- ]profit|welfare|"
              r"social cause|religious|temple|philanthrop\w*|section[- ]?8)\b")
NOT_CHARITY = _rx(r"\b(?:not|isn'?t|never) (?:an? )?(?:charity|ngo|non-?profit)\b")
FOR_PROFIT = _rx(r"\b(for-?profit|commercial|make money|money-making)\b")
# Only read as for-profit when answering the business-type question
BUSINESS_HINT = _rx(r"\b(business|profit|startup|start-up|company|revenue|enterprise)\b")

# Founders
SOLO = _rx(r"\b(only me|just me|solo|alone|myself|i'?m the only|i am the only|"
           r"single founder|one person|by myself|on my own)\b")
MULTIPLE = _rx(r"\b(partners?|co-?founders?|founding team|multiple founders|"
               r"(?:two|three|four|five|six|seven|[2-9]\d*) (?:people|founders|owners|partners|of us|friends)|"
               r"with (?:my )?(?:friends?|brother|sister|wife|husband|spouse))\b")
MULTIPLE_IN_CONTEXT = _rx(r"\b(we|us|our)\b")

# NRI status
NRI_YES = _rx(r"\b(nri|non-?resident|foreign (?:citizen|national)s?|overseas|abroad|"
              r"oci|live outside india|living outside india)\b")
NRI_NO = _rx(r"\b(no|nope|not|indian|resident|citizen of india|live in india|"
             r"living in india)\b")

# Funding
FOREIGN_INVESTMENT = _rx(r"\b(foreign invest\w*|fdi|foreign (?:investors?|funding|capital)|"
                         r"investors? from abroad|international investors?)\b")
IPO = _rx(r"\b(ipo|go public|going public|public listing|stock exchange|list on)\b")
VENTURE = _rx(r"\b(vc|vcs|venture|investors?|angels?|raise|raising|funding|equity)\b")
BOOTSTRAP = _rx(r"\b(bootstrap\w*|own money|own savings|self-?fund\w*|personal savings|"
                r"my savings|loans?|bank loan)\b")

# Liability
PROTECT = _rx(r"\b(protect\w*|limited liability|personal assets|very important|"
              r"critical|essential)\b")
LIABILITY_INDIFFERENT = _rx(r"\b(not important|don'?t care|doesn'?t matter|not worried|"
                            r"not a concern|unlimited)\b")

# Yes/no
YES = _rx(r"\b(yes|yeah|yep|sure|definitely|absolutely|of course)\b")
NO = _rx(r"\b(no|nope|not really|never|don'?t)\b")

# Expansion
EXPANSION = _rx(r"\b(franchis\w*|branch(?:es)?|expand\w*|expansion|multiple locations|"
                r"other cities|nationwide|scale up|chain)\b")

# Directors
BOARD = _rx(r"\b(board of directors|shareholders?|directors)\b")

# Scale
LARGE_SCALE = _rx(r"\b(crores?|large(?:-| )scale|millions?|high revenue|big operation|"
                  r"large operation|hundreds of employees|national)\b")
SMALL_SCALE = _rx(r"\b(small|side business|part-?time|lakhs?|hobby|local shop|"
                  r"freelanc\w*|home-?based)\b")

# Professional practice
PROFESSIONAL = _rx(r"\b(consult\w*|law firm|legal practice|chartered accountants?|ca firm|"
                   r"architects?|doctors?|clinic|professional services|agency)\b")

# Question context keywords
CTX_FOUNDERS = _rx(r"\b(how many|own and run|founders?|partners?)\b")
CTX_NRI = _rx(r"\b(nri|non-resident|foreign citizens?)\b")
CTX_LIABILITY = _rx(r"\b(liabilit\w*|personal assets|protect)\b")
CTX_DIRECTORS = _rx(r"\bdirectors?\b")
CTX_EXPANSION = _rx(r"\b(franchises?|branches|expand\w*)\b")
CTX_BUSINESS_TYPE = _rx(r"\b(for-profit|non-profit|charity)\b")


class EvidenceExtractor:
    """Rule-based extractor from answer text to business factors."""

    def extract(self, answer_text: str, question_context: Optional[str] = "") -> List[BusinessFactor]:
        text = (answer_text or "").strip()
        if not text:
            return []
        context = question_context or ""
        source = context[:120]

        factors: List[BusinessFactor] = []

        def add(ftype: FactorType, value: str, impact: float, confidence: float) -> None:
            factors.append(BusinessFactor(ftype, value, impact, confidence, source))

        # Business type: check non-profit first, "non-profit" contains "profit"
        negated_charity = NOT_CHARITY.search(text)
        if CHARITY.search(NOT_CHARITY.sub(" ", text)):
            add(FactorType.BUSINESS_TYPE, "charity", 0.9, 0.9)
        elif negated_charity or FOR_PROFIT.search(text):
            add(FactorType.BUSINESS_TYPE, "for_profit", -0.9, 0.9)
        elif CTX_BUSINESS_TYPE.search(context) and BUSINESS_HINT.search(text):
            add(FactorType.BUSINESS_TYPE, "for_profit", -0.9, 0.8)

        # Founders
        if SOLO.search(text):
            add(FactorType.FOUNDERS, "solo", 0.9, 0.95)
        elif MULTIPLE.search(text):
            add(FactorType.FOUNDERS, "multiple", -0.8, 0.85)
        elif CTX_FOUNDERS.search(context):
            if re.match(r"(1|one|just one|only one|me)\b", text, re.I):
                add(FactorType.FOUNDERS, "solo", 0.9, 0.8)
            elif MULTIPLE_IN_CONTEXT.search(text):
                add(FactorType.FOUNDERS, "multiple", -0.8, 0.7)

        # NRI status
        if NRI_YES.search(text) and not re.search(r"\bnot (?:an? )?nri\b", text, re.I):
            add(FactorType.NRI, "yes", 0.9, 0.95)
        elif CTX_NRI.search(context):
            if YES.search(text):
                add(FactorType.NRI, "yes", 0.9, 0.85)
            elif NRI_NO.search(text):
                add(FactorType.NRI, "no", -0.9, 0.8)

        # Funding
        if FOREIGN_INVESTMENT.search(text):
            add(FactorType.INVESTMENT, "foreign", 0.9, 0.9)
        elif IPO.search(text):
            add(FactorType.INVESTMENT, "ipo", 1.0, 0.9)
        elif BOOTSTRAP.search(text):
            add(FactorType.INVESTMENT, "bootstrap", -0.5, 0.8)
        elif VENTURE.search(text):
            add(FactorType.INVESTMENT, "vc", 0.8, 0.9)

        # Liability protection
        if CTX_LIABILITY.search(context):
            if LIABILITY_INDIFFERENT.search(text):
                add(FactorType.RISK, "not_needed", -0.5, 0.7)
            elif PROTECT.search(text) or YES.search(text):
                add(FactorType.RISK, "needs_protection", 0.7, 0.7)
            elif NO.search(text):
                add(FactorType.RISK, "not_needed", -0.5, 0.7)
        elif re.search(r"\b(limited liability|protect my personal assets)\b", text, re.I):
            add(FactorType.RISK, "needs_protection", 0.7, 0.7)

        # Directors / formal structure
        if CTX_DIRECTORS.search(context):
            if YES.search(text) or BOARD.search(text):
                add(FactorType.DIRECTORS, "yes", 0.6, 0.8)
            elif NO.search(text):
                add(FactorType.DIRECTORS, "no", -0.6, 0.8)
        elif BOARD.search(text):
            add(FactorType.DIRECTORS, "yes", 0.6, 0.7)

        # Expansion
        if EXPANSION.search(text):
            add(FactorType.EXPANSION, "yes", 0.7, 0.85)
        elif CTX_EXPANSION.search(context):
            if YES.search(text):
                add(FactorType.EXPANSION, "yes", 0.7, 0.8)
            elif NO.search(text):
                add(FactorType.EXPANSION, "no", -0.5, 0.8)

        # Scale
        if LARGE_SCALE.search(text):
            add(FactorType.REVENUE, "large", 0.7, 0.75)
        elif SMALL_SCALE.search(text):
            add(FactorType.REVENUE, "small", -0.6, 0.75)

        # Professional practice
        if PROFESSIONAL.search(text):
            add(FactorType.PROFESSIONAL_SERVICES, "yes", 0.7, 0.8)

        if factors:
            logger.debug(
                f"Extracted {len(factors)} factors: "
                f"{', '.join(f.describe() for f in factors)}"
            )
        return factors


def extract(answer_text: str, question_context: Optional[str] = "") -> List[BusinessFactor]:
    """Module-level convenience wrapper."""
    return EvidenceExtractor().extract(answer_text, question_context)
