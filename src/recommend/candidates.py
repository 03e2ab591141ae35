"""Default candidate generator backed by the content catalog.

Selects education items and partner offers for the user's persona, renders
their rationales from signals and attaches an eligibility verdict to every
offer. Ranking is catalog order.
"""

from typing import Any, Dict, List

from src.config import RECOMMENDATION_LIMITS
from src.guardrails.eligibility_filter import check_offer_eligibility
from src.personas.assignment import PERSONA_GENERAL_WELLNESS
from src.recommend.content_catalog import get_content_by_persona, get_offers_by_persona
from src.recommend.models import CandidateRecommendation, CandidateSet, ContentItem
from src.recommend.rationale_generator import generate_rationale
from src.utils.logging import get_logger

logger = get_logger("recommend.candidates")


def _education_candidate(item: Dict[str, Any], signals: Dict[str, Any]) -> CandidateRecommendation:
    return CandidateRecommendation(
        item=ContentItem(
            id=item["content_id"],
            title=item["title"],
            description=item.get("summary", ""),
            url=item.get("url"),
            category=item.get("category", "general"),
        ),
        rationale=generate_rationale(item.get("rationale_template", ""), signals),
    )


def _offer_candidate(offer: Dict[str, Any], signals: Dict[str, Any]) -> CandidateRecommendation:
    return CandidateRecommendation(
        item=ContentItem(
            id=offer["offer_id"],
            title=offer["title"],
            description=offer.get("summary", ""),
            url=offer.get("url"),
            category=offer.get("category", "general"),
        ),
        rationale=generate_rationale(offer.get("rationale_template", ""), signals),
        eligibility=check_offer_eligibility(offer, signals),
    )


def _persona_name(persona: Any) -> str:
    if isinstance(persona, dict):
        return persona.get("persona") or PERSONA_GENERAL_WELLNESS
    return persona or PERSONA_GENERAL_WELLNESS


def generate_candidates(user_id: int, persona: Any, signals: Dict[str, Any]) -> CandidateSet:
    """Build the candidate set for a user.

    Education items for the persona are topped up from general wellness content
    to reach the minimum count. Every offer for the persona is returned with
    its verdict; the eligibility guardrail decides which survive, so the number
    of offers is capped only after counting the eligible ones.

    Args:
        user_id: User ID
        persona: Persona assignment dict or persona name
        signals: User behavioral signals

    Returns:
        CandidateSet with education and partner_offers
    """
    name = _persona_name(persona)
    edu_limits = RECOMMENDATION_LIMITS["education"]
    offer_limits = RECOMMENDATION_LIMITS["partner_offers"]

    education_items = get_content_by_persona(name)
    if len(education_items) < edu_limits["min"] and name != PERSONA_GENERAL_WELLNESS:
        education_items += get_content_by_persona(PERSONA_GENERAL_WELLNESS)
    education = [_education_candidate(item, signals) for item in education_items[:edu_limits["max"]]]

    offers: List[CandidateRecommendation] = []
    eligible_count = 0
    for offer in get_offers_by_persona(name):
        candidate = _offer_candidate(offer, signals)
        if candidate.eligibility.eligible:
            if eligible_count >= offer_limits["max"]:
                continue
            eligible_count += 1
        offers.append(candidate)

    logger.debug(
        f"Generated {len(education)} education and {len(offers)} offer candidates "
        f"({eligible_count} eligible) for user {user_id} ({name})"
    )
    return CandidateSet(education=education, partner_offers=offers)
