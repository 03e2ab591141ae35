"""Eligibility guardrails for partner offers.

Two halves live here. check_offer_eligibility() produces a verdict for a
catalog offer from the user's signals; the generator attaches it to each
candidate. The filter functions then keep or drop candidates purely from
those verdicts, so they stay deterministic and order preserving.
"""

from typing import Any, Dict, List, Tuple

from src.recommend.models import CandidateRecommendation, EligibilityVerdict
from src.utils.logging import get_logger

logger = get_logger("guardrails.eligibility")

# Predatory products are never offered, whatever the user's profile.
PROHIBITED_PRODUCT_TYPES = [
    "payday loan",
    "title loan",
    "cash advance",
    "rent-to-own",
    "buy here pay here",
]


def is_prohibited_product(offer: Dict[str, Any]) -> bool:
    """Check whether an offer is one of the prohibited product types."""
    haystack = " ".join(
        str(offer.get(field) or "") for field in ("product_type", "title", "summary")
    ).lower()
    return any(product in haystack for product in PROHIBITED_PRODUCT_TYPES)


def check_offer_eligibility(offer: Dict[str, Any], signals: Dict[str, Any]) -> EligibilityVerdict:
    """Evaluate a catalog offer's eligibility criteria against user signals.

    Supported criteria:
    - credit_utilization: {"min": x, "max": y} as a fraction of total limit
    - is_overdue: {"equals": bool}
    - savings_balance: {"min": amount}
    - subscription_count: {"min": n}
    - monthly_recurring: {"min": amount}

    A criterion whose signal is missing disqualifies the offer.

    Args:
        offer: Catalog offer with optional eligibility_criteria
        signals: User behavioral signals

    Returns:
        EligibilityVerdict with the reasons met and the disqualifiers hit
    """
    if is_prohibited_product(offer):
        return EligibilityVerdict(
            eligible=False,
            disqualifiers=["This product type is prohibited (predatory product)"],
        )

    criteria = offer.get("eligibility_criteria") or {}
    credit = signals.get("credit_utilization") or {}
    savings = signals.get("savings_behavior") or {}
    subscriptions = signals.get("subscriptions") or {}

    reasons = []
    disqualifiers = []

    if "credit_utilization" in criteria:
        bounds = criteria["credit_utilization"]
        total = credit.get("total_utilization")
        if total is None:
            disqualifiers.append("Credit utilization unknown")
        else:
            utilization = total / 100.0
            if "min" in bounds and utilization < bounds["min"]:
                disqualifiers.append(f"Requires credit utilization of at least {bounds['min']:.0%}")
            elif "max" in bounds and utilization > bounds["max"]:
                disqualifiers.append(f"Requires credit utilization below {bounds['max']:.0%}. Current: {utilization:.0%}")
            else:
                reasons.append(f"Credit utilization {utilization:.0%} within range")

    if "is_overdue" in criteria:
        expected = criteria["is_overdue"].get("equals")
        actual = bool(credit.get("is_overdue"))
        if actual != expected:
            disqualifiers.append("Not available while an account is overdue" if actual else "Requires an overdue account")
        else:
            reasons.append("No overdue accounts" if not actual else "Overdue account present")

    minimums = [
        ("savings_balance", savings.get("total_savings"), "savings balance"),
        ("subscription_count", len(subscriptions.get("recurring_merchants") or []) if subscriptions else None, "active subscriptions"),
        ("monthly_recurring", subscriptions.get("monthly_recurring"), "monthly recurring spend"),
    ]
    for key, actual, label in minimums:
        if key not in criteria:
            continue
        required = criteria[key]["min"]
        if actual is None or actual < required:
            disqualifiers.append(f"Requires {label} of at least {required}")
        else:
            reasons.append(f"{label.capitalize()} {actual} meets minimum {required}")

    return EligibilityVerdict(eligible=not disqualifiers, reasons=reasons, disqualifiers=disqualifiers)


def is_eligible(candidate: CandidateRecommendation, require_verdict: bool = False) -> bool:
    """Whether a candidate passes the eligibility guardrail.

    Args:
        candidate: Candidate recommendation
        require_verdict: Drop candidates that carry no verdict (used for partner offers)
    """
    if candidate.eligibility is None:
        return not require_verdict
    return candidate.eligibility.eligible


def partition_candidates(
    candidates: List[CandidateRecommendation],
    require_verdict: bool = False
) -> Tuple[List[CandidateRecommendation], List[CandidateRecommendation]]:
    """Split candidates into (kept, dropped), preserving input order in both."""
    kept = []
    dropped = []
    for candidate in candidates:
        if is_eligible(candidate, require_verdict):
            kept.append(candidate)
        else:
            dropped.append(candidate)
    return kept, dropped


def filter_candidates(
    candidates: List[CandidateRecommendation],
    require_verdict: bool = False
) -> List[CandidateRecommendation]:
    kept, _ = partition_candidates(candidates, require_verdict)
    return kept


def describe_drop(candidate: CandidateRecommendation) -> dict:
    """Audit entry for a candidate the eligibility guardrail removed."""
    verdict = candidate.eligibility
    return {
        "id": candidate.item.id,
        "title": candidate.item.title,
        "reasons": list(verdict.reasons) if verdict else [],
        "disqualifiers": list(verdict.disqualifiers) if verdict else ["No eligibility verdict"],
    }


def recheck_served_offers(offers: List[dict]) -> Tuple[List[dict], List[dict]]:
    """Re-apply the eligibility rule to stored partner offers before serving them.

    Stored offers are plain dicts with an "eligibility" entry. Anything without
    an explicit eligible=True verdict is withheld.

    Returns:
        (servable, withheld)
    """
    servable = []
    withheld = []
    for offer in offers:
        verdict = offer.get("eligibility") or {}
        if verdict.get("eligible") is True:
            servable.append(offer)
        else:
            withheld.append(offer)

    if withheld:
        logger.warning(
            f"Withheld {len(withheld)} stored offer(s) failing eligibility: "
            f"{[offer.get('id') for offer in withheld]}"
        )
    return servable, withheld
