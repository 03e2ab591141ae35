"""Persona assignment and the default persona-profile provider.

Personas are checked in priority order and the first match wins; users who
match none fall back to general wellness.
"""

from typing import Any, Dict, List, Optional, Tuple

from src.api.exceptions import InsufficientDataError
from src.database.db_config import call_backend
from src.utils.logging import get_logger

logger = get_logger("personas")

PERSONA_HIGH_UTILIZATION = "high_utilization"
PERSONA_VARIABLE_INCOME = "variable_income"
PERSONA_SUBSCRIPTION_HEAVY = "subscription_heavy"
PERSONA_SAVINGS_BUILDER = "savings_builder"
PERSONA_GENERAL_WELLNESS = "general_wellness"


def _as_fraction(percent: Optional[float]) -> float:
    return percent / 100.0 if percent else 0.0


def check_high_utilization(signals: Dict[str, Any]) -> bool:
    """Utilization at or above 50% on any card or overall, interest charges,
    minimum-only payments or an overdue account.
    """
    credit = signals.get("credit_utilization") or {}
    if not credit:
        return False

    if _as_fraction(credit.get("total_utilization")) >= 0.50:
        return True
    if (credit.get("interest_charged") or 0.0) > 0:
        return True
    if credit.get("minimum_payment_only") or credit.get("is_overdue"):
        return True
    return any(_as_fraction(acc.get("utilization")) >= 0.50 for acc in credit.get("accounts") or [])


def check_variable_income(signals: Dict[str, Any]) -> bool:
    """Irregular pay (median gap over 45 days or flagged irregular) with under a month of buffer."""
    income = signals.get("income_stability") or {}
    if not income:
        return False

    irregular = (income.get("median_pay_gap") or 0) > 45 or bool(income.get("irregular_frequency"))
    return irregular and (income.get("cash_flow_buffer") or 0.0) < 1.0


def check_subscription_heavy(signals: Dict[str, Any]) -> bool:
    subscriptions = signals.get("subscriptions") or {}
    if not subscriptions:
        return False

    enough_merchants = len(subscriptions.get("recurring_merchants") or []) >= 3
    high_spend = (
        (subscriptions.get("monthly_recurring") or 0.0) >= 50.0 or
        _as_fraction(subscriptions.get("subscription_share")) >= 0.10
    )
    return enough_merchants and high_spend


def check_savings_builder(signals: Dict[str, Any]) -> bool:
    """Growing savings (2%+ growth or $200+ net inflow) while every card stays under 30%."""
    savings = signals.get("savings_behavior") or {}
    if not savings:
        return False

    growing = _as_fraction(savings.get("growth_rate")) >= 0.02 or (savings.get("net_inflow") or 0.0) >= 200.0
    if not growing:
        return False

    credit = signals.get("credit_utilization") or {}
    if _as_fraction(credit.get("total_utilization")) >= 0.30:
        return False
    return all(_as_fraction(acc.get("utilization")) < 0.30 for acc in credit.get("accounts") or [])


PERSONA_CHECKS = [
    (PERSONA_HIGH_UTILIZATION, check_high_utilization,
     "credit_utilization >= 0.50 OR interest_charged > 0 OR minimum_payment_only OR is_overdue"),
    (PERSONA_VARIABLE_INCOME, check_variable_income,
     "(median_pay_gap > 45 days OR irregular_frequency) AND cash_flow_buffer < 1.0"),
    (PERSONA_SUBSCRIPTION_HEAVY, check_subscription_heavy,
     "recurring_merchants >= 3 AND (monthly_recurring >= 50 OR subscription_share >= 0.10)"),
    (PERSONA_SAVINGS_BUILDER, check_savings_builder,
     "(savings_growth_rate >= 0.02 OR net_savings_inflow >= 200) AND all_credit_utilization < 0.30"),
]


def classify_persona(signals: Dict[str, Any]) -> Tuple[str, List[str]]:
    """Pick the highest-priority persona whose criteria the signals meet.

    Returns:
        (persona name, criteria met)
    """
    for persona, check, criteria in PERSONA_CHECKS:
        if check(signals):
            return persona, [criteria]
    return PERSONA_GENERAL_WELLNESS, []


def generate_persona_profile(
    user_id: int,
    db_path: Optional[str] = None,
    use_firestore: bool = False
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Load a user's persona and signals for recommendation generation.

    Uses the stored persona assignment when present, otherwise classifies the
    stored signals and records the result.

    Args:
        user_id: User ID
        db_path: SQLite database path (ignored for Firestore)
        use_firestore: Read from Firestore instead of SQLite

    Returns:
        (persona, signals) where persona is {"persona", "criteria_met"}

    Raises:
        InsufficientDataError: If no signals have been computed for the user
    """
    signals = call_backend("get_user_signals", user_id, use_firestore=use_firestore, db_path=db_path)
    if not signals:
        raise InsufficientDataError(user_id, f"No behavioral signals computed for user {user_id}")

    assignment = call_backend("get_persona_assignment", user_id, use_firestore=use_firestore, db_path=db_path)
    if assignment is None:
        persona, criteria_met = classify_persona(signals)
        call_backend(
            "store_persona_assignment", user_id, persona, criteria_met,
            use_firestore=use_firestore, db_path=db_path
        )
        logger.info(f"Assigned persona {persona} to user {user_id}")
        assignment = {"persona": persona, "criteria_met": criteria_met}

    return {"persona": assignment["persona"], "criteria_met": assignment.get("criteria_met", [])}, signals
