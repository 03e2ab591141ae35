"""Rationale rendering for catalog recommendations.

Templates reference signal values with {placeholder} names; each one is
filled from the user's signals and formatted for display.
"""

import re
from typing import Dict, Any


def format_currency(amount: float) -> str:
    """Format amount as currency string (e.g. "$1,234.56")."""
    if amount < 0:
        return f"-${abs(amount):,.2f}"
    return f"${amount:,.2f}"


def format_percentage(value: float) -> str:
    """Format a percentage value (68.0 -> "68.0%")."""
    return f"{value:.1f}%"


def _placeholder_values(signals: Dict[str, Any]) -> Dict[str, str]:
    # Missing or None signal values render as zero.
    credit = signals.get("credit_utilization") or {}
    accounts = credit.get("accounts") or []
    subscriptions = signals.get("subscriptions") or {}
    savings = signals.get("savings_behavior") or {}
    income = signals.get("income_stability") or {}

    values = {
        "utilization": format_percentage(credit.get("total_utilization") or 0.0),
        "interest_charged": format_currency(credit.get("interest_charged") or 0.0),
        "total_balance": format_currency(sum(acc.get("balance") or 0.0 for acc in accounts)),
        "subscription_count": str(len(subscriptions.get("recurring_merchants") or [])),
        "monthly_recurring": format_currency(subscriptions.get("monthly_recurring") or 0.0),
        "total_savings": format_currency(savings.get("total_savings") or 0.0),
        "growth_rate": format_percentage(savings.get("growth_rate") or 0.0),
        "cash_flow_buffer": f"{income.get('cash_flow_buffer') or 0.0:.1f}",
        "median_pay_gap": str(income.get("median_pay_gap") or 0),
    }
    return values


def generate_rationale(template: str, signals: Dict[str, Any]) -> str:
    """Generate a personalized rationale by substituting signal values in a template.

    Unknown placeholders are removed rather than left in the text.

    Args:
        template: Rationale template with {placeholder} variables
        signals: Dictionary of the user's computed signals

    Returns:
        Rationale string with variables substituted
    """
    values = _placeholder_values(signals or {})

    def substitute(match):
        return values.get(match.group(1), "")

    rationale = re.sub(r"\{([^}]+)\}", substitute, template or "")
    return re.sub(r"\s{2,}", " ", rationale).strip()
