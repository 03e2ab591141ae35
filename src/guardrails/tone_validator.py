"""Tone guardrails for ClearPath recommendations.

This module validates that recommendation text uses supportive, non-shaming
language and avoids prohibited phrases.
"""

from typing import Dict, List, Optional

# Prohibited phrases by category. Matching is case-insensitive substring.
PHRASE_CATEGORIES: Dict[str, List[str]] = {
    "shaming": [
        "overspending",
        "bad habits",
        "bad habit",
        "wasteful",
        "irresponsible",
        "should be ashamed",
    ],
    "judgmental": [
        "poor choices",
        "poor choice",
        "careless",
        "reckless",
        "lazy",
    ],
    "negative_framing": [
        "you failed",
        "you can't afford",
        "you're broke",
        "drowning in debt",
        "financial mess",
    ],
    "comparison": [
        "unlike most people",
        "everyone else",
        "other people your age",
        "worse than average",
    ],
    "pressure": [
        "act now",
        "don't miss out",
        "last chance",
        "before it's too late",
    ],
}

HIGH_SEVERITY_CATEGORIES = {"shaming", "judgmental"}

PROHIBITED_PHRASES = [phrase for phrases in PHRASE_CATEGORIES.values() for phrase in phrases]

# Fields judged together for a recommendation item
CONTENT_FIELDS = ("title", "description", "rationale")


def check_prohibited_phrases(text: str) -> list[str]:
    """Find all prohibited phrases in text.

    Args:
        text: Text to check

    Returns:
        List of prohibited phrases found (empty if none found)
    """
    if not text:
        return []

    text_lower = text.lower()
    return [phrase for phrase in PROHIBITED_PHRASES if phrase in text_lower]


def categorize_phrase(phrase: str) -> Optional[str]:
    for category, phrases in PHRASE_CATEGORIES.items():
        if phrase in phrases:
            return category
    return None


def validate_content(content: Dict[str, Optional[str]]) -> dict:
    """Validate a recommendation's title, description and rationale as one unit.

    The fields are joined with newlines before matching, so a violation in any
    one of them fails the whole item and no phrase can straddle two fields.

    Args:
        content: Mapping with title, description and rationale (missing or None fields are empty)

    Returns:
        Dictionary with is_valid, violations (phrases found), categories and severity
    """
    combined = "\n".join((content.get(field) or "") for field in CONTENT_FIELDS)
    violations = check_prohibited_phrases(combined)

    categories = []
    for phrase in violations:
        category = categorize_phrase(phrase)
        if category and category not in categories:
            categories.append(category)

    severity = None
    if categories:
        severity = "high" if HIGH_SEVERITY_CATEGORIES.intersection(categories) else "medium"

    return {
        "is_valid": not violations,
        "violations": violations,
        "categories": categories,
        "severity": severity,
    }
