"""Decision trace assembly for a recommendation generation cycle.

The trace is stored with every review so an operator can see which persona
and signals drove the cycle and what each guardrail kept or removed.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional


def _persona_name(persona: Any) -> Optional[str]:
    if isinstance(persona, dict):
        return persona.get("persona")
    return persona


def signals_used(signals: Dict[str, Any]) -> List[str]:
    """Names of the signal groups that carried data for this cycle."""
    return sorted(name for name, value in (signals or {}).items() if value)


def build_decision_trace(
    persona: Any,
    signals: Dict[str, Any],
    consent: Dict[str, bool],
    eligibility: Dict[str, Any],
    tone: Dict[str, Any],
    rationale: Dict[str, Any],
    candidate_counts: Dict[str, int],
    selected_counts: Dict[str, int],
) -> Dict[str, Any]:
    """Assemble the audit record for one generation cycle.

    Args:
        persona: Persona assignment ({"persona", "criteria_met"}) or a persona name
        signals: Behavioral signals the generator received
        consent: Consent flags checked for the cycle
        eligibility: {"checked", "passed", "dropped", "dropped_items"}
        tone: {"checked", "passed", "dropped", "dropped_items", "ai_rationales_removed"}
        rationale: {"checked", "passed", "dropped", "dropped_items"}
        candidate_counts: Candidates received per section
        selected_counts: Items that survived every guardrail per section

    Returns:
        JSON-serializable decision trace
    """
    criteria_met = persona.get("criteria_met", []) if isinstance(persona, dict) else []

    return {
        "persona": _persona_name(persona),
        "criteria_met": list(criteria_met),
        "signals_used": signals_used(signals),
        "guardrails": {
            "consent": dict(consent),
            "eligibility": eligibility,
            "rationale_present": rationale,
            "tone_validated": tone,
        },
        "counts": {
            "candidates": dict(candidate_counts),
            "selected": dict(selected_counts),
        },
        "generated_at": datetime.now().isoformat(),
    }


def guardrail_drop_totals(decision_trace: Dict[str, Any]) -> Dict[str, int]:
    """Per-guardrail drop counts from a stored trace (missing sections count as zero)."""
    guardrails = (decision_trace or {}).get("guardrails", {})
    return {
        "eligibility": guardrails.get("eligibility", {}).get("dropped", 0),
        "tone": guardrails.get("tone_validated", {}).get("dropped", 0),
        "rationale": guardrails.get("rationale_present", {}).get("dropped", 0),
    }
