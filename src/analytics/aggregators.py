"""Review-queue metrics for the operator dashboard.

Computed from review records so the same numbers come out of either
storage backend:
- Counts by status and flagged reviews
- Approval and override rates over decided reviews
- Time from generation to decision, and the age of the oldest pending review
- Guardrail drop totals from decision traces
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from src.review.models import Review, ReviewStatus
from src.traces.decision_trace import guardrail_drop_totals
from src.utils.logging import get_logger

logger = get_logger("analytics")


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.warning(f"Unparseable timestamp in review metrics: {value}")
        return None


def compute_review_metrics(reviews: List[Review], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Aggregate operator metrics over a set of reviews.

    Args:
        reviews: Reviews in any status
        now: Reference time for pending ages (defaults to datetime.now())

    Returns:
        Dictionary with status counts, decision rates, latency and guardrail totals
    """
    now = now or datetime.now()

    metrics = {
        "total_reviews": len(reviews),
        "status_counts": {status.value: 0 for status in ReviewStatus},
        "flagged_count": 0,
        "approval_rate": 0.0,
        "override_rate": 0.0,
        "avg_decision_seconds": None,
        "oldest_pending_seconds": None,
        "guardrail_drops": {"eligibility": 0, "tone": 0, "rationale": 0},
    }

    decision_seconds = []
    oldest_pending = None

    for review in reviews:
        metrics["status_counts"][review.status.value] += 1
        if review.flagged:
            metrics["flagged_count"] += 1

        for name, count in guardrail_drop_totals(review.decision_trace).items():
            metrics["guardrail_drops"][name] += count

        created = _parse_timestamp(review.created_at)
        if review.status == ReviewStatus.PENDING:
            if created and (oldest_pending is None or created < oldest_pending):
                oldest_pending = created
            continue

        reviewed = _parse_timestamp(review.reviewed_at)
        if created and reviewed:
            decision_seconds.append((reviewed - created).total_seconds())

    decided = (
        metrics["status_counts"][ReviewStatus.APPROVED.value] +
        metrics["status_counts"][ReviewStatus.OVERRIDDEN.value]
    )
    if decided:
        metrics["approval_rate"] = round(metrics["status_counts"][ReviewStatus.APPROVED.value] / decided, 3)
        metrics["override_rate"] = round(metrics["status_counts"][ReviewStatus.OVERRIDDEN.value] / decided, 3)

    if decision_seconds:
        metrics["avg_decision_seconds"] = round(sum(decision_seconds) / len(decision_seconds), 1)

    if oldest_pending is not None:
        metrics["oldest_pending_seconds"] = round((now - oldest_pending).total_seconds(), 1)

    return metrics
