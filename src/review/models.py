"""Review record and its status lifecycle."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    OVERRIDDEN = "overridden"


# pending is the only state with outgoing edges.
ALLOWED_TRANSITIONS = {
    ReviewStatus.PENDING: frozenset({ReviewStatus.APPROVED, ReviewStatus.OVERRIDDEN}),
    ReviewStatus.APPROVED: frozenset(),
    ReviewStatus.OVERRIDDEN: frozenset(),
}


def can_transition(current: ReviewStatus, target: ReviewStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def is_terminal(status: ReviewStatus) -> bool:
    return not ALLOWED_TRANSITIONS[status]


class Review(BaseModel):
    """One generation cycle's filtered output, frozen for operator review."""

    review_id: int
    user_id: int
    recommendation_data: dict
    decision_trace: dict = Field(default_factory=dict)
    status: ReviewStatus
    operator_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    flagged: bool = False
    flag_reason: Optional[str] = None
    created_at: str

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    def education_items(self) -> list:
        return list(self.recommendation_data.get("education", []))

    def partner_offers(self) -> list:
        return list(self.recommendation_data.get("partner_offers", []))
