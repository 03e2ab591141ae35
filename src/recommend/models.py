"""Recommendation types passed between the generator, the guardrails and the API."""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from src.config import DISCLAIMER


class ContentItem(BaseModel):
    id: str
    title: str
    description: str = ""
    url: Optional[str] = None
    category: str = "general"


class EligibilityVerdict(BaseModel):
    """Outcome of checking a partner offer against the user's profile."""

    eligible: bool
    reasons: List[str] = Field(default_factory=list)
    disqualifiers: List[str] = Field(default_factory=list)


class CandidateRecommendation(BaseModel):
    """A generated recommendation before any guardrail has run. Never persisted."""

    item: ContentItem
    rationale: str = ""
    ai_rationale: Optional[str] = None
    eligibility: Optional[EligibilityVerdict] = None

    def tone_fields(self) -> dict:
        return {
            "title": self.item.title,
            "description": self.item.description,
            "rationale": self.rationale,
        }

    def to_filtered_item(self) -> dict:
        """Serialize a candidate that passed every guardrail for storage."""
        data = self.item.model_dump()
        data["rationale"] = self.rationale
        data["ai_rationale"] = self.ai_rationale
        if self.eligibility is not None:
            data["eligibility"] = self.eligibility.model_dump()
        return data


class CandidateSet(BaseModel):
    education: List[CandidateRecommendation] = Field(default_factory=list)
    partner_offers: List[CandidateRecommendation] = Field(default_factory=list)


class RecommendationResponse(BaseModel):
    """What a user sees for a recommendations request.

    status is "approved" for an operator-approved snapshot, "pending" while a
    review awaits a decision (content withheld) and "none" for freshly
    generated content that has just been queued for review.
    """

    user_id: int
    status: Literal["approved", "pending", "none"]
    education_items: List[dict] = Field(default_factory=list)
    partner_offers: List[dict] = Field(default_factory=list)
    review_id: Optional[int] = None
    approved_at: Optional[str] = None
    message: Optional[str] = None
    disclaimer: str = DISCLAIMER
