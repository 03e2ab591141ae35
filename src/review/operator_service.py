"""Operator-facing review workflow: the approval queue and its decisions.

Every decision and flag is also written to the operator_actions audit trail.
"""

from typing import List, Optional

from src.api.exceptions import ReviewNotFoundError, StorageUnavailableError
from src.config import DEFAULT_REVIEWER
from src.database.db_config import call_backend
from src.review.ledger import ReviewLedger
from src.review.models import Review, ReviewStatus
from src.utils.logging import get_logger

logger = get_logger("review.operator")


class OperatorReviewService:
    """Approve, override and flag pending reviews.

    Args:
        ledger: Review ledger holding the reviews
    """

    def __init__(self, ledger: ReviewLedger):
        self.ledger = ledger

    def get_review_queue(self, sort_by: str = "newest") -> List[Review]:
        """Pending reviews awaiting a decision, newest first by default."""
        return self.ledger.list_pending(sort_by)

    def get_review(self, review_id: int) -> Review:
        review = self.ledger.get(review_id)
        if review is None:
            raise ReviewNotFoundError(review_id)
        return review

    def get_user_history(self, user_id: int) -> List[Review]:
        return self.ledger.list_for_user(user_id)

    def approve(
        self,
        review_id: int,
        notes: Optional[str] = None,
        reviewed_by: Optional[str] = None
    ) -> Review:
        """Approve a pending review so its snapshot is served to the user.

        Args:
            review_id: Review ID
            notes: Optional operator notes
            reviewed_by: Operator identity (defaults to DEFAULT_REVIEWER)

        Returns:
            The approved review

        Raises:
            ReviewNotFoundError: If the review does not exist
            InvalidTransitionError: If the review is not pending
        """
        reviewer = reviewed_by or DEFAULT_REVIEWER
        review = self.ledger.transition(review_id, ReviewStatus.APPROVED, notes, reviewer)
        self._record_action(reviewer, review, "approve", notes)
        return review

    def override(
        self,
        review_id: int,
        notes: Optional[str] = None,
        reviewed_by: Optional[str] = None
    ) -> Review:
        """Reject a pending review. The user's next request starts a new cycle.

        Args:
            review_id: Review ID
            notes: Reason for the override
            reviewed_by: Operator identity (defaults to DEFAULT_REVIEWER)

        Returns:
            The overridden review
        """
        if not notes or not notes.strip():
            logger.warning(f"Review {review_id} overridden without notes")

        reviewer = reviewed_by or DEFAULT_REVIEWER
        review = self.ledger.transition(review_id, ReviewStatus.OVERRIDDEN, notes, reviewer)
        self._record_action(reviewer, review, "override", notes)
        return review

    def flag(self, review_id: int, reason: Optional[str] = None, operator_id: Optional[str] = None) -> Review:
        review = self.ledger.set_flag(review_id, True, reason)
        self._record_action(operator_id or DEFAULT_REVIEWER, review, "flag", reason)
        return review

    def unflag(self, review_id: int, operator_id: Optional[str] = None) -> Review:
        review = self.ledger.set_flag(review_id, False)
        self._record_action(operator_id or DEFAULT_REVIEWER, review, "unflag", None)
        return review

    def get_actions(self, user_id: Optional[int] = None, limit: Optional[int] = None) -> list:
        return call_backend(
            "get_operator_actions",
            user_id=user_id,
            limit=limit,
            use_firestore=self.ledger.use_firestore,
            db_path=self.ledger.db_path
        )

    def record_regeneration(self, operator_id: str, review: Review) -> None:
        self._record_action(operator_id, review, "regenerate", None)

    def _record_action(self, operator_id: str, review: Review, action_type: str, reason: Optional[str]) -> None:
        # The decision is already committed; a lost audit entry is logged, not raised.
        try:
            call_backend(
                "store_operator_action",
                operator_id,
                review.user_id,
                action_type,
                reason,
                review.review_id,
                use_firestore=self.ledger.use_firestore,
                db_path=self.ledger.db_path
            )
        except StorageUnavailableError as e:
            logger.error(f"Could not record {action_type} of review {review.review_id}: {e.message}")
