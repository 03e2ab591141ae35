"""Durable ledger of recommendation reviews.

Each generation cycle writes its filtered output here as a pending review.
A user has at most one pending review; regenerating replaces its content in
place. Approved and overridden reviews are terminal and are never modified.
"""

import threading
from typing import Optional, List

from src.api.exceptions import (
    InvalidInputError,
    InvalidTransitionError,
    ReviewNotFoundError,
)
from src.database.db_config import call_backend
from src.review.models import Review, ReviewStatus, can_transition
from src.utils.logging import get_logger

logger = get_logger("review.ledger")

QUEUE_SORT_OPTIONS = ("newest", "oldest", "user")

# Upserts for users sharing a stripe serialize on the same lock
LOCK_STRIPES = 64


class ReviewLedger:
    """Review storage with the pending-uniqueness and terminal-state rules.

    Args:
        db_path: SQLite database path (ignored for Firestore)
        use_firestore: Store reviews in Firestore instead of SQLite
    """

    def __init__(self, db_path: Optional[str] = None, use_firestore: bool = False):
        self.db_path = db_path
        self.use_firestore = use_firestore
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]

    def _call(self, name: str, *args, **kwargs):
        return call_backend(name, *args, use_firestore=self.use_firestore, db_path=self.db_path, **kwargs)

    def _lock_for(self, user_id: int) -> threading.Lock:
        return self._locks[hash(user_id) % LOCK_STRIPES]

    @staticmethod
    def _to_review(row: Optional[dict]) -> Optional[Review]:
        return Review(**row) if row else None

    def get(self, review_id: int) -> Optional[Review]:
        return self._to_review(self._call("get_review", review_id))

    def find_pending(self, user_id: int) -> Optional[Review]:
        return self._to_review(self._call("get_pending_review", user_id))

    def find_approved(self, user_id: int) -> Optional[Review]:
        """Most recently approved review for the user, if any."""
        return self._to_review(self._call("get_latest_approved_review", user_id))

    def upsert_pending(self, user_id: int, recommendation_data: dict, decision_trace: dict) -> Review:
        """Write a generation cycle's output as the user's pending review.

        Updates the existing pending review when there is one, otherwise
        creates it. The per-user lock serializes writers inside this process;
        the storage layer makes the write itself atomic across processes.

        Args:
            user_id: User ID
            recommendation_data: {education, partner_offers, summary}
            decision_trace: Audit trace for the cycle

        Returns:
            The pending review
        """
        with self._lock_for(user_id):
            row = self._call("upsert_pending_review", user_id, recommendation_data, decision_trace)

        review = Review(**row)
        logger.info(f"Pending review {review.review_id} written for user {user_id}")
        return review

    def transition(
        self,
        review_id: int,
        new_status,
        notes: Optional[str] = None,
        reviewed_by: Optional[str] = None
    ) -> Review:
        """Move a pending review to approved or overridden.

        Args:
            review_id: Review ID
            new_status: ReviewStatus.APPROVED or ReviewStatus.OVERRIDDEN
            notes: Operator notes
            reviewed_by: Operator identity

        Returns:
            The updated review

        Raises:
            InvalidInputError: If new_status is not a terminal status
            ReviewNotFoundError: If the review does not exist
            InvalidTransitionError: If the review is no longer pending
        """
        try:
            target = ReviewStatus(new_status)
        except ValueError:
            raise InvalidInputError(f"Unknown review status: {new_status}", field="status")

        if not can_transition(ReviewStatus.PENDING, target):
            raise InvalidInputError(
                f"Reviews can only move to approved or overridden, not {target.value}",
                field="status"
            )

        updated = self._call("update_review_status", review_id, target.value, notes, reviewed_by)
        if not updated:
            current = self.get(review_id)
            if current is None:
                raise ReviewNotFoundError(review_id)
            raise InvalidTransitionError(review_id, current.status.value, target.value)

        review = self.get(review_id)
        logger.info(f"Review {review_id} {target.value} by {reviewed_by}")
        return review

    def set_flag(self, review_id: int, flagged: bool, reason: Optional[str] = None) -> Review:
        """Flag or unflag a pending review for operator attention."""
        updated = self._call("set_review_flag", review_id, flagged, reason)
        if not updated:
            current = self.get(review_id)
            if current is None:
                raise ReviewNotFoundError(review_id)
            raise InvalidTransitionError(review_id, current.status.value, "flagged" if flagged else "unflagged")
        return self.get(review_id)

    def list_pending(self, sort_by: str = "newest") -> List[Review]:
        """Pending reviews across all users.

        Args:
            sort_by: 'newest' (default), 'oldest' or 'user'
        """
        if sort_by not in QUEUE_SORT_OPTIONS:
            raise InvalidInputError(
                f"sort must be one of: {', '.join(QUEUE_SORT_OPTIONS)}",
                field="sort"
            )
        rows = self._call("list_reviews", status=ReviewStatus.PENDING.value, order=sort_by)
        return [Review(**row) for row in rows]

    def list_for_user(self, user_id: int) -> List[Review]:
        rows = self._call("list_reviews", user_id=user_id, order="newest")
        return [Review(**row) for row in rows]

    def list_all(self, status: Optional[str] = None) -> List[Review]:
        rows = self._call("list_reviews", status=status, order="newest")
        return [Review(**row) for row in rows]
