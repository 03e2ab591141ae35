"""Tests for the review ledger."""

import sqlite3
import threading

import pytest

from src.api.exceptions import InvalidInputError, InvalidTransitionError, ReviewNotFoundError
from src.database import db
from src.review.ledger import LOCK_STRIPES, ReviewLedger
from src.review.models import ReviewStatus, can_transition, is_terminal


class TestReviewStatus:
    def test_only_pending_has_transitions(self):
        assert can_transition(ReviewStatus.PENDING, ReviewStatus.APPROVED)
        assert can_transition(ReviewStatus.PENDING, ReviewStatus.OVERRIDDEN)
        assert not can_transition(ReviewStatus.APPROVED, ReviewStatus.OVERRIDDEN)
        assert not can_transition(ReviewStatus.OVERRIDDEN, ReviewStatus.PENDING)

    def test_terminal_states(self):
        assert is_terminal(ReviewStatus.APPROVED)
        assert is_terminal(ReviewStatus.OVERRIDDEN)
        assert not is_terminal(ReviewStatus.PENDING)


class TestUpsertPending:
    """At most one pending review per user."""

    def test_creates_pending_review(self, ledger, user_id, sample_recommendation_data):
        review = ledger.upsert_pending(user_id, sample_recommendation_data, {"persona": "high_utilization"})

        assert review.status == ReviewStatus.PENDING
        assert review.user_id == user_id
        assert review.recommendation_data == sample_recommendation_data
        assert review.decision_trace == {"persona": "high_utilization"}
        assert review.flagged is False
        assert review.education_items()[0]["id"] == "edu_1"

    def test_replaces_content_in_place(self, ledger, user_id, sample_recommendation_data):
        first = ledger.upsert_pending(user_id, sample_recommendation_data, {})
        second = ledger.upsert_pending(user_id, {"education": [], "partner_offers": []}, {"cycle": 2})

        assert second.review_id == first.review_id
        assert second.recommendation_data == {"education": [], "partner_offers": []}
        assert len(ledger.list_for_user(user_id)) == 1

    def test_new_pending_after_decision(self, ledger, user_id, sample_recommendation_data):
        first = ledger.upsert_pending(user_id, sample_recommendation_data, {})
        ledger.transition(first.review_id, ReviewStatus.APPROVED, None, "op")

        second = ledger.upsert_pending(user_id, sample_recommendation_data, {})

        assert second.review_id != first.review_id
        assert ledger.get(first.review_id).status == ReviewStatus.APPROVED

    def test_concurrent_upserts_leave_one_pending(self, db_path, user_id, sample_recommendation_data):
        """Writers from separate ledgers (separate locks) still converge on one row."""
        ledgers = [ReviewLedger(db_path=db_path) for _ in range(2)]
        errors = []

        def write(index):
            try:
                ledgers[index % 2].upsert_pending(user_id, sample_recommendation_data, {"writer": index})
            except Exception as e:  # collected for the assertion below
                errors.append(e)

        threads = [threading.Thread(target=write, args=(i,)) for i in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        pending = db.list_reviews(status="pending", user_id=user_id, db_path=db_path)
        assert len(pending) == 1

    def test_schema_rejects_second_pending_row(self, db_path, user_id):
        insert = (
            "INSERT INTO recommendation_reviews (user_id, recommendation_data, status, created_at) "
            "VALUES (?, '{}', 'pending', '2025-01-01T00:00:00')"
        )
        conn = db.get_connection(db_path)
        try:
            conn.execute(insert, (user_id,))
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(insert, (user_id,))
        finally:
            conn.close()


class TestLockStripes:
    def test_users_in_the_same_stripe_share_a_lock(self, ledger):
        assert ledger._lock_for(1) is ledger._lock_for(1 + LOCK_STRIPES)
        assert ledger._lock_for(1) is not ledger._lock_for(2)

    def test_lock_count_does_not_grow_with_users(self, ledger, db_path, sample_recommendation_data):
        for _ in range(3):
            uid = db.create_user("Striped User", db_path=db_path)
            ledger.upsert_pending(uid, sample_recommendation_data, {})

        for uid in range(10_000):
            ledger._lock_for(uid)

        assert len(ledger._locks) == LOCK_STRIPES


class TestTransition:
    """Pending reviews move once to a terminal state."""

    def test_approve(self, ledger, user_id, sample_recommendation_data):
        pending = ledger.upsert_pending(user_id, sample_recommendation_data, {})
        review = ledger.transition(pending.review_id, ReviewStatus.APPROVED, "Looks good", "op@example.com")

        assert review.status == ReviewStatus.APPROVED
        assert review.operator_notes == "Looks good"
        assert review.reviewed_by == "op@example.com"
        assert review.reviewed_at is not None
        assert review.is_terminal
        assert ledger.find_pending(user_id) is None
        assert ledger.find_approved(user_id).review_id == review.review_id

    def test_accepts_status_string(self, ledger, user_id, sample_recommendation_data):
        pending = ledger.upsert_pending(user_id, sample_recommendation_data, {})
        assert ledger.transition(pending.review_id, "overridden", "no").status == ReviewStatus.OVERRIDDEN

    @pytest.mark.parametrize("target", [ReviewStatus.APPROVED, ReviewStatus.OVERRIDDEN])
    def test_terminal_reviews_are_immutable(self, ledger, user_id, sample_recommendation_data, target):
        pending = ledger.upsert_pending(user_id, sample_recommendation_data, {})
        ledger.transition(pending.review_id, ReviewStatus.APPROVED, "first", "op")

        with pytest.raises(InvalidTransitionError) as exc_info:
            ledger.transition(pending.review_id, target, "second", "other-op")

        assert exc_info.value.current_status == "approved"
        unchanged = ledger.get(pending.review_id)
        assert unchanged.operator_notes == "first"
        assert unchanged.reviewed_by == "op"

    def test_pending_is_not_a_target(self, ledger, user_id, sample_recommendation_data):
        pending = ledger.upsert_pending(user_id, sample_recommendation_data, {})
        with pytest.raises(InvalidInputError):
            ledger.transition(pending.review_id, ReviewStatus.PENDING)

    def test_unknown_status(self, ledger):
        with pytest.raises(InvalidInputError):
            ledger.transition(1, "archived")

    def test_missing_review(self, ledger):
        with pytest.raises(ReviewNotFoundError):
            ledger.transition(404, ReviewStatus.APPROVED)

    def test_latest_approval_wins(self, ledger, user_id, sample_recommendation_data):
        first = ledger.upsert_pending(user_id, sample_recommendation_data, {})
        ledger.transition(first.review_id, ReviewStatus.APPROVED, None, "op")
        second = ledger.upsert_pending(user_id, {"education": [], "partner_offers": []}, {})
        ledger.transition(second.review_id, ReviewStatus.APPROVED, None, "op")

        assert ledger.find_approved(user_id).review_id == second.review_id


class TestFlags:
    def test_flag_and_unflag(self, ledger, user_id, sample_recommendation_data):
        pending = ledger.upsert_pending(user_id, sample_recommendation_data, {})

        flagged = ledger.set_flag(pending.review_id, True, "Check offer wording")
        assert flagged.flagged is True
        assert flagged.flag_reason == "Check offer wording"

        unflagged = ledger.set_flag(pending.review_id, False)
        assert unflagged.flagged is False
        assert unflagged.flag_reason is None

    def test_cannot_flag_decided_review(self, ledger, user_id, sample_recommendation_data):
        pending = ledger.upsert_pending(user_id, sample_recommendation_data, {})
        ledger.transition(pending.review_id, ReviewStatus.OVERRIDDEN, "no", "op")

        with pytest.raises(InvalidTransitionError):
            ledger.set_flag(pending.review_id, True, "late")

    def test_flag_missing_review(self, ledger):
        with pytest.raises(ReviewNotFoundError):
            ledger.set_flag(404, True)


class TestListing:
    def test_list_pending_sorting(self, ledger, db_path, sample_recommendation_data):
        first_user = db.create_user("First", db_path=db_path)
        second_user = db.create_user("Second", db_path=db_path)
        ledger.upsert_pending(second_user, sample_recommendation_data, {})
        ledger.upsert_pending(first_user, sample_recommendation_data, {})

        assert [r.user_id for r in ledger.list_pending("newest")] == [first_user, second_user]
        assert [r.user_id for r in ledger.list_pending("oldest")] == [second_user, first_user]
        assert [r.user_id for r in ledger.list_pending("user")] == [first_user, second_user]

    def test_list_pending_excludes_decided(self, ledger, user_id, sample_recommendation_data):
        pending = ledger.upsert_pending(user_id, sample_recommendation_data, {})
        ledger.transition(pending.review_id, ReviewStatus.APPROVED, None, "op")

        assert ledger.list_pending() == []
        assert len(ledger.list_all()) == 1
        assert len(ledger.list_all(status="approved")) == 1

    def test_invalid_sort(self, ledger):
        with pytest.raises(InvalidInputError):
            ledger.list_pending("priority")
