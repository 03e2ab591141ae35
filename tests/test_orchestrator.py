"""Tests for the recommendation orchestrator.

Covers the user-facing serving rules end to end against a temporary SQLite
database, with the persona and candidate generators replaced by mocks.
"""

import threading

import pytest
from unittest.mock import MagicMock, patch

from src.api.exceptions import (
    ConsentNotGrantedError,
    GenerationTimeoutError,
    InsufficientDataError,
    StorageUnavailableError,
    UserNotFoundError,
)
from src.config import PENDING_REVIEW_MESSAGE
from src.database import db
from src.recommend.models import CandidateSet
from src.recommend.orchestrator import PROFILE_CACHE_KEY, RecommendationOrchestrator
from src.review.models import ReviewStatus


class TestConsent:
    """No data-processing consent means no generation at all."""

    def test_no_consent_is_forbidden(self, orchestrator, user_id, profile_provider, candidate_generator, ledger):
        with pytest.raises(ConsentNotGrantedError):
            orchestrator.get_recommendations(user_id)

        profile_provider.assert_not_called()
        candidate_generator.assert_not_called()
        assert ledger.list_for_user(user_id) == []

    def test_revoked_consent_is_forbidden(self, orchestrator, consent_gate, consented_user):
        consent_gate.revoke(consented_user)
        with pytest.raises(ConsentNotGrantedError):
            orchestrator.get_recommendations(consented_user)

    def test_revoked_consent_hides_approved_snapshot(self, orchestrator, operator_service, consent_gate, consented_user):
        first = orchestrator.get_recommendations(consented_user)
        operator_service.approve(first.review_id)
        consent_gate.revoke(consented_user)

        with pytest.raises(ConsentNotGrantedError):
            orchestrator.get_recommendations(consented_user)

    def test_unknown_user(self, orchestrator):
        with pytest.raises(UserNotFoundError):
            orchestrator.get_recommendations(9999)


class TestGenerationCycle:
    """Guardrails applied to a fresh generation cycle."""

    def test_guardrails_filter_and_queue_review(self, orchestrator, consented_user, ledger):
        response = orchestrator.get_recommendations(consented_user)

        assert response.status == "none"
        assert [item["id"] for item in response.education_items] == ["edu_1"]
        assert [item["id"] for item in response.partner_offers] == ["offer_1"]
        assert response.review_id is not None
        assert response.disclaimer

        review = ledger.find_pending(consented_user)
        assert review.review_id == response.review_id
        assert review.recommendation_data["summary"]["total_recommendations"] == 2

        guardrails = review.decision_trace["guardrails"]
        assert guardrails["eligibility"]["dropped"] == 1
        assert guardrails["eligibility"]["dropped_items"][0]["id"] == "offer_2"
        assert guardrails["tone_validated"]["dropped"] == 1
        assert guardrails["tone_validated"]["dropped_items"][0]["violations"] == ["overspending"]
        assert guardrails["rationale_present"]["dropped"] == 0
        assert review.decision_trace["persona"] == "high_utilization"
        assert review.decision_trace["counts"]["candidates"] == {"education": 2, "partner_offers": 2}
        assert review.decision_trace["counts"]["selected"] == {"education": 1, "partner_offers": 1}

    def test_stored_offers_are_all_eligible(self, orchestrator, consented_user, ledger):
        orchestrator.get_recommendations(consented_user)

        for offer in ledger.find_pending(consented_user).partner_offers():
            assert offer["eligibility"]["eligible"] is True

    def test_offer_without_verdict_is_dropped(self, orchestrator, candidate_generator, consented_user,
                                              candidate_factory):
        candidate_generator.return_value = CandidateSet(
            education=[candidate_factory("edu_1", "Budgeting Basics")],
            partner_offers=[candidate_factory("offer_x", "Savings Account")],
        )

        response = orchestrator.get_recommendations(consented_user)

        assert [item["id"] for item in response.education_items] == ["edu_1"]
        assert response.partner_offers == []

    def test_missing_rationale_is_dropped(self, orchestrator, candidate_generator, consented_user,
                                          candidate_factory, ledger):
        candidate_generator.return_value = CandidateSet(
            education=[
                candidate_factory("edu_1", "Budgeting Basics", rationale="   "),
                candidate_factory("edu_2", "Emergency Funds"),
            ],
        )

        response = orchestrator.get_recommendations(consented_user)

        assert [item["id"] for item in response.education_items] == ["edu_2"]
        trace = ledger.find_pending(consented_user).decision_trace
        assert trace["guardrails"]["rationale_present"]["dropped"] == 1

    def test_dict_candidates_are_accepted(self, orchestrator, candidate_generator, consented_user,
                                          scenario_candidates):
        candidate_generator.return_value = {
            "education": scenario_candidates.education,
            "partner_offers": scenario_candidates.partner_offers,
        }

        response = orchestrator.get_recommendations(consented_user)
        assert len(response.education_items) == 1

    def test_generator_receives_profile(self, orchestrator, candidate_generator, consented_user, realistic_signals):
        orchestrator.get_recommendations(consented_user)

        user, persona, signals = candidate_generator.call_args[0]
        assert user == consented_user
        assert persona["persona"] == "high_utilization"
        assert signals == realistic_signals

    def test_insufficient_data(self, orchestrator, profile_provider, consented_user, ledger):
        profile_provider.side_effect = InsufficientDataError(consented_user)

        with pytest.raises(InsufficientDataError):
            orchestrator.get_recommendations(consented_user)
        assert ledger.list_for_user(consented_user) == []


class TestAIRationales:
    """AI rationales require ai_features consent and pass the tone check separately."""

    @pytest.fixture
    def ai_candidates(self, candidate_generator, candidate_factory):
        candidate_generator.return_value = CandidateSet(
            education=[
                candidate_factory("edu_1", "Budgeting Basics",
                                  ai_rationale="A plan tailored to your recent spending."),
                candidate_factory("edu_2", "Emergency Funds",
                                  ai_rationale="Act now to fix your spending."),
            ],
        )

    def test_stripped_without_ai_consent(self, orchestrator, consented_user, ai_candidates, ledger):
        response = orchestrator.get_recommendations(consented_user)

        assert [item["ai_rationale"] for item in response.education_items] == [None, None]
        consent = ledger.find_pending(consented_user).decision_trace["guardrails"]["consent"]
        assert consent["ai_features"] is False
        assert consent["ai_rationales_stripped"] == 2

    def test_kept_with_ai_consent(self, orchestrator, consent_gate, consented_user, ai_candidates, ledger):
        consent_gate.grant(consented_user, "ai_features")

        response = orchestrator.get_recommendations(consented_user)

        items = {item["id"]: item for item in response.education_items}
        assert items["edu_1"]["ai_rationale"] == "A plan tailored to your recent spending."
        # The off-tone AI text is removed but the item itself stays.
        assert items["edu_2"]["ai_rationale"] is None
        tone = ledger.find_pending(consented_user).decision_trace["guardrails"]["tone_validated"]
        assert tone["ai_rationales_removed"] == 1
        assert tone["dropped"] == 0


class TestReviewVisibility:
    """What a user sees once a review exists."""

    def test_pending_review_hides_content(self, orchestrator, consented_user, candidate_generator):
        first = orchestrator.get_recommendations(consented_user)
        second = orchestrator.get_recommendations(consented_user)

        assert second.status == "pending"
        assert second.education_items == []
        assert second.partner_offers == []
        assert second.review_id == first.review_id
        assert second.message == PENDING_REVIEW_MESSAGE
        assert candidate_generator.call_count == 1

    def test_approved_snapshot_is_served(self, orchestrator, operator_service, consented_user, candidate_generator):
        first = orchestrator.get_recommendations(consented_user)
        operator_service.approve(first.review_id, reviewed_by="op")

        response = orchestrator.get_recommendations(consented_user)

        assert response.status == "approved"
        assert response.review_id == first.review_id
        assert response.approved_at is not None
        assert [item["id"] for item in response.education_items] == ["edu_1"]
        assert [item["id"] for item in response.partner_offers] == ["offer_1"]
        assert candidate_generator.call_count == 1

    def test_approved_offers_are_rechecked(self, orchestrator, ledger, consented_user):
        data = {
            "education": [{"id": "edu_1", "title": "Budgeting Basics"}],
            "partner_offers": [
                {"id": "offer_ok", "title": "Savings Account", "eligibility": {"eligible": True}},
                {"id": "offer_bad", "title": "Loan", "eligibility": {"eligible": False}},
                {"id": "offer_none", "title": "Card"},
            ],
        }
        review = ledger.upsert_pending(consented_user, data, {})
        ledger.transition(review.review_id, ReviewStatus.APPROVED, None, "op")

        response = orchestrator.get_recommendations(consented_user)

        assert [offer["id"] for offer in response.partner_offers] == ["offer_ok"]

    def test_override_starts_new_cycle(self, orchestrator, operator_service, consented_user, candidate_generator):
        first = orchestrator.get_recommendations(consented_user)
        operator_service.override(first.review_id, notes="Regenerate with softer wording")

        response = orchestrator.get_recommendations(consented_user)

        assert response.status == "none"
        assert response.review_id != first.review_id
        assert candidate_generator.call_count == 2

    def test_approved_snapshot_served_while_newer_pending(self, orchestrator, operator_service, consented_user):
        first = orchestrator.get_recommendations(consented_user)
        operator_service.approve(first.review_id)
        refreshed = orchestrator.refresh(consented_user)

        response = orchestrator.get_recommendations(consented_user)

        assert refreshed.status == ReviewStatus.PENDING
        assert response.status == "approved"
        assert response.review_id == first.review_id


class TestRefresh:
    def test_refresh_replaces_pending_content(self, orchestrator, consented_user, candidate_generator,
                                              candidate_factory):
        first = orchestrator.get_recommendations(consented_user)
        candidate_generator.return_value = CandidateSet(education=[candidate_factory("edu_9", "Budgeting Basics")])

        review = orchestrator.refresh(consented_user)

        assert review.review_id == first.review_id
        assert [item["id"] for item in review.education_items()] == ["edu_9"]

    def test_refresh_requires_consent(self, orchestrator, user_id):
        with pytest.raises(ConsentNotGrantedError):
            orchestrator.refresh(user_id)

    def test_refresh_raises_storage_errors(self, orchestrator, ledger, consented_user):
        with patch.object(ledger, "upsert_pending", side_effect=StorageUnavailableError("locked")):
            with pytest.raises(StorageUnavailableError):
                orchestrator.refresh(consented_user)


class TestProfileCache:
    """Persona profiles are cached per user and dropped on consent changes."""

    def test_profile_is_cached(self, orchestrator, consented_user, profile_provider, cache):
        orchestrator.refresh(consented_user)
        orchestrator.refresh(consented_user)

        assert profile_provider.call_count == 1
        assert cache.get(consented_user, PROFILE_CACHE_KEY) is not None

    def test_revocation_forces_fresh_profile(self, orchestrator, consent_gate, consented_user, profile_provider):
        orchestrator.refresh(consented_user)
        consent_gate.revoke(consented_user)
        consent_gate.grant(consented_user)

        orchestrator.refresh(consented_user)

        assert profile_provider.call_count == 2


class TestFailures:
    def test_generation_timeout(self, consent_gate, ledger, cache, profile_provider, consented_user,
                                scenario_candidates):
        release = threading.Event()

        def slow_generator(user_id, persona, signals):
            release.wait(2)
            return scenario_candidates

        orchestrator = RecommendationOrchestrator(
            consent_gate=consent_gate,
            ledger=ledger,
            cache=cache,
            profile_provider=profile_provider,
            candidate_generator=slow_generator,
            generator_timeout=0.05,
        )
        try:
            with pytest.raises(GenerationTimeoutError) as exc_info:
                orchestrator.get_recommendations(consented_user)
        finally:
            release.set()
            orchestrator.executor.shutdown(wait=True)

        assert exc_info.value.retryable is True
        assert ledger.list_for_user(consented_user) == []

    def test_storage_failure_still_serves_content(self, orchestrator, ledger, consented_user):
        with patch.object(ledger, "upsert_pending", side_effect=StorageUnavailableError("database is locked")), \
             patch("src.recommend.orchestrator.logger") as mock_logger:
            response = orchestrator.get_recommendations(consented_user)

        assert response.status == "none"
        assert response.review_id is None
        assert [item["id"] for item in response.education_items] == ["edu_1"]
        assert orchestrator.get_stats() == {"audit_write_failures": 1}
        mock_logger.error.assert_called_once()


class TestConcurrency:
    def test_concurrent_requests_create_one_pending_review(self, orchestrator, consented_user, db_path):
        errors = []

        def request():
            try:
                orchestrator.get_recommendations(consented_user)
            except Exception as e:  # collected for the assertion below
                errors.append(e)

        threads = [threading.Thread(target=request) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        pending = db.list_reviews(status="pending", user_id=consented_user, db_path=db_path)
        assert len(pending) == 1
