"""Per-request coordination of the guarded recommendation pipeline.

For each request the orchestrator decides which view the user gets:

1. No data-processing consent: ConsentNotGrantedError, generator never called.
2. An approved review: its snapshot, with partner offers re-checked for eligibility.
3. A pending review: an empty placeholder; pending content is never exposed.
4. Neither: a new generation cycle. Candidates pass the eligibility, rationale
   and tone guardrails, the result is written as the user's pending review,
   and the freshly filtered items are returned to the requesting user.
"""

import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Callable, List, Optional, Tuple

from src.api.exceptions import ConsentNotGrantedError, GenerationTimeoutError, StorageUnavailableError
from src.config import GENERATOR_MAX_WORKERS, GENERATOR_TIMEOUT_SECONDS, PENDING_REVIEW_MESSAGE
from src.guardrails.consent_gate import ConsentGate, ConsentKind
from src.guardrails.eligibility_filter import describe_drop, partition_candidates, recheck_served_offers
from src.guardrails.tone_validator import validate_content
from src.recommend.cache import RecommendationCache
from src.recommend.models import CandidateRecommendation, CandidateSet, RecommendationResponse
from src.review.ledger import ReviewLedger
from src.review.models import Review
from src.traces.decision_trace import build_decision_trace
from src.utils.logging import get_logger

logger = get_logger("recommend.orchestrator")

PROFILE_CACHE_KEY = "persona_profile"

SECTIONS = ("education", "partner_offers")


class GenerationCycle:
    """Output of one generation cycle, ready to persist."""

    def __init__(self, education: List[dict], partner_offers: List[dict], decision_trace: dict):
        self.education = education
        self.partner_offers = partner_offers
        self.decision_trace = decision_trace

    @property
    def recommendation_data(self) -> dict:
        return {
            "education": self.education,
            "partner_offers": self.partner_offers,
            "summary": {
                "total_recommendations": len(self.education) + len(self.partner_offers),
                "education_count": len(self.education),
                "partner_offers_count": len(self.partner_offers),
            },
        }


class RecommendationOrchestrator:
    """Serves recommendations through consent, review state and guardrails.

    Args:
        consent_gate: Consent lookups (also validates the user exists)
        ledger: Review ledger
        cache: Per-user cache; persona profiles are cached here
        profile_provider: Callable (user_id) -> (persona, signals)
        candidate_generator: Callable (user_id, persona, signals) -> CandidateSet
        generator_timeout: Seconds allowed for profile + candidate generation
        executor: Thread pool running the generation work
    """

    def __init__(
        self,
        consent_gate: ConsentGate,
        ledger: ReviewLedger,
        cache: RecommendationCache,
        profile_provider: Callable,
        candidate_generator: Callable,
        generator_timeout: float = GENERATOR_TIMEOUT_SECONDS,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.consent_gate = consent_gate
        self.ledger = ledger
        self.cache = cache
        self.profile_provider = profile_provider
        self.candidate_generator = candidate_generator
        self.generator_timeout = generator_timeout
        self.executor = executor or ThreadPoolExecutor(
            max_workers=GENERATOR_MAX_WORKERS,
            thread_name_prefix="clearpath-generator",
        )
        self._stats_lock = threading.Lock()
        self.audit_write_failures = 0

    def get_recommendations(self, user_id: int) -> RecommendationResponse:
        """Return the view of recommendations this user is entitled to right now.

        Raises:
            UserNotFoundError: Unknown user
            ConsentNotGrantedError: Data processing consent absent or revoked
            InsufficientDataError: No persona or signals for the user
            GenerationTimeoutError: Generation exceeded its time budget (retryable)
        """
        self._require_consent(user_id)

        approved = self.ledger.find_approved(user_id)
        if approved is not None:
            return self._serve_approved(approved)

        pending = self.ledger.find_pending(user_id)
        if pending is not None:
            return RecommendationResponse(
                user_id=user_id,
                status="pending",
                review_id=pending.review_id,
                message=PENDING_REVIEW_MESSAGE,
            )

        cycle = self._run_cycle(user_id)

        review_id = None
        try:
            review = self.ledger.upsert_pending(user_id, cycle.recommendation_data, cycle.decision_trace)
            review_id = review.review_id
        except StorageUnavailableError as e:
            with self._stats_lock:
                self.audit_write_failures += 1
            logger.error(
                f"Could not queue recommendations for review (user {user_id}); "
                f"serving unaudited result: {e.message}"
            )

        return RecommendationResponse(
            user_id=user_id,
            status="none",
            education_items=cycle.education,
            partner_offers=cycle.partner_offers,
            review_id=review_id,
        )

    def refresh(self, user_id: int) -> Review:
        """Run a new generation cycle into the user's pending review.

        Used by operators to regenerate content. Consent is still required and
        storage failures are raised, since there is no user response to protect.
        """
        self._require_consent(user_id)
        cycle = self._run_cycle(user_id)
        return self.ledger.upsert_pending(user_id, cycle.recommendation_data, cycle.decision_trace)

    def get_stats(self) -> dict:
        with self._stats_lock:
            return {"audit_write_failures": self.audit_write_failures}

    def _require_consent(self, user_id: int) -> None:
        if not self.consent_gate.is_granted(user_id, ConsentKind.DATA_PROCESSING):
            logger.info(f"Recommendations refused for user {user_id}: consent not granted")
            raise ConsentNotGrantedError(user_id, "User consent is required to generate recommendations")

    def _serve_approved(self, review: Review) -> RecommendationResponse:
        offers, _ = recheck_served_offers(review.partner_offers())
        return RecommendationResponse(
            user_id=review.user_id,
            status="approved",
            education_items=review.education_items(),
            partner_offers=offers,
            review_id=review.review_id,
            approved_at=review.reviewed_at,
        )

    def _load_profile(self, user_id: int) -> Tuple[dict, dict]:
        cached = self.cache.get(user_id, PROFILE_CACHE_KEY)
        if cached is not None:
            return cached

        generation = self.cache.generation(user_id)
        profile = self.profile_provider(user_id)
        self.cache.set(user_id, PROFILE_CACHE_KEY, profile, generation=generation)
        return profile

    def _generate(self, user_id: int):
        persona, signals = self._load_profile(user_id)
        candidates = self.candidate_generator(user_id, persona, signals)
        return persona, signals, candidates

    def _run_cycle(self, user_id: int) -> GenerationCycle:
        future = self.executor.submit(self._generate, user_id)
        try:
            persona, signals, candidates = future.result(timeout=self.generator_timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(f"Generation for user {user_id} timed out after {self.generator_timeout}s")
            raise GenerationTimeoutError(user_id, self.generator_timeout)

        if not isinstance(candidates, CandidateSet):
            candidates = CandidateSet(**candidates)

        ai_allowed = self.consent_gate.is_granted(user_id, ConsentKind.AI_FEATURES)
        return self._apply_guardrails(persona, signals, candidates, ai_allowed)

    def _apply_guardrails(self, persona, signals, candidates: CandidateSet, ai_allowed: bool) -> GenerationCycle:
        candidate_counts = {section: len(getattr(candidates, section)) for section in SECTIONS}

        eligibility = {"checked": 0, "passed": 0, "dropped": 0, "dropped_items": []}
        rationale = {"checked": 0, "passed": 0, "dropped": 0, "dropped_items": []}
        tone = {"checked": 0, "passed": 0, "dropped": 0, "dropped_items": [], "ai_rationales_removed": 0}
        ai_stripped = 0

        selected = {}
        for section in SECTIONS:
            items = [item.model_copy() for item in getattr(candidates, section)]

            if not ai_allowed:
                for item in items:
                    if item.ai_rationale:
                        item.ai_rationale = None
                        ai_stripped += 1

            # Offers without a verdict fail closed.
            kept, dropped = partition_candidates(items, require_verdict=(section == "partner_offers"))
            eligibility["checked"] += len(items)
            eligibility["passed"] += len(kept)
            eligibility["dropped"] += len(dropped)
            eligibility["dropped_items"].extend(describe_drop(item) for item in dropped)

            kept = self._require_rationale(kept, rationale)
            kept = self._validate_tone(kept, tone)
            selected[section] = [item.to_filtered_item() for item in kept]

        consent = {"data_processing": True, "ai_features": ai_allowed, "ai_rationales_stripped": ai_stripped}
        trace = build_decision_trace(
            persona=persona,
            signals=signals,
            consent=consent,
            eligibility=eligibility,
            tone=tone,
            rationale=rationale,
            candidate_counts=candidate_counts,
            selected_counts={section: len(items) for section, items in selected.items()},
        )

        if eligibility["dropped"] or tone["dropped"] or rationale["dropped"]:
            logger.info(
                f"Guardrails dropped {eligibility['dropped']} ineligible, "
                f"{rationale['dropped']} without rationale and {tone['dropped']} off-tone item(s)"
            )

        return GenerationCycle(selected["education"], selected["partner_offers"], trace)

    @staticmethod
    def _require_rationale(items: List[CandidateRecommendation], report: dict) -> List[CandidateRecommendation]:
        kept = []
        for item in items:
            report["checked"] += 1
            if item.rationale and item.rationale.strip():
                kept.append(item)
                report["passed"] += 1
            else:
                report["dropped"] += 1
                report["dropped_items"].append({"id": item.item.id, "title": item.item.title})
        return kept

    @staticmethod
    def _validate_tone(items: List[CandidateRecommendation], report: dict) -> List[CandidateRecommendation]:
        kept = []
        for item in items:
            report["checked"] += 1
            result = validate_content(item.tone_fields())
            if not result["is_valid"]:
                report["dropped"] += 1
                report["dropped_items"].append({
                    "id": item.item.id,
                    "title": item.item.title,
                    "violations": result["violations"],
                    "categories": result["categories"],
                })
                continue

            if item.ai_rationale:
                ai_result = validate_content({
                    "title": item.item.title,
                    "description": item.item.description,
                    "rationale": item.ai_rationale,
                })
                if not ai_result["is_valid"]:
                    item.ai_rationale = None
                    report["ai_rationales_removed"] += 1

            report["passed"] += 1
            kept.append(item)
        return kept
