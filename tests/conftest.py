"""Pytest configuration for ClearPath tests.

This file adds the project root to sys.path so that imports like
`from src.review.ledger import ReviewLedger` work correctly, and provides a
temporary SQLite database with fake generator collaborators.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock
import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.database import db
from src.guardrails.consent_gate import ConsentGate
from src.recommend.cache import RecommendationCache
from src.recommend.models import CandidateRecommendation, CandidateSet, ContentItem, EligibilityVerdict
from src.recommend.orchestrator import RecommendationOrchestrator
from src.review.ledger import ReviewLedger
from src.review.operator_service import OperatorReviewService


@pytest.fixture
def realistic_signals():
    """Fixture providing realistic signal data for a high-utilization user."""
    return {
        "subscriptions": {
            "monthly_recurring": 15.49,
            "recurring_merchants": ["Netflix"],
            "subscription_share": 1.2
        },
        "credit_utilization": {
            "is_overdue": False,
            "total_utilization": 68.0,
            "minimum_payment_only": False,
            "accounts": [
                {
                    "account_id": "card_1",
                    "balance": 3400.0,
                    "limit": 5000.0,
                    "utilization": 68.0
                }
            ],
            "interest_charged": 42.17
        },
        "savings_behavior": {
            "total_savings": 250.0,
            "growth_rate": 0.0,
            "net_inflow": 0.0
        },
        "income_stability": {
            "cash_flow_buffer": 0.4,
            "median_pay_gap": 14,
            "irregular_frequency": False
        }
    }


@pytest.fixture
def sparse_signals():
    """Signal groups present but every value unknown (None)."""
    return {
        "credit_utilization": {
            "total_utilization": None,
            "interest_charged": None,
            "is_overdue": None,
            "minimum_payment_only": None,
            "accounts": [{"account_id": "card_1", "balance": None, "utilization": None}],
        },
        "subscriptions": {"recurring_merchants": None, "monthly_recurring": None, "subscription_share": None},
        "savings_behavior": {"total_savings": None, "growth_rate": None, "net_inflow": None},
        "income_stability": {"cash_flow_buffer": None, "median_pay_gap": None, "irregular_frequency": None},
    }


@pytest.fixture
def db_path(tmp_path):
    """Temporary SQLite database with the schema applied."""
    path = str(tmp_path / "clearpath_test.db")
    db.init_schema(path)
    return path


@pytest.fixture
def user_id(db_path):
    return db.create_user("Test User", "test@example.com", db_path=db_path)


@pytest.fixture
def consented_user(db_path, user_id):
    db.store_consent(user_id, "data_processing", True, db_path=db_path)
    return user_id


@pytest.fixture
def cache():
    return RecommendationCache(ttl_seconds=600)


@pytest.fixture
def ledger(db_path):
    return ReviewLedger(db_path=db_path)


@pytest.fixture
def consent_gate(cache, db_path):
    return ConsentGate(cache, db_path=db_path)


@pytest.fixture
def operator_service(ledger):
    return OperatorReviewService(ledger)


def make_candidate(item_id, title, description="", rationale="A helpful next step for you.",
                   eligible=None, ai_rationale=None):
    """Build a CandidateRecommendation; eligible=None leaves it without a verdict."""
    verdict = None
    if eligible is not None:
        verdict = EligibilityVerdict(
            eligible=eligible,
            reasons=["Meets criteria"] if eligible else [],
            disqualifiers=[] if eligible else ["Requires credit utilization below 90%"],
        )
    return CandidateRecommendation(
        item=ContentItem(id=item_id, title=title, description=description),
        rationale=rationale,
        ai_rationale=ai_rationale,
        eligibility=verdict,
    )


@pytest.fixture
def scenario_candidates():
    """Two education items (one off-tone) and two offers (one ineligible)."""
    return CandidateSet(
        education=[
            make_candidate("edu_1", "Understanding Credit Utilization",
                           rationale="Your cards are at 68% of their limit."),
            make_candidate("edu_2", "Stop Your Overspending",
                           rationale="Cutting back helps."),
        ],
        partner_offers=[
            make_candidate("offer_1", "Balance Transfer Card",
                           rationale="Could lower your interest costs.", eligible=True),
            make_candidate("offer_2", "Premium Rewards Card",
                           rationale="Earn points on purchases.", eligible=False),
        ],
    )


@pytest.fixture
def profile_provider(realistic_signals):
    return MagicMock(
        return_value=({"persona": "high_utilization", "criteria_met": ["credit_utilization >= 0.50"]},
                      realistic_signals)
    )


@pytest.fixture
def candidate_generator(scenario_candidates):
    return MagicMock(return_value=scenario_candidates)


@pytest.fixture
def orchestrator(consent_gate, ledger, cache, profile_provider, candidate_generator):
    return RecommendationOrchestrator(
        consent_gate=consent_gate,
        ledger=ledger,
        cache=cache,
        profile_provider=profile_provider,
        candidate_generator=candidate_generator,
        generator_timeout=5,
    )


@pytest.fixture
def sample_recommendation_data():
    return {
        "education": [
            {"id": "edu_1", "title": "Understanding Credit Utilization", "description": "",
             "rationale": "Your cards are at 68% of their limit.", "ai_rationale": None},
        ],
        "partner_offers": [
            {"id": "offer_1", "title": "Balance Transfer Card", "description": "",
             "rationale": "Could lower your interest costs.", "ai_rationale": None,
             "eligibility": {"eligible": True, "reasons": ["Meets criteria"], "disqualifiers": []}},
        ],
        "summary": {"total_recommendations": 2, "education_count": 1, "partner_offers_count": 1},
    }


@pytest.fixture
def candidate_factory():
    return make_candidate
