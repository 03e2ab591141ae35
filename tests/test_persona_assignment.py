"""Tests for persona assignment functionality."""

import pytest

from src.api.exceptions import InsufficientDataError
from src.database import db
from src.personas import assignment


def test_high_utilization_assignment(realistic_signals):
    """Test that a user with 68% utilization gets the high_utilization persona."""
    persona, criteria = assignment.classify_persona(realistic_signals)
    assert persona == assignment.PERSONA_HIGH_UTILIZATION
    assert criteria


def test_overdue_account_is_high_utilization():
    signals = {"credit_utilization": {"total_utilization": 10.0, "is_overdue": True, "accounts": []}}
    assert assignment.check_high_utilization(signals) is True


def test_single_card_over_half_is_high_utilization():
    signals = {"credit_utilization": {"total_utilization": 20.0, "accounts": [{"utilization": 55.0}]}}
    assert assignment.check_high_utilization(signals) is True


def test_variable_income_assignment():
    signals = {
        "credit_utilization": {"total_utilization": 10.0, "accounts": []},
        "income_stability": {"median_pay_gap": 60, "cash_flow_buffer": 0.5},
    }
    assert assignment.classify_persona(signals)[0] == assignment.PERSONA_VARIABLE_INCOME


def test_variable_income_needs_low_buffer():
    signals = {"income_stability": {"irregular_frequency": True, "cash_flow_buffer": 2.0}}
    assert assignment.check_variable_income(signals) is False


def test_subscription_heavy_assignment():
    signals = {
        "subscriptions": {
            "recurring_merchants": ["Netflix", "Spotify", "Hulu"],
            "monthly_recurring": 62.97,
            "subscription_share": 4.0,
        }
    }
    assert assignment.classify_persona(signals)[0] == assignment.PERSONA_SUBSCRIPTION_HEAVY


def test_savings_builder_assignment():
    signals = {
        "credit_utilization": {"total_utilization": 12.0, "accounts": [{"utilization": 12.0}]},
        "savings_behavior": {"growth_rate": 3.0, "net_inflow": 0.0},
    }
    assert assignment.classify_persona(signals)[0] == assignment.PERSONA_SAVINGS_BUILDER


def test_savings_builder_blocked_by_card_utilization():
    signals = {
        "credit_utilization": {"total_utilization": 12.0, "accounts": [{"utilization": 35.0}]},
        "savings_behavior": {"net_inflow": 500.0},
    }
    assert assignment.check_savings_builder(signals) is False


def test_priority_order():
    """High utilization wins over subscription-heavy when both match."""
    signals = {
        "credit_utilization": {"total_utilization": 70.0, "accounts": []},
        "subscriptions": {"recurring_merchants": ["a", "b", "c"], "monthly_recurring": 80.0},
    }
    assert assignment.classify_persona(signals)[0] == assignment.PERSONA_HIGH_UTILIZATION


def test_no_match_is_general_wellness():
    assert assignment.classify_persona({}) == (assignment.PERSONA_GENERAL_WELLNESS, [])


def test_unknown_signal_values_are_general_wellness(sparse_signals):
    assert assignment.classify_persona(sparse_signals) == (assignment.PERSONA_GENERAL_WELLNESS, [])
    assert assignment.check_high_utilization(sparse_signals) is False
    assert assignment.check_variable_income(sparse_signals) is False
    assert assignment.check_subscription_heavy(sparse_signals) is False
    assert assignment.check_savings_builder(sparse_signals) is False


class TestGeneratePersonaProfile:
    """Tests for the default persona-profile provider."""

    def test_classifies_and_stores(self, db_path, user_id, realistic_signals):
        db.store_user_signals(user_id, realistic_signals, db_path=db_path)

        persona, signals = assignment.generate_persona_profile(user_id, db_path=db_path)

        assert persona["persona"] == assignment.PERSONA_HIGH_UTILIZATION
        assert signals == realistic_signals
        stored = db.get_persona_assignment(user_id, db_path=db_path)
        assert stored["persona"] == assignment.PERSONA_HIGH_UTILIZATION

    def test_uses_stored_assignment(self, db_path, user_id, realistic_signals):
        db.store_user_signals(user_id, realistic_signals, db_path=db_path)
        db.store_persona_assignment(user_id, assignment.PERSONA_SAVINGS_BUILDER, ["manual"], db_path=db_path)

        persona, _ = assignment.generate_persona_profile(user_id, db_path=db_path)

        assert persona == {"persona": assignment.PERSONA_SAVINGS_BUILDER, "criteria_met": ["manual"]}

    def test_no_signals(self, db_path, user_id):
        with pytest.raises(InsufficientDataError):
            assignment.generate_persona_profile(user_id, db_path=db_path)
