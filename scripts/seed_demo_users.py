#!/usr/bin/env python3
"""
Seed the local SQLite database with demo users for ClearPath.

Creates one user per persona with behavioral signals, and grants data
processing consent to all but the last one so the consent gate can be tried
from the API.

Usage:
    python scripts/seed_demo_users.py [--db-path data/clearpath.db] [--with-ai-consent]
"""

import argparse
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from src.config import DB_PATH
from src.database import db
from src.personas.assignment import classify_persona
from src.utils.logging import get_logger

logger = get_logger("scripts.seed_demo_users")

DEMO_USERS = [
    {
        "name": "Hannah Martinez",
        "email": "hannah@demo.com",
        "consent": True,
        "signals": {
            "credit_utilization": {
                "total_utilization": 68.0,
                "interest_charged": 42.17,
                "minimum_payment_only": False,
                "is_overdue": False,
                "accounts": [{"account_id": "card_1", "balance": 3400.0, "limit": 5000.0, "utilization": 68.0}],
            },
            "savings_behavior": {"total_savings": 250.0, "growth_rate": 0.0, "net_inflow": 0.0},
            "subscriptions": {"recurring_merchants": ["Netflix"], "monthly_recurring": 15.49, "subscription_share": 1.2},
            "income_stability": {"median_pay_gap": 14, "irregular_frequency": False, "cash_flow_buffer": 0.4},
        },
    },
    {
        "name": "Sam Patel",
        "email": "sam@demo.com",
        "consent": True,
        "signals": {
            "credit_utilization": {"total_utilization": 12.0, "interest_charged": 0.0, "accounts": []},
            "savings_behavior": {"total_savings": 1800.0, "growth_rate": 0.0, "net_inflow": 50.0},
            "subscriptions": {
                "recurring_merchants": ["Netflix", "Spotify", "Hulu", "Adobe", "Peloton"],
                "monthly_recurring": 128.45,
                "subscription_share": 14.0,
            },
            "income_stability": {"median_pay_gap": 14, "irregular_frequency": False, "cash_flow_buffer": 1.8},
        },
    },
    {
        "name": "Riley Chen",
        "email": "riley@demo.com",
        "consent": True,
        "signals": {
            "credit_utilization": {"total_utilization": 8.0, "interest_charged": 0.0, "accounts": []},
            "savings_behavior": {"total_savings": 6200.0, "growth_rate": 4.5, "net_inflow": 420.0},
            "subscriptions": {"recurring_merchants": [], "monthly_recurring": 0.0, "subscription_share": 0.0},
            "income_stability": {"median_pay_gap": 14, "irregular_frequency": False, "cash_flow_buffer": 3.2},
        },
    },
    {
        "name": "Jordan Lee",
        "email": "jordan@demo.com",
        "consent": False,
        "signals": {
            "credit_utilization": {"total_utilization": 22.0, "interest_charged": 0.0, "accounts": []},
            "savings_behavior": {"total_savings": 300.0, "growth_rate": 0.0, "net_inflow": 0.0},
            "subscriptions": {"recurring_merchants": [], "monthly_recurring": 0.0, "subscription_share": 0.0},
            "income_stability": {"median_pay_gap": 60, "irregular_frequency": True, "cash_flow_buffer": 0.3},
        },
    },
]


def seed(db_path: str, with_ai_consent: bool = False) -> list:
    """Create the demo users and return their ids."""
    db.init_schema(db_path)

    user_ids = []
    for demo in DEMO_USERS:
        user_id = db.create_user(demo["name"], demo["email"], db_path=db_path)
        db.store_user_signals(user_id, demo["signals"], db_path=db_path)

        persona, criteria_met = classify_persona(demo["signals"])
        db.store_persona_assignment(user_id, persona, criteria_met, db_path=db_path)

        if demo["consent"]:
            db.store_consent(user_id, "data_processing", True, ip_address="127.0.0.1", db_path=db_path)
            if with_ai_consent:
                db.store_consent(user_id, "ai_features", True, ip_address="127.0.0.1", db_path=db_path)

        logger.info(f"Seeded user {user_id} ({demo['email']}) as {persona}, consent={demo['consent']}")
        user_ids.append(user_id)

    return user_ids


def main():
    parser = argparse.ArgumentParser(description="Seed ClearPath demo users")
    parser.add_argument("--db-path", default=DB_PATH, help="SQLite database path")
    parser.add_argument("--with-ai-consent", action="store_true", help="Also grant ai_features consent")
    args = parser.parse_args()

    user_ids = seed(args.db_path, with_ai_consent=args.with_ai_consent)
    logger.info(f"Seeded {len(user_ids)} demo users into {args.db_path}")


if __name__ == "__main__":
    main()
