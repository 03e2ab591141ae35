"""Runtime settings for ClearPath, read from the environment.

Values are resolved once at import time. The API entry point loads a .env
file (python-dotenv) before this module is imported.
"""

import os

# Storage
DB_PATH = os.getenv("CLEARPATH_DB_PATH", "data/clearpath.db")
SQLITE_TIMEOUT_SECONDS = float(os.getenv("SQLITE_TIMEOUT_SECONDS", "5"))

# Generation cycle
GENERATOR_TIMEOUT_SECONDS = float(os.getenv("GENERATOR_TIMEOUT_SECONDS", "10"))
GENERATOR_MAX_WORKERS = int(os.getenv("GENERATOR_MAX_WORKERS", "8"))

# Per-user cache (persona profiles)
RECOMMENDATION_CACHE_TTL = int(os.getenv("RECOMMENDATION_CACHE_TTL", "600"))

# Background sweep of expired cache entries and rate-limit windows
MAINTENANCE_INTERVAL_SECONDS = float(os.getenv("MAINTENANCE_INTERVAL_SECONDS", "300"))

# How many items the default generator selects per cycle
RECOMMENDATION_LIMITS = {
    "education": {"min": 3, "max": 5},
    "partner_offers": {"min": 1, "max": 3},
}

# Recorded as reviewed_by when an operator decision carries no identity
DEFAULT_REVIEWER = "operator"

MAX_OPERATOR_NOTES_LENGTH = 2000

DISCLAIMER = (
    "This is educational content, not financial advice. "
    "Please consult with a qualified financial advisor for personalized advice."
)

PENDING_REVIEW_MESSAGE = (
    "Your recommendations are being reviewed by our team. "
    "Check back soon for personalized content."
)
