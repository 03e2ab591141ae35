"""Rate limiting for the ClearPath API.

In-memory, per-process sliding windows keyed by caller and endpoint.
"""

from datetime import datetime
from typing import Dict, List, Optional
from collections import defaultdict
import os
import threading


RATE_LIMIT_MESSAGES = int(os.getenv("RATE_LIMIT_MESSAGES", "30"))
RATE_LIMIT_WINDOW = int(os.getenv("RATE_LIMIT_WINDOW", "60"))  # seconds

# Per-endpoint rate limits
RATE_LIMITS = {
    "recommendations": {"limit": RATE_LIMIT_MESSAGES, "window": RATE_LIMIT_WINDOW},
    "consent": {"limit": 10, "window": 60},
    "regenerate": {"limit": 5, "window": 60},
    "approve": {"limit": 60, "window": 60},
    "override": {"limit": 60, "window": 60},
    "flag": {"limit": 60, "window": 60},
}


class InMemoryRateLimitStorage:
    """Timestamps of recent requests per caller and endpoint."""

    def __init__(self):
        self.store: Dict[str, List[datetime]] = defaultdict(list)
        self._lock = threading.Lock()

    def hit(self, key: str, limit: int, window: int) -> Optional[int]:
        """Record a request unless the window is full.

        Returns:
            None if recorded, otherwise seconds until the oldest request leaves the window
        """
        now = datetime.now()
        with self._lock:
            recent = [ts for ts in self.store[key] if (now - ts).total_seconds() < window]
            if len(recent) >= limit:
                self.store[key] = recent
                oldest_age = (now - recent[0]).total_seconds()
                return max(1, int(window - oldest_age) + 1)

            recent.append(now)
            self.store[key] = recent
            return None

    def cleanup(self, max_window: int) -> None:
        now = datetime.now()
        with self._lock:
            for key in list(self.store.keys()):
                recent = [ts for ts in self.store[key] if (now - ts).total_seconds() < max_window]
                if recent:
                    self.store[key] = recent
                else:
                    del self.store[key]

    def reset(self) -> None:
        with self._lock:
            self.store.clear()


rate_limit_storage = InMemoryRateLimitStorage()


def check_rate_limit(caller_id: str, endpoint: str = "default") -> tuple[bool, Optional[int]]:
    """Check if a caller has exceeded the rate limit for an endpoint.

    Args:
        caller_id: Caller identifier (Firebase uid)
        endpoint: Endpoint identifier (e.g., "recommendations", "override")

    Returns:
        Tuple of (is_allowed, retry_after_seconds)
        - is_allowed: True if within limit, False if exceeded
        - retry_after_seconds: Seconds until a slot frees up (None if allowed)
    """
    config = RATE_LIMITS.get(endpoint, {"limit": RATE_LIMIT_MESSAGES, "window": RATE_LIMIT_WINDOW})
    retry_after = rate_limit_storage.hit(f"{caller_id}:{endpoint}", config["limit"], config["window"])
    return retry_after is None, retry_after


def cleanup_rate_limits():
    """Clean up expired rate limit entries."""
    max_window = max(config["window"] for config in RATE_LIMITS.values())
    rate_limit_storage.cleanup(max(max_window, RATE_LIMIT_WINDOW))
