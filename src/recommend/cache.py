"""Per-user in-memory cache with consent-driven invalidation.

Each user has a generation counter. Entries are stored under the generation
that was current when their computation started, and clear() bumps it. A
computation that began before a clear() can therefore never repopulate the
cache afterwards: its set() carries the old generation and is discarded.
"""

import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

from src.config import RECOMMENDATION_CACHE_TTL
from src.utils.logging import get_logger

logger = get_logger("recommend.cache")


class RecommendationCache:
    """TTL cache keyed by (user_id, name) and scoped to the user's generation.

    Args:
        ttl_seconds: Lifetime of an entry
        clock: Monotonic time source, replaceable in tests
    """

    def __init__(self, ttl_seconds: float = RECOMMENDATION_CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._generations: Dict[Hashable, int] = {}
        # (user_id, name) -> (generation, value, expires_at)
        self._entries: Dict[Tuple[Hashable, str], Tuple[int, Any, float]] = {}
        self.stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "stale_writes": 0,
            "evictions": 0,
            "clears": 0,
        }

    def generation(self, user_id) -> int:
        """Current generation for a user. Capture it before starting a computation."""
        with self._lock:
            return self._generations.get(user_id, 0)

    def get(self, user_id, name: str) -> Optional[Any]:
        with self._lock:
            key = (user_id, name)
            entry = self._entries.get(key)
            if entry is None:
                self.stats["misses"] += 1
                return None

            generation, value, expires_at = entry
            if generation != self._generations.get(user_id, 0) or self._clock() >= expires_at:
                del self._entries[key]
                self.stats["evictions"] += 1
                self.stats["misses"] += 1
                return None

            self.stats["hits"] += 1
            return value

    def set(self, user_id, name: str, value: Any, generation: Optional[int] = None) -> bool:
        """Store a value computed under `generation`.

        Args:
            user_id: User ID
            name: Entry name within the user's scope (e.g. "persona_profile")
            value: Value to cache
            generation: Generation captured when the computation started; defaults to current

        Returns:
            True if stored, False if the user's cache was cleared in the meantime
        """
        with self._lock:
            current = self._generations.get(user_id, 0)
            if generation is not None and generation != current:
                self.stats["stale_writes"] += 1
                logger.debug(f"Discarded stale cache write for user {user_id} ({name})")
                return False

            self._entries[(user_id, name)] = (current, value, self._clock() + self.ttl_seconds)
            self.stats["sets"] += 1
            return True

    def clear(self, user_id) -> int:
        """Invalidate everything cached for a user.

        Returns:
            Number of entries removed
        """
        with self._lock:
            self._generations[user_id] = self._generations.get(user_id, 0) + 1
            keys = [key for key in self._entries if key[0] == user_id]
            for key in keys:
                del self._entries[key]
            self.stats["evictions"] += len(keys)
            self.stats["clears"] += 1

        logger.info(f"Cleared cache for user {user_id} ({len(keys)} entries)")
        return len(keys)

    def clean_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [key for key, (_, _, expires_at) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
            self.stats["evictions"] += len(expired)
        return len(expired)

    def get_stats(self) -> dict:
        with self._lock:
            total = self.stats["hits"] + self.stats["misses"]
            return {
                **self.stats,
                "size": len(self._entries),
                "hit_rate": round(self.stats["hits"] / total, 3) if total else 0.0,
                "total_requests": total,
            }
