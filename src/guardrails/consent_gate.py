"""Consent gate: whether a user's data may be processed, and whether AI features may run.

Granting or revoking either kind of consent clears the user's cached
recommendation state before returning, so the next request recomputes under
the new consent.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel

from src.api.exceptions import InvalidInputError, UserNotFoundError
from src.database.db_config import call_backend
from src.recommend.cache import RecommendationCache
from src.utils.logging import get_logger

logger = get_logger("guardrails.consent")


class ConsentKind(str, Enum):
    DATA_PROCESSING = "data_processing"
    AI_FEATURES = "ai_features"


class ConsentRecord(BaseModel):
    user_id: int
    kind: ConsentKind
    granted: bool = False
    granted_at: Optional[str] = None
    revoked_at: Optional[str] = None


def parse_consent_kind(kind) -> ConsentKind:
    """Convert a string to ConsentKind.

    Raises:
        InvalidInputError: If kind is not a known consent kind
    """
    try:
        return ConsentKind(kind)
    except ValueError:
        valid = ", ".join(k.value for k in ConsentKind)
        raise InvalidInputError(f"Invalid consent kind '{kind}'. Must be one of: {valid}", field="kind")


class ConsentGate:
    """Authoritative consent lookups and the grant/revoke transitions.

    Args:
        cache: Per-user cache cleared on every consent change
        db_path: SQLite database path (ignored for Firestore)
        use_firestore: Read and write consent in Firestore instead of SQLite
    """

    def __init__(self, cache: RecommendationCache, db_path: Optional[str] = None, use_firestore: bool = False):
        self.cache = cache
        self.db_path = db_path
        self.use_firestore = use_firestore

    def _call(self, name: str, *args, **kwargs):
        return call_backend(name, *args, use_firestore=self.use_firestore, db_path=self.db_path, **kwargs)

    def _require_user(self, user_id: int) -> None:
        if not self._call("user_exists", user_id):
            raise UserNotFoundError(user_id)

    def grant(self, user_id: int, kind=ConsentKind.DATA_PROCESSING, ip_address: Optional[str] = None) -> ConsentRecord:
        """Grant consent. Re-granting refreshes granted_at.

        Args:
            user_id: User ID
            kind: ConsentKind or its string value
            ip_address: Client address recorded in the audit log

        Returns:
            The consent record after the change
        """
        return self._set(user_id, parse_consent_kind(kind), True, ip_address)

    def revoke(self, user_id: int, kind=ConsentKind.DATA_PROCESSING, ip_address: Optional[str] = None) -> ConsentRecord:
        """Revoke consent. Revoking an already revoked or never granted consent is a no-op change."""
        return self._set(user_id, parse_consent_kind(kind), False, ip_address)

    def _set(self, user_id: int, kind: ConsentKind, granted: bool, ip_address: Optional[str]) -> ConsentRecord:
        self._require_user(user_id)
        row = self._call("store_consent", user_id, kind.value, granted, ip_address=ip_address)
        self.cache.clear(user_id)

        logger.info(f"Consent {kind.value} {'granted' if granted else 'revoked'} for user {user_id}")
        return ConsentRecord(**row)

    def status(self, user_id: int, kind=ConsentKind.DATA_PROCESSING) -> ConsentRecord:
        """Current consent state. A user with no record has not granted consent."""
        kind = parse_consent_kind(kind)
        self._require_user(user_id)
        row = self._call("get_consent_record", user_id, kind.value)
        if row is None:
            return ConsentRecord(user_id=user_id, kind=kind, granted=False)
        return ConsentRecord(**row)

    def is_granted(self, user_id: int, kind=ConsentKind.DATA_PROCESSING) -> bool:
        return self.status(user_id, kind).granted
