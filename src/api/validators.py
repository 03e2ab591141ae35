"""Input validation utilities for the ClearPath API.

Validators return (is_valid, error_message, normalized_value) so endpoints
can raise InvalidInputError with the field name.
"""

import re
from typing import Optional, Tuple

from src.config import MAX_OPERATOR_NOTES_LENGTH

POSITIVE_INT_PATTERN = re.compile(r'^[1-9]\d*$')

VALID_CONSENT_KINDS = ('data_processing', 'ai_features')

VALID_QUEUE_SORTS = ('newest', 'oldest', 'user')


def _validate_positive_id(value, name: str) -> Tuple[bool, str, Optional[int]]:
    if value is None or value == "":
        return False, f"{name} is required", None

    if isinstance(value, bool):
        return False, f"{name} must be a positive integer", None

    if isinstance(value, int):
        if value < 1:
            return False, f"Invalid {name}: {value}. Must be a positive integer.", None
        return True, "", value

    if not isinstance(value, str) or not POSITIVE_INT_PATTERN.match(value.strip()):
        return False, f"Invalid {name}: {value}. Must be a positive integer.", None

    return True, "", int(value.strip())


def validate_user_id(user_id) -> Tuple[bool, str, Optional[int]]:
    """Validate a user_id path or body value.

    Args:
        user_id: User ID as string or int

    Returns:
        Tuple of (is_valid, error_message, user_id as int)
    """
    return _validate_positive_id(user_id, "user_id")


def validate_review_id(review_id) -> Tuple[bool, str, Optional[int]]:
    return _validate_positive_id(review_id, "review_id")


def validate_consent_kind(kind: Optional[str]) -> Tuple[bool, str, Optional[str]]:
    """Validate consent kind, defaulting to data_processing."""
    if kind is None:
        return True, "", "data_processing"

    normalized = kind.strip().lower() if isinstance(kind, str) else kind
    if normalized not in VALID_CONSENT_KINDS:
        return False, f"Invalid consent kind: {kind}. Must be one of: {', '.join(VALID_CONSENT_KINDS)}", None

    return True, "", normalized


def validate_queue_sort(sort: Optional[str]) -> Tuple[bool, str, str]:
    if sort is None:
        return True, "", "newest"

    normalized = sort.strip().lower()
    if normalized not in VALID_QUEUE_SORTS:
        return False, f"Invalid sort: {sort}. Must be one of: {', '.join(VALID_QUEUE_SORTS)}", ""

    return True, "", normalized


def validate_operator_notes(notes: Optional[str], required: bool = False) -> Tuple[bool, str, Optional[str]]:
    """Validate and sanitize operator notes.

    Args:
        notes: Notes text
        required: Reject empty notes (overrides need a reason)

    Returns:
        Tuple of (is_valid, error_message, sanitized notes or None)
    """
    sanitized = sanitize_string(notes) if notes is not None else ""

    if not sanitized:
        if required:
            return False, "notes are required", None
        return True, "", None

    if len(sanitized) > MAX_OPERATOR_NOTES_LENGTH:
        return False, f"notes must be at most {MAX_OPERATOR_NOTES_LENGTH} characters", None

    return True, "", sanitized


def validate_limit(limit: Optional[int], default: int = 50, max_limit: int = 100) -> Tuple[bool, str, int]:
    """Validate pagination limit parameter.

    Returns:
        Tuple of (is_valid, error_message, normalized_limit)
    """
    if limit is None:
        return True, "", default

    if not isinstance(limit, int):
        return False, "limit must be an integer", 0

    if limit < 1:
        return False, "limit must be >= 1", 0

    if limit > max_limit:
        return False, f"limit must be <= {max_limit}", 0

    return True, "", limit


def sanitize_string(value: str, max_length: Optional[int] = None) -> str:
    """Strip whitespace and optionally truncate."""
    if not isinstance(value, str):
        return ""

    sanitized = value.strip()

    if max_length is not None and len(sanitized) > max_length:
        sanitized = sanitized[:max_length]

    return sanitized
