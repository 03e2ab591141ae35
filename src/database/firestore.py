"""Firestore backend for ClearPath.

Mirrors the SQLite functions in src.database.db for deployments that run on
Firebase. Documents use string ids; user and review ids stay integers by
drawing them from counter documents.

Collections:
    users/{user_id}
    consent_records/{user_id}_{kind}
    consent_audit_log/{auto}
    persona_assignments/{user_id}
    user_signals/{user_id}
    recommendation_reviews/{review_id}
    pending_reviews/{user_id}          pointer to the user's single pending review
    operator_actions/{auto}
    counters/{name}
"""

import functools
import json
import os
from datetime import datetime
from typing import List, Dict, Any, Optional

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core.exceptions import GoogleAPICallError, RetryError

from src.api.exceptions import StorageUnavailableError
from src.utils.logging import get_logger

logger = get_logger("database.firestore")

_initialized = False
_db = None

REVIEW_SORT_KEYS = {
    "newest": (lambda r: (r["created_at"], r["review_id"]), True),
    "oldest": (lambda r: (r["created_at"], r["review_id"]), False),
}


def _emulator_requested() -> bool:
    return (
        os.getenv('FIRESTORE_EMULATOR_HOST') is not None or
        os.getenv('USE_FIREBASE_EMULATOR', '').lower() == 'true'
    )


def initialize_firebase():
    """Initialize Firebase Admin SDK with service account credentials or the emulator."""
    global _initialized
    if _initialized:
        return

    if os.getenv('USE_SQLITE', '').lower() == 'true':
        _initialized = True
        return

    if _emulator_requested():
        if os.getenv('FIRESTORE_EMULATOR_HOST') is None:
            os.environ['FIRESTORE_EMULATOR_HOST'] = '127.0.0.1:8080'
        logger.info(f"Using Firestore emulator at {os.getenv('FIRESTORE_EMULATOR_HOST')}")
        if not firebase_admin._apps:
            firebase_admin.initialize_app(options={'projectId': os.getenv('FIREBASE_PROJECT_ID', 'demo-clearpath')})
        _initialized = True
        return

    has_env_var = os.getenv('FIREBASE_SERVICE_ACCOUNT') is not None
    cred_path = os.getenv('GOOGLE_APPLICATION_CREDENTIALS', 'firebase-service-account.json')
    has_file = os.path.exists(cred_path)

    if not has_env_var and not has_file:
        _initialized = True
        return

    if has_env_var:
        try:
            service_account_json = json.loads(os.getenv('FIREBASE_SERVICE_ACCOUNT'))
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid FIREBASE_SERVICE_ACCOUNT JSON: {e}")
        cred = credentials.Certificate(service_account_json)
        logger.warning(f"Connecting to Firebase production as {service_account_json.get('client_email', 'unknown')}")
    else:
        cred = credentials.Certificate(cred_path)
        logger.warning(f"Connecting to Firebase production with credentials file {cred_path}")

    if not firebase_admin._apps:
        firebase_admin.initialize_app(cred)
    _initialized = True


def get_db():
    """Get Firestore client, initializing if needed. Returns None when Firebase is not configured."""
    global _db
    if _db is None:
        if os.getenv('USE_SQLITE', '').lower() == 'true':
            return None

        has_env_var = os.getenv('FIREBASE_SERVICE_ACCOUNT') is not None
        cred_path = os.getenv('GOOGLE_APPLICATION_CREDENTIALS', 'firebase-service-account.json')
        has_file = os.path.exists(cred_path)

        if _emulator_requested() or has_env_var or has_file:
            initialize_firebase()
            _db = firestore.client()
    return _db


def _client():
    client = get_db()
    if client is None:
        raise StorageUnavailableError(
            "Firebase not initialized. Ensure FIREBASE_SERVICE_ACCOUNT is set or firebase-service-account.json exists."
        )
    return client


def translate_storage_errors(func):
    """Re-raise Firestore transport and API failures as StorageUnavailableError."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (GoogleAPICallError, RetryError) as e:
            logger.error(f"Firestore call {func.__name__} failed: {e}")
            raise StorageUnavailableError(f"Firestore operation failed: {e}") from e
    return wrapper


def _now() -> str:
    return datetime.now().isoformat()


def _allocate_id(transaction, counter_ref) -> int:
    snapshot = counter_ref.get(transaction=transaction)
    next_id = (snapshot.to_dict() or {}).get('value', 0) + 1 if snapshot.exists else 1
    transaction.set(counter_ref, {'value': next_id})
    return next_id


_next_id_in_transaction = firestore.transactional(_allocate_id)


def _next_id(client, name: str) -> int:
    counter_ref = client.collection('counters').document(name)
    return _next_id_in_transaction(client.transaction(), counter_ref)


@translate_storage_errors
def ping() -> None:
    """Round-trip a minimal query so connectivity problems surface."""
    list(_client().collection('users').limit(1).stream())


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@translate_storage_errors
def create_user(name: str, email: Optional[str] = None) -> int:
    client = _client()
    user_id = _next_id(client, 'users')
    client.collection('users').document(str(user_id)).set({
        'user_id': user_id,
        'name': name,
        'email': email,
        'created_at': _now(),
    })
    return user_id


@translate_storage_errors
def get_user(user_id: int) -> Optional[Dict[str, Any]]:
    """Get single user"""
    user_doc = _client().collection('users').document(str(user_id)).get()
    if user_doc.exists:
        return {'user_id': user_id, **user_doc.to_dict()}
    return None


@translate_storage_errors
def user_exists(user_id: int) -> bool:
    return _client().collection('users').document(str(user_id)).get().exists


# ---------------------------------------------------------------------------
# Consent
# ---------------------------------------------------------------------------

@translate_storage_errors
def get_consent_record(user_id: int, kind: str) -> Optional[Dict[str, Any]]:
    """Get the current consent record for a user and consent kind."""
    doc = _client().collection('consent_records').document(f"{user_id}_{kind}").get()
    return doc.to_dict() if doc.exists else None


@translate_storage_errors
def store_consent(
    user_id: int,
    kind: str,
    granted: bool,
    ip_address: Optional[str] = None
) -> Dict[str, Any]:
    """Grant or revoke consent and log the change to the audit trail.

    Args:
        user_id: User ID
        kind: Consent kind
        granted: True to grant, False to revoke
        ip_address: IP address of the request (optional)

    Returns:
        The consent record after the change
    """
    client = _client()
    now = _now()
    record_ref = client.collection('consent_records').document(f"{user_id}_{kind}")
    existing = record_ref.get()
    record = existing.to_dict() if existing.exists else {
        'user_id': user_id,
        'kind': kind,
        'granted_at': None,
        'revoked_at': None,
    }

    record['granted'] = granted
    record['updated_at'] = now
    if granted:
        record['granted_at'] = now
        record['revoked_at'] = None
    else:
        record['revoked_at'] = now

    batch = client.batch()
    batch.set(record_ref, record)
    batch.set(client.collection('consent_audit_log').document(), {
        'user_id': user_id,
        'kind': kind,
        'action': 'granted' if granted else 'revoked',
        'ip_address': ip_address or 'unknown',
        'timestamp': now,
    })
    batch.commit()
    return record


@translate_storage_errors
def get_consent_history(user_id: int) -> List[Dict[str, Any]]:
    query = _client().collection('consent_audit_log').where('user_id', '==', user_id)
    entries = [{'id': doc.id, **doc.to_dict()} for doc in query.stream()]
    return sorted(entries, key=lambda e: e['timestamp'], reverse=True)


# ---------------------------------------------------------------------------
# Persona assignments and signals
# ---------------------------------------------------------------------------

@translate_storage_errors
def get_persona_assignment(user_id: int) -> Optional[Dict[str, Any]]:
    doc = _client().collection('persona_assignments').document(str(user_id)).get()
    return doc.to_dict() if doc.exists else None


@translate_storage_errors
def store_persona_assignment(user_id: int, persona: str, criteria_met: list) -> None:
    _client().collection('persona_assignments').document(str(user_id)).set({
        'user_id': user_id,
        'persona': persona,
        'criteria_met': criteria_met,
        'assigned_at': _now(),
    })


@translate_storage_errors
def get_user_signals(user_id: int) -> Optional[Dict[str, Any]]:
    doc = _client().collection('user_signals').document(str(user_id)).get()
    return doc.to_dict().get('signal_data') if doc.exists else None


@translate_storage_errors
def store_user_signals(user_id: int, signals: dict) -> None:
    _client().collection('user_signals').document(str(user_id)).set({
        'signal_data': signals,
        'computed_at': _now(),
    })


# ---------------------------------------------------------------------------
# Recommendation reviews
# ---------------------------------------------------------------------------

def _review_ref(client, review_id: int):
    return client.collection('recommendation_reviews').document(str(review_id))


def _upsert_pending(transaction, client, user_id, recommendation_data, decision_trace, now):
    pointer_ref = client.collection('pending_reviews').document(str(user_id))
    counter_ref = client.collection('counters').document('recommendation_reviews')

    # All reads happen before any write.
    pointer = pointer_ref.get(transaction=transaction)
    existing = None
    if pointer.exists:
        existing = _review_ref(client, pointer.to_dict()['review_id']).get(transaction=transaction)
    counter = counter_ref.get(transaction=transaction)

    if existing is not None and existing.exists and existing.to_dict().get('status') == 'pending':
        review = existing.to_dict()
        review.update({
            'recommendation_data': recommendation_data,
            'decision_trace': decision_trace,
            'created_at': now,
        })
        transaction.set(_review_ref(client, review['review_id']), review)
        return review

    review_id = (counter.to_dict() or {}).get('value', 0) + 1 if counter.exists else 1
    review = {
        'review_id': review_id,
        'user_id': user_id,
        'recommendation_data': recommendation_data,
        'decision_trace': decision_trace,
        'status': 'pending',
        'operator_notes': None,
        'reviewed_by': None,
        'reviewed_at': None,
        'flagged': False,
        'flag_reason': None,
        'created_at': now,
    }
    transaction.set(counter_ref, {'value': review_id})
    transaction.set(_review_ref(client, review_id), review)
    transaction.set(pointer_ref, {'review_id': review_id})
    return review


_upsert_pending_in_transaction = firestore.transactional(_upsert_pending)


@translate_storage_errors
def upsert_pending_review(user_id: int, recommendation_data: dict, decision_trace: dict) -> Dict[str, Any]:
    """Create the user's pending review, or replace the content of the existing one.

    Runs in a Firestore transaction over the pending_reviews pointer, which
    retries on contention so concurrent writers converge on one document.
    """
    client = _client()
    return _upsert_pending_in_transaction(
        client.transaction(), client, user_id, recommendation_data, decision_trace, _now()
    )


def _update_pending(transaction, client, review_id, updates, release_pointer):
    review_ref = _review_ref(client, review_id)
    snapshot = review_ref.get(transaction=transaction)
    if not snapshot.exists or snapshot.to_dict().get('status') != 'pending':
        return False

    review = snapshot.to_dict()
    transaction.update(review_ref, updates)
    if release_pointer:
        transaction.delete(client.collection('pending_reviews').document(str(review['user_id'])))
    return True


_update_pending_in_transaction = firestore.transactional(_update_pending)


@translate_storage_errors
def update_review_status(
    review_id: int,
    status: str,
    operator_notes: Optional[str],
    reviewed_by: str
) -> bool:
    """Move a pending review to a terminal status. Returns False if it was not pending."""
    client = _client()
    updates = {
        'status': status,
        'operator_notes': operator_notes,
        'reviewed_by': reviewed_by,
        'reviewed_at': _now(),
    }
    return _update_pending_in_transaction(client.transaction(), client, review_id, updates, True)


@translate_storage_errors
def set_review_flag(review_id: int, flagged: bool, flag_reason: Optional[str] = None) -> bool:
    """Flag or unflag a pending review. Returns False if it is not pending."""
    client = _client()
    updates = {'flagged': flagged, 'flag_reason': flag_reason if flagged else None}
    return _update_pending_in_transaction(client.transaction(), client, review_id, updates, False)


@translate_storage_errors
def get_review(review_id: int) -> Optional[Dict[str, Any]]:
    doc = _review_ref(_client(), review_id).get()
    return doc.to_dict() if doc.exists else None


@translate_storage_errors
def get_pending_review(user_id: int) -> Optional[Dict[str, Any]]:
    client = _client()
    pointer = client.collection('pending_reviews').document(str(user_id)).get()
    if not pointer.exists:
        return None
    review = get_review(pointer.to_dict()['review_id'])
    if review and review['status'] == 'pending':
        return review
    return None


@translate_storage_errors
def get_latest_approved_review(user_id: int) -> Optional[Dict[str, Any]]:
    approved = list_reviews(status='approved', user_id=user_id)
    if not approved:
        return None
    return max(approved, key=lambda r: (r['reviewed_at'] or '', r['created_at'], r['review_id']))


@translate_storage_errors
def list_reviews(
    status: Optional[str] = None,
    user_id: Optional[int] = None,
    order: str = "newest",
    limit: Optional[int] = None
) -> List[Dict[str, Any]]:
    """List reviews with optional filtering.

    Sorting happens client side so no composite index is needed.
    """
    query = _client().collection('recommendation_reviews')
    if status:
        query = query.where('status', '==', status)
    if user_id is not None:
        query = query.where('user_id', '==', user_id)

    reviews = [doc.to_dict() for doc in query.stream()]

    if order == "user":
        reviews.sort(key=lambda r: (r['created_at'], r['review_id']), reverse=True)
        reviews.sort(key=lambda r: r['user_id'])
    else:
        key, reverse = REVIEW_SORT_KEYS.get(order, REVIEW_SORT_KEYS["newest"])
        reviews.sort(key=key, reverse=reverse)

    if limit:
        reviews = reviews[:limit]
    return reviews


# ---------------------------------------------------------------------------
# Operator audit trail
# ---------------------------------------------------------------------------

@translate_storage_errors
def store_operator_action(
    operator_id: str,
    user_id: int,
    action_type: str,
    reason: Optional[str],
    review_id: Optional[int] = None
) -> str:
    """Store an operator action in the audit trail.

    Returns:
        ID of the created action document
    """
    action_ref = _client().collection('operator_actions').document()
    action_ref.set({
        'operator_id': operator_id,
        'user_id': user_id,
        'action_type': action_type,
        'review_id': review_id,
        'reason': reason,
        'created_at': _now(),
    })
    return action_ref.id


@translate_storage_errors
def get_operator_actions(
    user_id: Optional[int] = None,
    action_type: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0
) -> List[Dict[str, Any]]:
    """Get operator actions from the audit trail, newest first."""
    query = _client().collection('operator_actions')
    if user_id is not None:
        query = query.where('user_id', '==', user_id)
    if action_type:
        query = query.where('action_type', '==', action_type)

    actions = []
    for action_doc in query.stream():
        action_data = action_doc.to_dict()
        action_data['id'] = action_doc.id
        actions.append(action_data)

    # Firestore has no offset; slice after sorting.
    actions.sort(key=lambda a: a['created_at'], reverse=True)
    if offset > 0:
        actions = actions[offset:]
    if limit:
        actions = actions[:limit]
    return actions
