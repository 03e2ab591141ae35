"""Centralized database backend selection.

Rules:
1. If USE_SQLITE=true: Force SQLite (local development override)
2. If the Firestore emulator or Firebase credentials are configured: Use Firestore
3. Default: Use SQLite
"""

import os

from src.utils.logging import get_logger

logger = get_logger("database.config")


def should_use_firestore() -> bool:
    """Determine if Firestore should be used instead of SQLite.

    Returns:
        True if Firestore should be used, False if SQLite should be used
    """
    if os.getenv('USE_SQLITE', '').lower() == 'true':
        return False

    has_emulator = (
        os.getenv('FIRESTORE_EMULATOR_HOST') is not None or
        os.getenv('USE_FIREBASE_EMULATOR', '').lower() == 'true'
    )
    has_production_creds = (
        os.getenv('FIREBASE_SERVICE_ACCOUNT') is not None or
        os.path.exists(os.getenv('GOOGLE_APPLICATION_CREDENTIALS', 'firebase-service-account.json'))
    )

    if has_emulator or has_production_creds:
        try:
            from src.database.firestore import get_db as firestore_get_db
            return firestore_get_db() is not None
        except (ImportError, ValueError) as e:
            logger.warning(f"Firebase configured but unavailable, falling back to SQLite: {e}")
            return False

    return False


def call_backend(name: str, *args, use_firestore: bool = False, db_path=None, **kwargs):
    """Call the storage function `name` on the selected backend.

    The SQLite and Firestore modules expose the same function names; only the
    SQLite ones take a db_path.
    """
    if use_firestore:
        from src.database import firestore as backend
        return getattr(backend, name)(*args, **kwargs)

    from src.database import db as backend
    return getattr(backend, name)(*args, db_path=db_path, **kwargs)
