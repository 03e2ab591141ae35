"""Database utilities for ClearPath.

This module provides connection management, schema initialization and the
SQLite queries behind users, consent, persona data, the review ledger and the
operator audit trail.
"""

import json
import sqlite3
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Optional
from datetime import datetime

from src.api.exceptions import StorageUnavailableError
from src.config import DB_PATH, SQLITE_TIMEOUT_SECONDS
from src.utils.logging import get_logger

logger = get_logger("database")

DEFAULT_DB_PATH = DB_PATH

REVIEW_COLUMNS = """
    review_id, user_id, recommendation_data, decision_trace, status,
    operator_notes, reviewed_by, reviewed_at, flagged, flag_reason, created_at
"""

REVIEW_ORDERINGS = {
    "newest": "created_at DESC, review_id DESC",
    "oldest": "created_at ASC, review_id ASC",
    "user": "user_id ASC, created_at DESC",
}


def get_connection(db_path: Optional[str] = None) -> sqlite3.Connection:
    """Get a database connection.

    Args:
        db_path: Path to SQLite database file. If None, uses default path.

    Returns:
        sqlite3.Connection: Database connection object.
    """
    if db_path is None:
        db_path = str(DEFAULT_DB_PATH)

    directory = os.path.dirname(db_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    conn = sqlite3.connect(db_path, timeout=SQLITE_TIMEOUT_SECONDS)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def get_db_connection(db_path: Optional[str] = None):
    """Context manager for database connections.

    Commits on success and rolls back on error. Any sqlite3.Error (locked
    database, corrupt or non-database file, constraint failure) surfaces as
    StorageUnavailableError.

    Usage:
        with get_db_connection() as conn:
            cursor = conn.execute("SELECT * FROM users")
            rows = cursor.fetchall()

    Args:
        db_path: Path to SQLite database file. If None, uses default path.

    Yields:
        sqlite3.Connection: Database connection object.
    """
    try:
        conn = get_connection(db_path)
    except (sqlite3.Error, OSError) as e:
        raise StorageUnavailableError(f"Could not open database: {e}") from e

    try:
        yield conn
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        logger.error(f"SQLite operation failed: {e}")
        raise StorageUnavailableError(f"Database operation failed: {e}") from e
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def fetch_one(query: str, params: tuple = (), db_path: Optional[str] = None) -> Optional[sqlite3.Row]:
    """Execute a query and fetch one row.

    Args:
        query: SQL query string.
        params: Parameters for the query.
        db_path: Path to SQLite database file. If None, uses default path.

    Returns:
        sqlite3.Row or None: Single row result or None if no rows.
    """
    with get_db_connection(db_path) as conn:
        cursor = conn.execute(query, params)
        return cursor.fetchone()


def fetch_all(query: str, params: tuple = (), db_path: Optional[str] = None) -> list[sqlite3.Row]:
    """Execute a query and fetch all rows.

    Args:
        query: SQL query string.
        params: Parameters for the query.
        db_path: Path to SQLite database file. If None, uses default path.

    Returns:
        list[sqlite3.Row]: List of all row results.
    """
    with get_db_connection(db_path) as conn:
        cursor = conn.execute(query, params)
        return cursor.fetchall()


def init_schema(db_path: Optional[str] = None) -> None:
    """Initialize the database schema by executing schema.sql.

    Args:
        db_path: Path to SQLite database file. If None, uses default path.
    """
    schema_path = Path(__file__).parent / "schema.sql"

    with open(schema_path, "r") as f:
        schema_sql = f.read()

    with get_db_connection(db_path) as conn:
        conn.executescript(schema_sql)


def _now() -> str:
    return datetime.now().isoformat()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def create_user(name: str, email: Optional[str] = None, db_path: Optional[str] = None) -> int:
    """Insert a user and return the generated user_id."""
    with get_db_connection(db_path) as conn:
        cursor = conn.execute(
            "INSERT INTO users (name, email, created_at) VALUES (?, ?, ?)",
            (name, email, _now())
        )
        return cursor.lastrowid


def get_user(user_id: int, db_path: Optional[str] = None) -> Optional[dict]:
    row = fetch_one(
        "SELECT user_id, name, email, created_at FROM users WHERE user_id = ?",
        (user_id,),
        db_path
    )
    return dict(row) if row else None


def user_exists(user_id: int, db_path: Optional[str] = None) -> bool:
    return fetch_one("SELECT 1 FROM users WHERE user_id = ?", (user_id,), db_path) is not None


# ---------------------------------------------------------------------------
# Consent
# ---------------------------------------------------------------------------

def _consent_row_to_dict(row: sqlite3.Row) -> dict:
    return {
        "user_id": row["user_id"],
        "kind": row["kind"],
        "granted": bool(row["granted"]),
        "granted_at": row["granted_at"],
        "revoked_at": row["revoked_at"],
        "updated_at": row["updated_at"],
    }


def get_consent_record(user_id: int, kind: str, db_path: Optional[str] = None) -> Optional[dict]:
    """Get the current consent record for a user and consent kind.

    Args:
        user_id: User ID
        kind: Consent kind ('data_processing' or 'ai_features')
        db_path: Path to SQLite database file. If None, uses default path.

    Returns:
        Consent record dictionary, or None if the user never granted or revoked this kind
    """
    row = fetch_one(
        """
        SELECT user_id, kind, granted, granted_at, revoked_at, updated_at
        FROM consent_records
        WHERE user_id = ? AND kind = ?
        """,
        (user_id, kind),
        db_path
    )
    return _consent_row_to_dict(row) if row else None


def store_consent(
    user_id: int,
    kind: str,
    granted: bool,
    ip_address: Optional[str] = None,
    db_path: Optional[str] = None
) -> dict:
    """Grant or revoke consent and log the change to the audit trail.

    Granting refreshes granted_at and clears revoked_at. Revoking sets
    revoked_at and keeps the last granted_at.

    Args:
        user_id: User ID
        kind: Consent kind
        granted: True to grant, False to revoke
        ip_address: IP address of the request (optional)
        db_path: Path to SQLite database file. If None, uses default path.

    Returns:
        The consent record after the change
    """
    now = _now()

    if granted:
        query = """
            INSERT INTO consent_records (user_id, kind, granted, granted_at, revoked_at, updated_at)
            VALUES (?, ?, 1, ?, NULL, ?)
            ON CONFLICT(user_id, kind) DO UPDATE SET
                granted = 1,
                granted_at = excluded.granted_at,
                revoked_at = NULL,
                updated_at = excluded.updated_at
        """
        params = (user_id, kind, now, now)
    else:
        query = """
            INSERT INTO consent_records (user_id, kind, granted, granted_at, revoked_at, updated_at)
            VALUES (?, ?, 0, NULL, ?, ?)
            ON CONFLICT(user_id, kind) DO UPDATE SET
                granted = 0,
                revoked_at = excluded.revoked_at,
                updated_at = excluded.updated_at
        """
        params = (user_id, kind, now, now)

    with get_db_connection(db_path) as conn:
        conn.execute(query, params)

        conn.execute(
            """
            INSERT INTO consent_audit_log (user_id, kind, action, ip_address, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            (user_id, kind, "granted" if granted else "revoked", ip_address or "unknown", now)
        )

        row = conn.execute(
            """
            SELECT user_id, kind, granted, granted_at, revoked_at, updated_at
            FROM consent_records
            WHERE user_id = ? AND kind = ?
            """,
            (user_id, kind)
        ).fetchone()

    return _consent_row_to_dict(row)


def get_consent_history(user_id: int, db_path: Optional[str] = None) -> list:
    """Get the consent audit trail for a user, newest first."""
    rows = fetch_all(
        """
        SELECT id, user_id, kind, action, ip_address, timestamp
        FROM consent_audit_log
        WHERE user_id = ?
        ORDER BY timestamp DESC, id DESC
        """,
        (user_id,),
        db_path
    )
    return [dict(row) for row in rows]


# ---------------------------------------------------------------------------
# Persona assignments and signals
# ---------------------------------------------------------------------------

def get_persona_assignment(user_id: int, db_path: Optional[str] = None) -> Optional[dict]:
    row = fetch_one(
        "SELECT user_id, persona, criteria_met, assigned_at FROM persona_assignments WHERE user_id = ?",
        (user_id,),
        db_path
    )
    if not row:
        return None
    return {
        "user_id": row["user_id"],
        "persona": row["persona"],
        "criteria_met": json.loads(row["criteria_met"]) if row["criteria_met"] else [],
        "assigned_at": row["assigned_at"],
    }


def store_persona_assignment(
    user_id: int,
    persona: str,
    criteria_met: list,
    db_path: Optional[str] = None
) -> None:
    with get_db_connection(db_path) as conn:
        conn.execute(
            """
            INSERT OR REPLACE INTO persona_assignments (user_id, persona, criteria_met, assigned_at)
            VALUES (?, ?, ?, ?)
            """,
            (user_id, persona, json.dumps(criteria_met), _now())
        )


def get_user_signals(user_id: int, db_path: Optional[str] = None) -> Optional[dict]:
    row = fetch_one(
        "SELECT signal_data FROM user_signals WHERE user_id = ?",
        (user_id,),
        db_path
    )
    return json.loads(row["signal_data"]) if row else None


def store_user_signals(user_id: int, signals: dict, db_path: Optional[str] = None) -> None:
    with get_db_connection(db_path) as conn:
        conn.execute(
            """
            INSERT OR REPLACE INTO user_signals (user_id, signal_data, computed_at)
            VALUES (?, ?, ?)
            """,
            (user_id, json.dumps(signals), _now())
        )


# ---------------------------------------------------------------------------
# Recommendation reviews
# ---------------------------------------------------------------------------

def _review_row_to_dict(row: sqlite3.Row) -> dict:
    return {
        "review_id": row["review_id"],
        "user_id": row["user_id"],
        "recommendation_data": json.loads(row["recommendation_data"]),
        "decision_trace": json.loads(row["decision_trace"]) if row["decision_trace"] else {},
        "status": row["status"],
        "operator_notes": row["operator_notes"],
        "reviewed_by": row["reviewed_by"],
        "reviewed_at": row["reviewed_at"],
        "flagged": bool(row["flagged"]),
        "flag_reason": row["flag_reason"],
        "created_at": row["created_at"],
    }


def get_review(review_id: int, db_path: Optional[str] = None) -> Optional[dict]:
    row = fetch_one(
        f"SELECT {REVIEW_COLUMNS} FROM recommendation_reviews WHERE review_id = ?",
        (review_id,),
        db_path
    )
    return _review_row_to_dict(row) if row else None


def get_pending_review(user_id: int, db_path: Optional[str] = None) -> Optional[dict]:
    row = fetch_one(
        f"""
        SELECT {REVIEW_COLUMNS} FROM recommendation_reviews
        WHERE user_id = ? AND status = 'pending'
        """,
        (user_id,),
        db_path
    )
    return _review_row_to_dict(row) if row else None


def get_latest_approved_review(user_id: int, db_path: Optional[str] = None) -> Optional[dict]:
    """Get the most recently approved review for a user."""
    row = fetch_one(
        f"""
        SELECT {REVIEW_COLUMNS} FROM recommendation_reviews
        WHERE user_id = ? AND status = 'approved'
        ORDER BY reviewed_at DESC, created_at DESC, review_id DESC
        LIMIT 1
        """,
        (user_id,),
        db_path
    )
    return _review_row_to_dict(row) if row else None


def upsert_pending_review(
    user_id: int,
    recommendation_data: dict,
    decision_trace: dict,
    db_path: Optional[str] = None
) -> dict:
    """Create the user's pending review, or replace the content of the existing one.

    The insert and the update happen in one statement against the partial
    unique index on (user_id) WHERE status = 'pending', so two writers can
    never leave two pending rows for the same user.

    Args:
        user_id: User ID
        recommendation_data: Filtered recommendation payload
        decision_trace: Audit trace for the generation cycle
        db_path: Path to SQLite database file. If None, uses default path.

    Returns:
        The pending review after the write
    """
    now = _now()
    query = """
        INSERT INTO recommendation_reviews (user_id, recommendation_data, decision_trace, status, created_at)
        VALUES (?, ?, ?, 'pending', ?)
        ON CONFLICT(user_id) WHERE status = 'pending' DO UPDATE SET
            recommendation_data = excluded.recommendation_data,
            decision_trace = excluded.decision_trace,
            created_at = excluded.created_at
    """

    with get_db_connection(db_path) as conn:
        conn.execute(query, (user_id, json.dumps(recommendation_data), json.dumps(decision_trace), now))
        row = conn.execute(
            f"""
            SELECT {REVIEW_COLUMNS} FROM recommendation_reviews
            WHERE user_id = ? AND status = 'pending'
            """,
            (user_id,)
        ).fetchone()

    return _review_row_to_dict(row)


def update_review_status(
    review_id: int,
    status: str,
    operator_notes: Optional[str],
    reviewed_by: str,
    db_path: Optional[str] = None
) -> bool:
    """Move a pending review to a terminal status.

    Returns:
        True if the row was pending and is now updated, False otherwise
    """
    with get_db_connection(db_path) as conn:
        cursor = conn.execute(
            """
            UPDATE recommendation_reviews
            SET status = ?, operator_notes = ?, reviewed_by = ?, reviewed_at = ?
            WHERE review_id = ? AND status = 'pending'
            """,
            (status, operator_notes, reviewed_by, _now(), review_id)
        )
        return cursor.rowcount == 1


def set_review_flag(
    review_id: int,
    flagged: bool,
    flag_reason: Optional[str] = None,
    db_path: Optional[str] = None
) -> bool:
    """Flag or unflag a pending review. Returns False if it is not pending."""
    with get_db_connection(db_path) as conn:
        cursor = conn.execute(
            """
            UPDATE recommendation_reviews
            SET flagged = ?, flag_reason = ?
            WHERE review_id = ? AND status = 'pending'
            """,
            (1 if flagged else 0, flag_reason if flagged else None, review_id)
        )
        return cursor.rowcount == 1


def list_reviews(
    status: Optional[str] = None,
    user_id: Optional[int] = None,
    order: str = "newest",
    limit: Optional[int] = None,
    db_path: Optional[str] = None
) -> list:
    """List reviews with optional filtering.

    Args:
        status: Filter by status (optional)
        user_id: Filter by user_id (optional)
        order: One of REVIEW_ORDERINGS
        limit: Maximum number of results (optional)
        db_path: Path to SQLite database file. If None, uses default path.

    Returns:
        List of review dictionaries
    """
    conditions = []
    params = []

    if status:
        conditions.append("status = ?")
        params.append(status)

    if user_id is not None:
        conditions.append("user_id = ?")
        params.append(user_id)

    where_clause = ""
    if conditions:
        where_clause = "WHERE " + " AND ".join(conditions)

    order_by = REVIEW_ORDERINGS.get(order, REVIEW_ORDERINGS["newest"])
    query = f"SELECT {REVIEW_COLUMNS} FROM recommendation_reviews {where_clause} ORDER BY {order_by}"

    if limit:
        query += " LIMIT ?"
        params.append(limit)

    rows = fetch_all(query, tuple(params), db_path)
    return [_review_row_to_dict(row) for row in rows]


# ---------------------------------------------------------------------------
# Operator audit trail
# ---------------------------------------------------------------------------

def store_operator_action(
    operator_id: str,
    user_id: int,
    action_type: str,
    reason: Optional[str],
    review_id: Optional[int] = None,
    db_path: Optional[str] = None
) -> int:
    """Store an operator action in the audit trail.

    Args:
        operator_id: ID of the operator performing the action
        user_id: ID of the user the action is performed on
        action_type: 'approve', 'override', 'flag', 'unflag' or 'regenerate'
        reason: Notes or reason for the action
        review_id: Review the action applies to, if any
        db_path: Path to SQLite database file. If None, uses default path.

    Returns:
        ID of the created action record
    """
    query = """
        INSERT INTO operator_actions (operator_id, user_id, action_type, review_id, reason, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
    """

    with get_db_connection(db_path) as conn:
        cursor = conn.execute(query, (operator_id, user_id, action_type, review_id, reason, _now()))
        return cursor.lastrowid


def get_operator_actions(
    user_id: Optional[int] = None,
    action_type: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
    db_path: Optional[str] = None
) -> list:
    """Get operator actions from the audit trail, newest first."""
    conditions = []
    params = []

    if user_id is not None:
        conditions.append("user_id = ?")
        params.append(user_id)

    if action_type:
        conditions.append("action_type = ?")
        params.append(action_type)

    where_clause = ""
    if conditions:
        where_clause = "WHERE " + " AND ".join(conditions)

    query = f"""
        SELECT id, operator_id, user_id, action_type, review_id, reason, created_at
        FROM operator_actions
        {where_clause}
        ORDER BY created_at DESC, id DESC
    """

    if limit:
        query += " LIMIT ? OFFSET ?"
        params.extend([limit, offset])
    elif offset:
        query += " LIMIT -1 OFFSET ?"
        params.append(offset)

    rows = fetch_all(query, tuple(params), db_path)
    return [dict(row) for row in rows]


if __name__ == "__main__":
    print("Initializing database schema...")
    init_schema()
    print("Database schema initialized successfully!")
