"""Authentication for the ClearPath API.

Firebase ID tokens carry the caller's role ("consumer" or "operator") and,
for consumers, the numeric ClearPath user_id as custom claims.
"""

from typing import Optional, Dict, Any
from fastapi import Depends, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from firebase_admin import auth as firebase_auth

from src.api.exceptions import UnauthorizedError, ForbiddenError
from src.utils.logging import get_logger

logger = get_logger("auth")

security = HTTPBearer(auto_error=False)


class User:
    """Authenticated caller."""

    def __init__(self, uid: str, role: str, user_id: Optional[int] = None, email: Optional[str] = None):
        self.uid = uid
        self.role = role  # 'operator' or 'consumer'
        self.user_id = user_id
        self.email = email

    def is_operator(self) -> bool:
        return self.role == "operator"

    def can_access_user(self, user_id: int) -> bool:
        """Operators may act on any user; consumers only on themselves."""
        return self.is_operator() or (self.user_id is not None and self.user_id == user_id)


def verify_firebase_token(token: str) -> Dict[str, Any]:
    """Verify Firebase ID token and return decoded claims.

    Args:
        token: Firebase ID token string

    Returns:
        Decoded token payload with user information

    Raises:
        UnauthorizedError: If token is invalid or expired
    """
    try:
        return firebase_auth.verify_id_token(token)
    except firebase_auth.ExpiredIdTokenError:
        raise UnauthorizedError("Token has expired")
    except firebase_auth.RevokedIdTokenError:
        raise UnauthorizedError("Token has been revoked")
    except firebase_auth.InvalidIdTokenError as e:
        raise UnauthorizedError(f"Invalid Firebase token: {str(e)}")
    except ValueError as e:
        logger.error(f"Firebase token verification error: {str(e)}")
        raise UnauthorizedError("Authentication failed")


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security)
) -> User:
    """Get current authenticated user from Firebase token.

    Raises:
        UnauthorizedError: If token is missing or invalid
    """
    if not credentials:
        raise UnauthorizedError("Authentication required")

    decoded = verify_firebase_token(credentials.credentials)

    uid = decoded.get("uid")
    if not uid:
        raise UnauthorizedError("Invalid token: missing user ID")

    user_id = decoded.get("user_id")
    try:
        user_id = int(user_id) if user_id is not None else None
    except (TypeError, ValueError):
        raise UnauthorizedError("Invalid token: malformed user_id claim")

    return User(
        uid=uid,
        role=decoded.get("role", "consumer"),
        user_id=user_id,
        email=decoded.get("email"),
    )


def require_operator(current_user: User = Depends(get_current_user)) -> User:
    """Dependency to require operator role.

    Raises:
        ForbiddenError: If user is not an operator
    """
    if not current_user.is_operator():
        raise ForbiddenError("Operator role required")
    return current_user


def require_user_access(user_id: int, current_user: User) -> None:
    """Raise ForbiddenError unless the caller may act on user_id."""
    if not current_user.can_access_user(user_id):
        raise ForbiddenError("Cannot access another user's data")
