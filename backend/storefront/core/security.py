"""
Password hashing and access guards.
"""

import bcrypt
from fastapi import Depends

from storefront.core.exceptions import AuthenticationRequired, PermissionDenied
from storefront.core.session import SessionState, SessionUser, get_session


def hash_password(password: str) -> str:
    """Hash a password with a per-password bcrypt salt."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed_password: str) -> bool:
    """Check a password against its stored hash."""
    try:
        return bcrypt.checkpw(password.encode(), hashed_password.encode())
    except ValueError:
        return False


def require_user(session: SessionState = Depends(get_session)) -> SessionUser:
    """Dependency: the logged-in user, or 401."""
    if session.user is None:
        raise AuthenticationRequired()
    return session.user


def require_admin(user: SessionUser = Depends(require_user)) -> SessionUser:
    """Dependency: the logged-in admin, or 403."""
    if not user.is_admin:
        raise PermissionDenied()
    return user
