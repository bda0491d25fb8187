"""
RBAC Dependencies.
The upstream identity gateway authenticates the caller and forwards the
user id in a header; these dependencies resolve it and enforce roles.
"""
import logging
from typing import Callable, List, Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from app.core.exceptions import AccessDeniedError, AuthenticationError
from app.database import get_db
from app.models.user import User, UserRole

logger = logging.getLogger(__name__)

HR_ROLES = [UserRole.SUPER_ADMIN, UserRole.HR_ADMIN, UserRole.HR_MANAGER]
ADMIN_ROLES = [UserRole.SUPER_ADMIN, UserRole.HR_ADMIN]


def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    db: Session = Depends(get_db)
) -> User:
    """
    Resolves the caller from the identity header.
    """
    if not x_user_id:
        raise AuthenticationError("Missing X-User-Id header")
    try:
        user_id = int(x_user_id)
    except ValueError:
        logger.warning(f"Authentication failed: malformed user id {x_user_id!r}")
        raise AuthenticationError("Malformed X-User-Id header")

    user = db.get(User, user_id)
    if user is None:
        logger.warning(f"Authentication failed: user {user_id} not found")
        raise AuthenticationError("Unknown user")
    if not user.is_active:
        logger.warning(f"Authentication failed: user {user_id} is inactive")
        raise AccessDeniedError("User is inactive")
    return user


def require_role(allowed_roles: List[UserRole]) -> Callable:
    """
    Dependency factory that checks if the user has one of the allowed roles.

    Usage:
        @router.post("/admin/leave-types")
        def create(user: User = Depends(require_role([UserRole.HR_ADMIN]))):
            ...
    """
    def role_checker(current_user: User = Depends(get_current_user)):
        if current_user.role not in allowed_roles:
            raise AccessDeniedError(f"Access denied. Required roles: {[r.value for r in allowed_roles]}")
        return current_user
    return role_checker


def require_hr():
    """Shorthand for requiring any HR role."""
    return require_role(HR_ROLES)


def require_admin():
    """Shorthand for requiring admin roles only."""
    return require_role(ADMIN_ROLES)


def ensure_self_or_hr(current_user: User, user_id: int) -> None:
    if current_user.id != user_id and not current_user.is_hr:
        raise AccessDeniedError("You can only access your own leave data")
