"""
Authentication and authorization dependencies.

Sessions are issued by the site's auth service as HS256 JWTs with the user id
in `sub`. Clients reach only their own intake and packets; staff (coach or
admin) reach every packet and the dashboard endpoints.
"""
from typing import List, Optional
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from core.database import get_db
from core.exceptions import ForbiddenError, UnauthorizedError
from core.security import decode_access_token
from models import User

STAFF_ROLES = ["admin", "coach"]

# auto_error=False so a missing header is a 401 with our envelope, not a bare 403
security = HTTPBearer(auto_error=False)


def _user_id_from_token(token: str) -> UUID:
    payload = decode_access_token(token)
    if not payload:
        raise UnauthorizedError("Invalid authentication credentials")
    try:
        return UUID(str(payload.get("sub")))
    except ValueError:
        raise UnauthorizedError("Invalid token payload")


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """The signed-in user. Unknown or deactivated accounts are rejected."""
    if not credentials:
        raise UnauthorizedError("Not authenticated")

    user = db.query(User).filter(User.id == _user_id_from_token(credentials.credentials)).first()
    if user is None:
        raise UnauthorizedError("User not found")
    if not user.is_active:
        raise ForbiddenError("Account is inactive")
    return user


def require_role(allowed_roles: List[str]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.get("/staff-only")
        def staff_endpoint(user: User = Depends(require_role(["admin"]))):
            ...
    """
    def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed_roles:
            raise ForbiddenError(f"Access denied. Required roles: {allowed_roles}")
        return current_user

    return role_checker


def require_staff(current_user: User = Depends(require_role(STAFF_ROLES))) -> User:
    return current_user


def require_admin(current_user: User = Depends(require_role(["admin"]))) -> User:
    return current_user
