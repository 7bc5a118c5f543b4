"""
API Dependencies
Common dependencies for API endpoints
"""

from typing import List, Optional
from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from stockroom.core.database import get_db
from stockroom.core.exceptions import InsufficientPermissionsError
from stockroom.core.security import verify_token
from stockroom.models.auth import User, UserRole
from stockroom.models.period import Period
from stockroom.models.stock import Location
from stockroom.services.location_access import check_location_access
from stockroom.services.period.period_service import PeriodService

# Security scheme; missing credentials are reported as 401 below rather than 403
security = HTTPBearer(auto_error=False)

__all__ = [
    "get_db",
    "get_current_user",
    "get_current_active_user",
    "get_current_admin_user",
    "RoleChecker",
    "require_supervisor",
    "get_open_period",
    "get_viewable_location",
    "get_postable_location",
    "get_pagination_params",
]


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Get current authenticated user from JWT token.
    """
    if credentials is None:
        raise _credentials_exception()

    payload = verify_token(credentials.credentials)
    if not payload:
        raise _credentials_exception()

    user_id = payload.get("sub")
    if not user_id or not str(user_id).isdigit():
        raise _credentials_exception()

    user = db.query(User).filter(User.id == int(user_id)).first()
    if not user:
        raise _credentials_exception()

    return user


async def get_current_active_user(
    current_user: User = Depends(get_current_user)
) -> User:
    """
    Get current active user - checks if user is active.
    """
    if not current_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Inactive user"
        )
    return current_user


async def get_current_admin_user(
    current_user: User = Depends(get_current_active_user)
) -> User:
    """
    Get current admin user - checks if user has admin role.
    """
    if not current_user.is_admin:
        raise InsufficientPermissionsError("Administrator role required")
    return current_user


class RoleChecker:
    """
    Role checker dependency for specific roles.
    """
    def __init__(self, allowed_roles: List[UserRole]):
        self.allowed_roles = [UserRole(role).value for role in allowed_roles]

    def __call__(self, current_user: User = Depends(get_current_active_user)) -> User:
        if current_user.role not in self.allowed_roles:
            raise InsufficientPermissionsError(
                f"Role not allowed. Required one of: {', '.join(self.allowed_roles)}",
                details={"role": current_user.role, "allowed_roles": self.allowed_roles}
            )
        return current_user


require_supervisor = RoleChecker([UserRole.SUPERVISOR, UserRole.ADMIN])


def get_open_period(db: Session = Depends(get_db)) -> Period:
    """The single OPEN period; stock postings fail with NO_OPEN_PERIOD without one"""
    return PeriodService(db).require_open_period()


def get_viewable_location(
    location_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Location:
    return check_location_access(db, current_user, location_id)


def get_postable_location(
    location_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Location:
    return check_location_access(db, current_user, location_id, require_post=True)


def get_pagination_params(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500)
) -> dict:
    """
    Common pagination parameters.
    """
    return {"skip": skip, "limit": limit}
