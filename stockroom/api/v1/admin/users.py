"""
Admin Users API endpoints
User accounts
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from stockroom.api import deps
from stockroom.core.exceptions import NotFoundError
from stockroom.models.auth import User
from stockroom.schemas.auth import UserCreate, UserResponse
from stockroom.services.auth_service import AuthService

router = APIRouter()


@router.get("", response_model=List[UserResponse])
async def list_users(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    search: Optional[str] = Query(None),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_admin_user)
):
    """
    List users with search and pagination
    Requires admin privileges
    """
    return AuthService(db).get_users(skip=skip, limit=limit, search=search)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_in: UserCreate,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_admin_user)
):
    """Create a new user. Requires admin privileges"""
    return AuthService(db, current_user).create_user(user_in)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_admin_user)
):
    user = AuthService(db).get_user_by_id(user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found", code="USER_NOT_FOUND")
    return user
