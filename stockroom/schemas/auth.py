"""
Authentication Schemas
"""
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional
from datetime import datetime

from stockroom.models.auth import AccessLevel, UserRole


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class UserBase(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    full_name: str = Field(..., min_length=1, max_length=100)
    role: UserRole = UserRole.OPERATOR
    default_location_id: Optional[int] = None


class UserCreate(UserBase):
    password: str = Field(..., min_length=8, max_length=72)


class UserResponse(UserBase):
    id: int
    is_active: bool
    last_login: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class UserLocationAssign(BaseModel):
    user_id: int
    access_level: AccessLevel = AccessLevel.POST


class UserLocationResponse(BaseModel):
    user_id: int
    location_id: int
    access_level: AccessLevel
    assigned_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
