"""
Authentication and Authorization Models
Maps to users and user_locations tables
"""
from enum import Enum
from sqlalchemy import (
    Column, String, Boolean, Integer, DateTime, ForeignKey,
    CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from stockroom.core.database import Base


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    SUPERVISOR = "SUPERVISOR"
    OPERATOR = "OPERATOR"


class AccessLevel(str, Enum):
    VIEW = "VIEW"
    POST = "POST"
    MANAGE = "MANAGE"


class User(Base):
    """System users"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(100), nullable=False, default='')

    role = Column(String(20), nullable=False, default=UserRole.OPERATOR.value,
                  doc="ADMIN, SUPERVISOR or OPERATOR")
    default_location_id = Column(Integer, ForeignKey("locations.id"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    last_login = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(),
                        onupdate=func.current_timestamp())

    # Relationships
    location_access = relationship("UserLocation", back_populates="user", cascade="all, delete-orphan")
    default_location = relationship("Location", foreign_keys=[default_location_id])

    __table_args__ = (
        CheckConstraint("role IN ('ADMIN', 'SUPERVISOR', 'OPERATOR')", name='valid_role'),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @property
    def is_supervisor_or_admin(self) -> bool:
        """Supervisors and admins see and approve across every location"""
        return self.role in (UserRole.ADMIN.value, UserRole.SUPERVISOR.value)


class UserLocation(Base):
    """Location assignment for an operator, with its access level"""
    __tablename__ = "user_locations"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    access_level = Column(String(10), nullable=False, default=AccessLevel.POST.value,
                          doc="VIEW, POST or MANAGE")
    assigned_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    user = relationship("User", back_populates="location_access")
    location = relationship("Location")

    __table_args__ = (
        UniqueConstraint("user_id", "location_id", name="uq_user_locations_user_location"),
        CheckConstraint("access_level IN ('VIEW', 'POST', 'MANAGE')", name='valid_access_level'),
    )
