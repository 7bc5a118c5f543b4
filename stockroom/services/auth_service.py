"""
Authentication Service
User accounts, login and location assignments
"""

from typing import List, Optional
from datetime import datetime
from sqlalchemy import or_
from sqlalchemy.orm import Session
import logging

from stockroom.core.exceptions import ConflictError, NotFoundError
from stockroom.core.security import get_password_hash, log_user_action, verify_password
from stockroom.models.auth import AccessLevel, User, UserLocation, UserRole
from stockroom.models.stock import Location
from stockroom.schemas.auth import UserCreate

logger = logging.getLogger(__name__)


class AuthService:
    """Service for authentication and user management operations"""

    def __init__(self, db: Session, current_user: Optional[User] = None):
        self.db = db
        self.current_user = current_user

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self.db.query(User).filter(User.username == username).first()

    def get_users(self, skip: int = 0, limit: int = 100, search: Optional[str] = None) -> List[User]:
        query = self.db.query(User)
        if search:
            search_filter = f"%{search}%"
            query = query.filter(
                or_(
                    User.username.ilike(search_filter),
                    User.email.ilike(search_filter),
                    User.full_name.ilike(search_filter)
                )
            )
        return query.order_by(User.username).offset(skip).limit(limit).all()

    def create_user(self, user_data: UserCreate) -> User:
        """Create new user"""
        existing = self.db.query(User).filter(
            or_(User.username == user_data.username, User.email == user_data.email)
        ).first()
        if existing:
            raise ConflictError("Username or email already registered", code="USER_EXISTS")

        try:
            db_user = User(
                username=user_data.username,
                email=user_data.email,
                full_name=user_data.full_name,
                password_hash=get_password_hash(user_data.password),
                role=UserRole(user_data.role).value,
                default_location_id=user_data.default_location_id,
                is_active=True
            )
            self.db.add(db_user)
            self.db.flush()

            log_user_action(
                db=self.db,
                user=self.current_user,
                action="CREATE_USER",
                table="users",
                key=db_user.username,
                new_values={"role": db_user.role, "email": db_user.email},
                module="AUTH"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(db_user)
        logger.info(f"User created: {db_user.username} ({db_user.role})")
        return db_user

    def authenticate_user(self, username: str, password: str) -> Optional[User]:
        """Authenticate user with username and password"""
        user = self.get_user_by_username(username)
        if not user:
            logger.warning(f"Login attempt for unknown user: {username}")
            return None
        if not user.is_active:
            logger.warning(f"Login attempt for inactive user: {username}")
            return None
        if not verify_password(password, user.password_hash):
            logger.warning(f"Invalid password for user: {username}")
            return None
        return user

    def record_login(self, user: User) -> None:
        user.last_login = datetime.utcnow()
        self.db.commit()
        logger.info(f"User logged in: {user.username}")

    def assign_location(self, location_id: int, user_id: int, access_level: AccessLevel) -> UserLocation:
        """Grant (or change) a user's access to a location"""
        if self.db.query(Location.id).filter(Location.id == location_id).first() is None:
            raise NotFoundError(f"Location {location_id} not found", code="LOCATION_NOT_FOUND")
        user = self.get_user_by_id(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found", code="USER_NOT_FOUND")

        level = AccessLevel(access_level).value
        try:
            assignment = self.db.query(UserLocation).filter(
                UserLocation.user_id == user_id,
                UserLocation.location_id == location_id
            ).first()
            if assignment is None:
                assignment = UserLocation(user_id=user_id, location_id=location_id, access_level=level)
                self.db.add(assignment)
            else:
                assignment.access_level = level

            log_user_action(
                db=self.db,
                user=self.current_user,
                action="ASSIGN_LOCATION",
                table="user_locations",
                key=f"{user_id}/{location_id}",
                new_values={"access_level": level},
                module="AUTH"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(assignment)
        logger.info(f"User {user.username} assigned to location {location_id} with {level}")
        return assignment

    def list_location_users(self, location_id: int) -> List[UserLocation]:
        return self.db.query(UserLocation).filter(UserLocation.location_id == location_id).all()
