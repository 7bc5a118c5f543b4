"""
Location access rules

ADMIN and SUPERVISOR users reach every location. OPERATOR users need an
assignment; posting needs POST or MANAGE access.
"""
from typing import List, Optional
from sqlalchemy.orm import Session

from stockroom.core.exceptions import (
    InsufficientPermissionsError, LocationAccessDeniedError, NotFoundError
)
from stockroom.core.logging import get_logger
from stockroom.models.auth import AccessLevel, User, UserLocation
from stockroom.models.stock import Location

security_logger = get_logger("security")

POSTING_LEVELS = (AccessLevel.POST.value, AccessLevel.MANAGE.value)


def get_location_or_404(db: Session, location_id: int) -> Location:
    location = db.query(Location).filter(Location.id == location_id).first()
    if location is None:
        raise NotFoundError(f"Location {location_id} not found", code="LOCATION_NOT_FOUND")
    return location


def check_location_access(db: Session, user: User, location_id: int, require_post: bool = False) -> Location:
    """Return the location if ``user`` may read it (or post to it), else raise"""
    location = get_location_or_404(db, location_id)
    if user.is_supervisor_or_admin:
        return location

    assignment = db.query(UserLocation).filter(
        UserLocation.user_id == user.id,
        UserLocation.location_id == location_id
    ).first()
    if assignment is None:
        security_logger.warning(f"User {user.username} denied access to location {location.code}")
        raise LocationAccessDeniedError(
            f"You do not have access to location {location.name}",
            details={"location_id": location_id}
        )
    if require_post and assignment.access_level not in POSTING_LEVELS:
        security_logger.warning(
            f"User {user.username} has {assignment.access_level} access to {location.code}, posting refused"
        )
        raise InsufficientPermissionsError(
            f"Posting at {location.name} requires POST access",
            details={"location_id": location_id, "access_level": assignment.access_level}
        )
    return location


def accessible_location_ids(db: Session, user: User) -> Optional[List[int]]:
    """Location ids the user may see; None means every location"""
    if user.is_supervisor_or_admin:
        return None
    return [
        location_id for (location_id,) in db.query(UserLocation.location_id).filter(
            UserLocation.user_id == user.id
        ).all()
    ]
