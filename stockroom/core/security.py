"""
Security utilities for Stockroom
Authentication, authorization and audit functions
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
import json
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from stockroom.core.config import settings
from stockroom.core.logging import get_logger

security_logger = get_logger("security")

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash"""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Generate password hash"""
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode a JWT token, returning its payload or None when invalid"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        security_logger.warning(f"Rejected token: {e}")
        return None


# Audit logging
def _jsonable(values: Optional[Dict]) -> Optional[Dict]:
    """Render Decimal and date values as strings for the JSON audit columns"""
    if values is None:
        return None
    return json.loads(json.dumps(values, default=str))


def log_user_action(
    db: Session,
    user,
    action: str,
    table: Optional[str] = None,
    key: Optional[str] = None,
    old_values: Optional[Dict] = None,
    new_values: Optional[Dict] = None,
    module: Optional[str] = None
) -> None:
    """
    Add an audit trail entry to the current transaction.

    The entry is committed or rolled back together with the business change
    it describes.
    """
    from stockroom.models.audit import AuditLog

    db.add(AuditLog(
        audit_user=user.username if user else "SYSTEM",
        audit_action=action,
        audit_table=table,
        audit_key=key,
        audit_old_values=_jsonable(old_values),
        audit_new_values=_jsonable(new_values),
        audit_module=module
    ))
