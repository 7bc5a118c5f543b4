"""
Supplier Model
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime
from sqlalchemy.sql import func

from stockroom.core.database import Base


class Supplier(Base):
    """Goods supplier referenced by deliveries"""
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(20), unique=True, nullable=False, doc="Supplier code")
    name = Column(String(200), nullable=False, doc="Supplier name")
    contact_name = Column(String(100), doc="Contact person")
    email = Column(String(100), doc="Contact email")
    phone = Column(String(30), doc="Contact phone")
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
