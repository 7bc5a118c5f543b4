"""
Non-Conformance Record Model
"""
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Numeric, DateTime, Boolean, Text,
    ForeignKey, CheckConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from stockroom.core.database import Base


class NCRType(str, Enum):
    PRICE_VARIANCE = "PRICE_VARIANCE"
    MANUAL = "MANUAL"


class NCRStatus(str, Enum):
    OPEN = "OPEN"
    SENT = "SENT"
    CREDITED = "CREDITED"
    REJECTED = "REJECTED"
    RESOLVED = "RESOLVED"


class FinancialImpact(str, Enum):
    NONE = "NONE"
    CREDIT = "CREDIT"
    LOSS = "LOSS"


class NotificationRecipient(str, Enum):
    INTERNAL = "INTERNAL"
    SUPPLIER = "SUPPLIER"


class NCR(Base):
    """Flagged discrepancy (price variance or manual report) awaiting resolution"""
    __tablename__ = "ncrs"

    id = Column(Integer, primary_key=True, index=True)
    ncr_no = Column(String(20), unique=True, nullable=False, doc="NCR-YYYY-NNN")
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    type = Column(String(20), nullable=False, default=NCRType.MANUAL.value)
    auto_generated = Column(Boolean, nullable=False, default=False)

    delivery_id = Column(Integer, ForeignKey("deliveries.id"), nullable=True)
    delivery_line_id = Column(Integer, ForeignKey("delivery_lines.id"), nullable=True)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=True)

    reason = Column(Text, nullable=False)
    quantity = Column(Numeric(15, 4), nullable=True)
    value = Column(Numeric(15, 2), nullable=False, default=0, doc="Financial value at stake")

    # Price variance detail
    expected_price = Column(Numeric(15, 4), nullable=True)
    actual_price = Column(Numeric(15, 4), nullable=True)
    price_variance = Column(Numeric(15, 4), nullable=True)
    variance_percent = Column(Numeric(9, 2), nullable=True)

    status = Column(String(20), nullable=False, default=NCRStatus.OPEN.value)
    resolution_type = Column(String(50), nullable=True)
    financial_impact = Column(String(10), nullable=True)
    resolution_notes = Column(Text)
    resolved_at = Column(DateTime(timezone=True))

    created_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    delivery = relationship("Delivery")
    location = relationship("Location")
    item = relationship("Item")

    __table_args__ = (
        CheckConstraint("type IN ('PRICE_VARIANCE', 'MANUAL')", name='valid_ncr_type'),
        CheckConstraint(
            "status IN ('OPEN', 'SENT', 'CREDITED', 'REJECTED', 'RESOLVED')",
            name='valid_ncr_status'
        ),
        CheckConstraint(
            "financial_impact IS NULL OR financial_impact IN ('NONE', 'CREDIT', 'LOSS')",
            name='valid_financial_impact'
        ),
        Index('idx_ncrs_location_status', 'location_id', 'status'),
    )
