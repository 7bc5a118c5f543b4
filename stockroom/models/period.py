"""
Accounting Period Models
Periods, per-location readiness, locked prices, close approvals and POB
"""
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Numeric, Date, DateTime, Text, JSON,
    ForeignKey, CheckConstraint, UniqueConstraint, Index, text
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from stockroom.core.database import Base


class PeriodStatus(str, Enum):
    DRAFT = "DRAFT"
    OPEN = "OPEN"
    PENDING_CLOSE = "PENDING_CLOSE"
    CLOSED = "CLOSED"


class PeriodLocationStatus(str, Enum):
    NOT_READY = "NOT_READY"
    READY = "READY"
    CLOSED = "CLOSED"


class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Period(Base):
    """
    Monthly accounting window.

    At most one period is OPEN system-wide; the partial unique index below
    enforces it at the database boundary.
    """
    __tablename__ = "periods"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False, doc="Display name, e.g. 'January 2026'")
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default=PeriodStatus.DRAFT.value)
    closed_at = Column(DateTime(timezone=True))
    closed_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    locations = relationship("PeriodLocation", back_populates="period", cascade="all, delete-orphan")
    prices = relationship("ItemPrice", back_populates="period", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("status IN ('DRAFT', 'OPEN', 'PENDING_CLOSE', 'CLOSED')", name='valid_period_status'),
        CheckConstraint("end_date > start_date", name='valid_date_range'),
        Index(
            "uq_periods_single_open", "status", unique=True,
            sqlite_where=text("status = 'OPEN'"),
            postgresql_where=text("status = 'OPEN'"),
        ),
    )


class PeriodLocation(Base):
    """Per-location readiness marker and close snapshot within a period"""
    __tablename__ = "period_locations"

    id = Column(Integer, primary_key=True)
    period_id = Column(Integer, ForeignKey("periods.id", ondelete="CASCADE"), nullable=False)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    status = Column(String(20), nullable=False, default=PeriodLocationStatus.NOT_READY.value)
    opening_value = Column(Numeric(15, 2), nullable=False, default=0)
    closing_value = Column(Numeric(15, 2), nullable=True)
    snapshot_data = Column(JSON, nullable=True, doc="Stock on hand at close")
    ready_at = Column(DateTime(timezone=True))
    ready_by = Column(Integer, ForeignKey("users.id"))
    closed_at = Column(DateTime(timezone=True))

    period = relationship("Period", back_populates="locations")
    location = relationship("Location")

    __table_args__ = (
        UniqueConstraint("period_id", "location_id", name="uq_period_locations_period_location"),
        CheckConstraint("status IN ('NOT_READY', 'READY', 'CLOSED')", name='valid_period_location_status'),
    )


class ItemPrice(Base):
    """Expected unit price per item, locked for the period once it opens"""
    __tablename__ = "item_prices"

    id = Column(Integer, primary_key=True)
    period_id = Column(Integer, ForeignKey("periods.id", ondelete="CASCADE"), nullable=False)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False)
    price = Column(Numeric(15, 4), nullable=False)
    currency = Column(String(3), nullable=False, default="GBP")
    set_by = Column(Integer, ForeignKey("users.id"))
    set_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    period = relationship("Period", back_populates="prices")
    item = relationship("Item")

    __table_args__ = (
        UniqueConstraint("period_id", "item_id", name="uq_item_prices_period_item"),
        CheckConstraint("price >= 0", name='non_negative_price'),
    )


class Approval(Base):
    """Approval request for a gated action (period close)"""
    __tablename__ = "approvals"

    id = Column(Integer, primary_key=True)
    entity_type = Column(String(30), nullable=False, default="PERIOD_CLOSE")
    entity_id = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=ApprovalStatus.PENDING.value)
    requested_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    requested_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
    reviewed_by = Column(Integer, ForeignKey("users.id"))
    reviewed_at = Column(DateTime(timezone=True))
    comments = Column(Text)

    __table_args__ = (
        CheckConstraint("status IN ('PENDING', 'APPROVED', 'REJECTED')", name='valid_approval_status'),
        Index('idx_approvals_entity', 'entity_type', 'entity_id'),
    )


class POBEntry(Base):
    """Persons on board for a location and day, used for cost per manday"""
    __tablename__ = "pob_entries"

    id = Column(Integer, primary_key=True)
    period_id = Column(Integer, ForeignKey("periods.id", ondelete="CASCADE"), nullable=False)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    entry_date = Column(Date, nullable=False)
    crew_count = Column(Integer, nullable=False, default=0)
    extra_count = Column(Integer, nullable=False, default=0)
    entered_by = Column(Integer, ForeignKey("users.id"))
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(),
                        onupdate=func.current_timestamp())

    __table_args__ = (
        UniqueConstraint("period_id", "location_id", "entry_date", name="uq_pob_entries_period_location_date"),
        CheckConstraint("crew_count >= 0 AND extra_count >= 0", name='non_negative_counts'),
    )
