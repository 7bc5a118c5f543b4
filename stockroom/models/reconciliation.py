"""
Reconciliation Model
Saved per (period, location) figures; authoritative once persisted
"""
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Numeric, DateTime,
    ForeignKey, CheckConstraint, UniqueConstraint
)
from sqlalchemy.sql import func

from stockroom.core.database import Base


class ReconciliationStatus(str, Enum):
    COMPUTED = "COMPUTED"  # live figures, never persisted
    SAVED = "SAVED"
    APPROVED = "APPROVED"


class Reconciliation(Base):
    __tablename__ = "reconciliations"

    id = Column(Integer, primary_key=True)
    period_id = Column(Integer, ForeignKey("periods.id", ondelete="CASCADE"), nullable=False)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)

    opening_stock = Column(Numeric(15, 2), nullable=False, default=0)
    receipts = Column(Numeric(15, 2), nullable=False, default=0)
    transfers_in = Column(Numeric(15, 2), nullable=False, default=0)
    transfers_out = Column(Numeric(15, 2), nullable=False, default=0)
    issues = Column(Numeric(15, 2), nullable=False, default=0)
    closing_stock = Column(Numeric(15, 2), nullable=False, default=0)
    adjustments = Column(Numeric(15, 2), nullable=False, default=0)
    back_charges = Column(Numeric(15, 2), nullable=False, default=0)
    credits = Column(Numeric(15, 2), nullable=False, default=0)
    condemnations = Column(Numeric(15, 2), nullable=False, default=0)
    ncr_credits = Column(Numeric(15, 2), nullable=False, default=0)
    ncr_losses = Column(Numeric(15, 2), nullable=False, default=0)

    status = Column(String(20), nullable=False, default=ReconciliationStatus.SAVED.value)
    saved_by = Column(Integer, ForeignKey("users.id"))
    last_updated = Column(DateTime(timezone=True), server_default=func.current_timestamp(),
                          onupdate=func.current_timestamp())

    __table_args__ = (
        UniqueConstraint("period_id", "location_id", name="uq_reconciliations_period_location"),
        CheckConstraint("status IN ('SAVED', 'APPROVED')", name='valid_reconciliation_status'),
    )
