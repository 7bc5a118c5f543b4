"""
Stock Document Models
Deliveries (goods received), issues (consumption) and inter-location transfers
"""
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Numeric, Date, DateTime, Boolean, Text,
    ForeignKey, CheckConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from stockroom.core.database import Base


class CostCentre(str, Enum):
    FOOD = "FOOD"
    CLEAN = "CLEAN"
    OTHER = "OTHER"


class TransferStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class Delivery(Base):
    """Goods receipt, posted to the ledger in one step"""
    __tablename__ = "deliveries"

    id = Column(Integer, primary_key=True, index=True)
    delivery_no = Column(String(20), unique=True, nullable=False, doc="DEL-YYYY-NNN")
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False)
    period_id = Column(Integer, ForeignKey("periods.id"), nullable=False)
    invoice_no = Column(String(50))
    delivery_note = Column(Text)
    delivery_date = Column(Date, nullable=False)
    status = Column(String(10), nullable=False, default="POSTED")
    total_amount = Column(Numeric(15, 2), nullable=False, default=0)
    has_variance = Column(Boolean, nullable=False, default=False)
    posted_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
    created_by = Column(Integer, ForeignKey("users.id"))

    lines = relationship("DeliveryLine", back_populates="delivery", cascade="all, delete-orphan")
    location = relationship("Location")
    supplier = relationship("Supplier")

    __table_args__ = (
        Index('idx_deliveries_location_period', 'location_id', 'period_id'),
    )


class DeliveryLine(Base):
    __tablename__ = "delivery_lines"

    id = Column(Integer, primary_key=True)
    delivery_id = Column(Integer, ForeignKey("deliveries.id", ondelete="CASCADE"), nullable=False)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False)
    quantity = Column(Numeric(15, 4), nullable=False)
    unit_price = Column(Numeric(15, 4), nullable=False, doc="Actual invoiced price")
    period_price = Column(Numeric(15, 4), nullable=False, doc="Locked expected price")
    price_variance = Column(Numeric(15, 4), nullable=False, default=0)
    line_value = Column(Numeric(15, 2), nullable=False)

    delivery = relationship("Delivery", back_populates="lines")
    item = relationship("Item")

    __table_args__ = (
        CheckConstraint("quantity > 0", name='positive_quantity'),
    )


class Issue(Base):
    """Consumption document deducting stock at its current WAC"""
    __tablename__ = "issues"

    id = Column(Integer, primary_key=True, index=True)
    issue_no = Column(String(20), unique=True, nullable=False, doc="ISS-YYYY-NNN")
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    period_id = Column(Integer, ForeignKey("periods.id"), nullable=False)
    issue_date = Column(Date, nullable=False)
    cost_centre = Column(String(10), nullable=False, default=CostCentre.FOOD.value)
    total_value = Column(Numeric(15, 2), nullable=False, default=0)
    posted_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
    created_by = Column(Integer, ForeignKey("users.id"))

    lines = relationship("IssueLine", back_populates="issue", cascade="all, delete-orphan")
    location = relationship("Location")

    __table_args__ = (
        CheckConstraint("cost_centre IN ('FOOD', 'CLEAN', 'OTHER')", name='valid_cost_centre'),
        Index('idx_issues_location_period', 'location_id', 'period_id'),
    )


class IssueLine(Base):
    __tablename__ = "issue_lines"

    id = Column(Integer, primary_key=True)
    issue_id = Column(Integer, ForeignKey("issues.id", ondelete="CASCADE"), nullable=False)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False)
    quantity = Column(Numeric(15, 4), nullable=False)
    wac_at_issue = Column(Numeric(15, 4), nullable=False)
    line_value = Column(Numeric(15, 2), nullable=False)

    issue = relationship("Issue", back_populates="lines")
    item = relationship("Item")

    __table_args__ = (
        CheckConstraint("quantity > 0", name='positive_quantity'),
    )


class Transfer(Base):
    """
    Inter-location stock movement.

    Stock only moves when the transfer is approved; the status column is the
    concurrency guard for that transition.
    """
    __tablename__ = "transfers"

    id = Column(Integer, primary_key=True, index=True)
    transfer_no = Column(String(20), unique=True, nullable=False, doc="TRF-YYYY-NNN")
    from_location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    to_location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    period_id = Column(Integer, ForeignKey("periods.id"), nullable=True, doc="Period the stock moved in")
    status = Column(String(20), nullable=False, default=TransferStatus.PENDING_APPROVAL.value)
    request_date = Column(Date, nullable=False)
    transfer_date = Column(DateTime(timezone=True))
    approval_date = Column(DateTime(timezone=True))
    requested_by = Column(Integer, ForeignKey("users.id"))
    approved_by = Column(Integer, ForeignKey("users.id"))
    total_value = Column(Numeric(15, 2), nullable=False, default=0)
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    lines = relationship("TransferLine", back_populates="transfer", cascade="all, delete-orphan")
    from_location = relationship("Location", foreign_keys=[from_location_id])
    to_location = relationship("Location", foreign_keys=[to_location_id])

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'PENDING_APPROVAL', 'APPROVED', 'COMPLETED', 'REJECTED')",
            name='valid_transfer_status'
        ),
        CheckConstraint("from_location_id <> to_location_id", name='distinct_locations'),
        Index('idx_transfers_status', 'status'),
    )


class TransferLine(Base):
    __tablename__ = "transfer_lines"

    id = Column(Integer, primary_key=True)
    transfer_id = Column(Integer, ForeignKey("transfers.id", ondelete="CASCADE"), nullable=False)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False)
    quantity = Column(Numeric(15, 4), nullable=False)
    wac_at_transfer = Column(Numeric(15, 4), nullable=False, doc="Source WAC captured at request")
    line_value = Column(Numeric(15, 2), nullable=False)

    transfer = relationship("Transfer", back_populates="lines")
    item = relationship("Item")

    __table_args__ = (
        CheckConstraint("quantity > 0", name='positive_quantity'),
    )
