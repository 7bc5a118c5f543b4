"""
Stockroom Stock Models
Locations, items and the per-location stock ledger
"""
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Numeric, DateTime, Boolean, Text,
    ForeignKey, CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from stockroom.core.database import Base


class LocationType(str, Enum):
    KITCHEN = "KITCHEN"
    STORE = "STORE"
    CENTRAL = "CENTRAL"
    WAREHOUSE = "WAREHOUSE"


class UnitOfMeasure(str, Enum):
    KG = "KG"
    EA = "EA"
    LTR = "LTR"
    BOX = "BOX"
    CASE = "CASE"
    PACK = "PACK"


class Location(Base):
    """
    Physical site holding stock.

    Locations are never deleted, only deactivated, so that their ledger
    history stays intact.
    """
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(10), unique=True, nullable=False, doc="Location code")
    name = Column(String(100), nullable=False, doc="Location name")
    type = Column(String(20), nullable=False, default=LocationType.STORE.value, doc="Location type")
    address = Column(Text, doc="Street address")
    is_active = Column(Boolean, default=True, nullable=False, doc="Active flag")

    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(),
                        onupdate=func.current_timestamp())

    stock = relationship("LocationStock", back_populates="location")

    __table_args__ = (
        CheckConstraint("type IN ('KITCHEN', 'STORE', 'CENTRAL', 'WAREHOUSE')", name='valid_location_type'),
    )


class Item(Base):
    """Trackable inventory good, shared across all locations"""
    __tablename__ = "items"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(20), unique=True, nullable=False, doc="Item code")
    name = Column(String(200), nullable=False, doc="Item name")
    unit = Column(String(10), nullable=False, default=UnitOfMeasure.EA.value, doc="Unit of measure")
    category = Column(String(50), doc="Category")
    sub_category = Column(String(50), doc="Sub category")
    reference_price = Column(Numeric(15, 4), nullable=True,
                             doc="Current reference price, locked into ItemPrice at period open")
    is_active = Column(Boolean, default=True, nullable=False, doc="Active flag")

    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(),
                        onupdate=func.current_timestamp())

    stock = relationship("LocationStock", back_populates="item")

    __table_args__ = (
        CheckConstraint("unit IN ('KG', 'EA', 'LTR', 'BOX', 'CASE', 'PACK')", name='valid_unit'),
        Index('idx_items_category', 'category'),
    )


class LocationStock(Base):
    """
    Stock ledger row - on hand quantity and weighted average cost per
    (location, item).

    Rows are created lazily on the first movement. Only deliveries, issues
    and completed transfers write to this table, always through the ledger.
    """
    __tablename__ = "location_stock"

    id = Column(Integer, primary_key=True, index=True)
    location_id = Column(Integer, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False)
    item_id = Column(Integer, ForeignKey("items.id", ondelete="RESTRICT"), nullable=False)

    on_hand = Column(Numeric(15, 4), nullable=False, default=0, doc="Quantity on hand")
    wac = Column(Numeric(15, 4), nullable=False, default=0, doc="Weighted average cost")
    min_stock = Column(Numeric(15, 4), nullable=True, doc="Minimum stock threshold")
    max_stock = Column(Numeric(15, 4), nullable=True, doc="Maximum stock threshold")
    last_counted = Column(DateTime(timezone=True), nullable=True, doc="Last physical count")

    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(),
                        onupdate=func.current_timestamp())

    location = relationship("Location", back_populates="stock")
    item = relationship("Item", back_populates="stock")

    __table_args__ = (
        UniqueConstraint("location_id", "item_id", name="uq_location_stock_location_item"),
        CheckConstraint("on_hand >= 0", name='non_negative_on_hand'),
        CheckConstraint("wac >= 0", name='non_negative_wac'),
    )
