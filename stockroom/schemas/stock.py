"""Stock Control Schemas - master data, ledger rows and stock documents"""

from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from typing import Optional, List
from datetime import datetime, date
from decimal import Decimal

from stockroom.models.stock import LocationType, UnitOfMeasure
from stockroom.models.documents import CostCentre
from stockroom.schemas.ncr import NCR


# Location Schemas
class LocationBase(BaseModel):
    code: str = Field(..., min_length=1, max_length=10)
    name: str = Field(..., min_length=1, max_length=100)
    type: LocationType = LocationType.STORE
    address: Optional[str] = None


class LocationCreate(LocationBase):
    pass


class LocationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    type: Optional[LocationType] = None
    address: Optional[str] = None
    is_active: Optional[bool] = None


class Location(LocationBase):
    id: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class LocationSummary(BaseModel):
    id: int
    code: str
    name: str

    model_config = ConfigDict(from_attributes=True)


# Item Schemas
class ItemBase(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=200)
    unit: UnitOfMeasure = UnitOfMeasure.EA
    category: Optional[str] = Field(None, max_length=50)
    sub_category: Optional[str] = Field(None, max_length=50)
    reference_price: Optional[Decimal] = Field(None, ge=0, decimal_places=4)


class ItemCreate(ItemBase):
    pass


class ItemUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    category: Optional[str] = Field(None, max_length=50)
    sub_category: Optional[str] = Field(None, max_length=50)
    reference_price: Optional[Decimal] = Field(None, ge=0, decimal_places=4)
    is_active: Optional[bool] = None


class Item(ItemBase):
    id: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


# Supplier Schemas
class SupplierCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=200)
    contact_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class Supplier(SupplierCreate):
    id: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


# Ledger Schemas
class LocationStock(BaseModel):
    location_id: int
    item_id: int
    item_code: str
    item_name: str
    unit: str
    on_hand: Decimal
    wac: Decimal
    value: Decimal
    min_stock: Optional[Decimal] = None
    max_stock: Optional[Decimal] = None
    below_minimum: bool = False


# Delivery Schemas
class DeliveryLineCreate(BaseModel):
    item_id: int
    quantity: Decimal = Field(..., gt=0, decimal_places=4)
    unit_price: Decimal = Field(..., ge=0, decimal_places=4)


class DeliveryCreate(BaseModel):
    supplier_id: int
    delivery_date: date
    invoice_no: Optional[str] = Field(None, max_length=50)
    delivery_note: Optional[str] = None
    lines: List[DeliveryLineCreate] = Field(..., min_length=1)


class DeliveryLine(BaseModel):
    id: int
    item_id: int
    quantity: Decimal
    unit_price: Decimal
    period_price: Decimal
    price_variance: Decimal
    line_value: Decimal

    model_config = ConfigDict(from_attributes=True)


class Delivery(BaseModel):
    id: int
    delivery_no: str
    location_id: int
    supplier_id: int
    period_id: int
    invoice_no: Optional[str] = None
    delivery_note: Optional[str] = None
    delivery_date: date
    status: str
    total_amount: Decimal
    has_variance: bool
    posted_at: Optional[datetime] = None
    lines: List[DeliveryLine] = []

    model_config = ConfigDict(from_attributes=True)


class DeliveryResponse(BaseModel):
    delivery: Delivery
    has_variance: bool
    ncrs: List[NCR] = []


# Issue Schemas
class IssueLineCreate(BaseModel):
    item_id: int
    quantity: Decimal = Field(..., gt=0, decimal_places=4)


class IssueCreate(BaseModel):
    issue_date: date
    cost_centre: CostCentre = CostCentre.FOOD
    lines: List[IssueLineCreate] = Field(..., min_length=1)


class IssueLine(BaseModel):
    id: int
    item_id: int
    quantity: Decimal
    wac_at_issue: Decimal
    line_value: Decimal

    model_config = ConfigDict(from_attributes=True)


class Issue(BaseModel):
    id: int
    issue_no: str
    location_id: int
    period_id: int
    issue_date: date
    cost_centre: str
    total_value: Decimal
    posted_at: Optional[datetime] = None
    lines: List[IssueLine] = []

    model_config = ConfigDict(from_attributes=True)


class IssueResponse(BaseModel):
    issue: Issue


# Transfer Schemas
class TransferLineCreate(BaseModel):
    item_id: int
    quantity: Decimal = Field(..., gt=0, decimal_places=4)


class TransferCreate(BaseModel):
    from_location_id: int
    to_location_id: int
    request_date: date
    notes: Optional[str] = None
    lines: List[TransferLineCreate] = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_unique_items(self):
        item_ids = [line.item_id for line in self.lines]
        if len(item_ids) != len(set(item_ids)):
            raise ValueError("Each item may appear only once per transfer")
        return self


class TransferReject(BaseModel):
    comment: Optional[str] = Field(None, max_length=500)


class TransferLine(BaseModel):
    id: int
    item_id: int
    quantity: Decimal
    wac_at_transfer: Decimal
    line_value: Decimal

    model_config = ConfigDict(from_attributes=True)


class Transfer(BaseModel):
    id: int
    transfer_no: str
    from_location_id: int
    to_location_id: int
    period_id: Optional[int] = None
    status: str
    request_date: date
    transfer_date: Optional[datetime] = None
    approval_date: Optional[datetime] = None
    requested_by: Optional[int] = None
    approved_by: Optional[int] = None
    total_value: Decimal
    notes: Optional[str] = None
    lines: List[TransferLine] = []

    model_config = ConfigDict(from_attributes=True)


class TransferResponse(BaseModel):
    transfer: Transfer
    message: Optional[str] = None


# POB Schemas
class POBEntryInput(BaseModel):
    entry_date: date
    crew_count: int = Field(0, ge=0)
    extra_count: int = Field(0, ge=0)


class POBUpsert(BaseModel):
    entries: List[POBEntryInput] = Field(..., min_length=1)

    @field_validator("entries")
    @classmethod
    def check_unique_dates(cls, v):
        dates = [entry.entry_date for entry in v]
        if len(dates) != len(set(dates)):
            raise ValueError("Duplicate entry_date in POB entries")
        return v


class POBEntry(BaseModel):
    id: int
    period_id: int
    location_id: int
    entry_date: date
    crew_count: int
    extra_count: int

    model_config = ConfigDict(from_attributes=True)
