"""Period, Reconciliation and Close Schemas"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict, Any
from datetime import datetime, date
from decimal import Decimal


# Period Schemas
class PeriodCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    start_date: date
    end_date: date


class PeriodLocation(BaseModel):
    location_id: int
    status: str
    opening_value: Decimal
    closing_value: Optional[Decimal] = None
    ready_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class Period(BaseModel):
    id: int
    name: str
    start_date: date
    end_date: date
    status: str
    closed_at: Optional[datetime] = None
    locations: List[PeriodLocation] = []

    model_config = ConfigDict(from_attributes=True)


class ItemPriceInput(BaseModel):
    item_id: int
    price: Decimal = Field(..., ge=0, decimal_places=4)


class ItemPricesSet(BaseModel):
    prices: List[ItemPriceInput] = Field(..., min_length=1)


class ItemPrice(BaseModel):
    item_id: int
    price: Decimal
    currency: str

    model_config = ConfigDict(from_attributes=True)


class ItemPricesResponse(BaseModel):
    period_id: int
    prices: List[ItemPrice]


class RollForwardRequest(BaseModel):
    copy_prices: bool = True


# Reconciliation Schemas
class ReconciliationFigures(BaseModel):
    opening_stock: Decimal
    receipts: Decimal
    transfers_in: Decimal
    transfers_out: Decimal
    issues: Decimal
    closing_stock: Decimal
    adjustments: Decimal
    back_charges: Decimal
    credits: Decimal
    condemnations: Decimal
    ncr_credits: Decimal
    ncr_losses: Decimal


class ReconciliationCalculations(BaseModel):
    consumption: Decimal
    total_adjustments: Decimal
    total_mandays: int
    manday_cost: Optional[Decimal] = None
    breakdown: Dict[str, Decimal] = {}


class Reconciliation(BaseModel):
    period_id: int
    location_id: int
    location_code: str
    location_name: str
    status: str = Field(..., description="COMPUTED (live), SAVED or APPROVED")
    is_saved: bool
    reconciliation: ReconciliationFigures
    calculations: ReconciliationCalculations


class ReconciliationUpdate(BaseModel):
    back_charges: Optional[Decimal] = Field(None, ge=0)
    credits: Optional[Decimal] = Field(None, ge=0)
    condemnations: Optional[Decimal] = Field(None, ge=0)
    adjustments: Optional[Decimal] = None


class ReconciliationGrandTotals(ReconciliationFigures):
    consumption: Decimal
    total_mandays: int
    average_manday_cost: Optional[Decimal] = None


class ReconciliationReportSummary(BaseModel):
    total_locations: int
    locations_with_saved_data: int
    locations_with_calculated_data: int


class ReconciliationReport(BaseModel):
    report_type: str = "reconciliation"
    generated_at: datetime
    period: Period
    locations: List[Reconciliation]
    grand_totals: ReconciliationGrandTotals
    summary: ReconciliationReportSummary


# Close Schemas
class Approval(BaseModel):
    id: int
    entity_type: str
    entity_id: int
    status: str
    requested_by: int
    requested_at: Optional[datetime] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    comments: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ApprovalDecision(BaseModel):
    comments: Optional[str] = Field(None, max_length=500)


class CloseResult(BaseModel):
    period: Period
    approval: Optional[Approval] = None
    warnings: List[str] = []
    snapshots: List[Dict[str, Any]] = []
    message: str



class PeriodLocationReadiness(BaseModel):
    location_id: int
    location_code: str
    location_name: str
    status: str
    ready_at: Optional[datetime] = None
    has_reconciliation: bool


class PeriodCloseStatus(BaseModel):
    period_id: int
    name: str
    status: str
    locations: List[PeriodLocationReadiness]
    all_ready: bool
    can_close: bool
    warnings: List[str] = []
