"""Non-Conformance Record Schemas"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime
from decimal import Decimal

from stockroom.models.ncr import NCRStatus, FinancialImpact, NotificationRecipient


class NCRCreate(BaseModel):
    location_id: int
    reason: str = Field(..., min_length=1)
    item_id: Optional[int] = None
    delivery_id: Optional[int] = None
    quantity: Optional[Decimal] = Field(None, gt=0, decimal_places=4)
    value: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)


class NCRUpdate(BaseModel):
    status: Optional[NCRStatus] = None
    resolution_type: Optional[str] = Field(None, max_length=50)
    financial_impact: Optional[FinancialImpact] = None
    resolution_notes: Optional[str] = None


class NCR(BaseModel):
    id: int
    ncr_no: str
    location_id: int
    type: str
    auto_generated: bool
    delivery_id: Optional[int] = None
    delivery_line_id: Optional[int] = None
    item_id: Optional[int] = None
    reason: str
    quantity: Optional[Decimal] = None
    value: Decimal
    expected_price: Optional[Decimal] = None
    actual_price: Optional[Decimal] = None
    price_variance: Optional[Decimal] = None
    variance_percent: Optional[Decimal] = None
    status: str
    resolution_type: Optional[str] = None
    financial_impact: Optional[str] = None
    resolution_notes: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class NCRListResponse(BaseModel):
    ncrs: List[NCR]
    total: int


class NCRFinancialSummary(BaseModel):
    """NCR money for one location and period, split by outcome"""
    credited: Decimal
    losses: Decimal
    pending: Decimal
    open: Decimal
    credited_count: int
    loss_count: int
    pending_count: int
    open_count: int


class NCRResendRequest(BaseModel):
    recipient_type: NotificationRecipient = NotificationRecipient.INTERNAL


class NCRResendResponse(BaseModel):
    ncr_id: int
    ncr_no: str
    recipient_type: str
    recipients: List[str]
