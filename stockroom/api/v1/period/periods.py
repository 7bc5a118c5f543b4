"""Accounting Period API endpoints

Period lifecycle, locked prices, per-location readiness and period-end close.
"""

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from stockroom.api import deps
from stockroom.core.exceptions import NotFoundError
from stockroom.models.auth import User
from stockroom.models.period import PeriodStatus
from stockroom.schemas.period import (
    ApprovalDecision, CloseResult, ItemPricesResponse, ItemPricesSet, Period,
    PeriodCloseStatus, PeriodCreate, PeriodLocation, RollForwardRequest
)
from stockroom.services.period.period_close import PeriodCloseService
from stockroom.services.period.period_service import PeriodService
from stockroom.services.stock.price_variance import PriceLockService

router = APIRouter()


@router.post("", response_model=Period, status_code=status.HTTP_201_CREATED)
async def create_period(
    period_in: PeriodCreate,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_admin_user),
):
    """Create a DRAFT period covering every active location"""
    return PeriodService(db, current_user).create(period_in.model_dump())


@router.get("", response_model=List[Period])
async def list_periods(
    status_filter: Optional[PeriodStatus] = Query(None, alias="status"),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    return PeriodService(db).list(status_filter.value if status_filter else None)


@router.get("/current", response_model=Period)
async def get_current_period(
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    """The OPEN period, or the period awaiting close approval"""
    period = PeriodService(db).get_current_period()
    if period is None:
        raise NotFoundError("There is no current period", code="PERIOD_NOT_FOUND")
    return period


@router.get("/{period_id}", response_model=Period)
async def get_period(
    period_id: int,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    return PeriodService(db).get(period_id)


@router.get("/{period_id}/status", response_model=PeriodCloseStatus)
async def get_period_close_status(
    period_id: int,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    """Readiness of each location and whether the period can close"""
    return PeriodCloseService(db, current_user).get_period_status(period_id)


@router.post("/{period_id}/open", response_model=Period)
async def open_period(
    period_id: int,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_admin_user),
):
    """Open a DRAFT period and lock reference prices into it"""
    return PeriodService(db, current_user).open(period_id)


@router.post("/{period_id}/prices", response_model=ItemPricesResponse)
async def set_period_prices(
    period_id: int,
    prices_in: ItemPricesSet,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_admin_user),
):
    period = PeriodService(db).get(period_id)
    prices = PriceLockService(db, current_user).set_period_prices(
        period, [entry.model_dump() for entry in prices_in.prices]
    )
    return {"period_id": period.id, "prices": prices}


@router.get("/{period_id}/prices", response_model=ItemPricesResponse)
async def get_period_prices(
    period_id: int,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    period = PeriodService(db).get(period_id)
    return {"period_id": period.id, "prices": PriceLockService(db).get_period_prices(period.id)}


@router.patch("/{period_id}/locations/{location_id}/ready", response_model=PeriodLocation)
async def mark_location_ready(
    period_id: int,
    location_id: int,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.require_supervisor),
):
    """
    Mark a location ready for period close.

    The location's reconciliation must have been saved first. Once ready,
    the location accepts no further postings in this period.
    """
    return PeriodService(db, current_user).mark_location_ready(period_id, location_id)


@router.patch("/{period_id}/locations/{location_id}/unready", response_model=PeriodLocation)
async def mark_location_unready(
    period_id: int,
    location_id: int,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.require_supervisor),
):
    """Take a location back out of READY so it accepts postings again"""
    return PeriodService(db, current_user).mark_location_unready(period_id, location_id)


@router.post("/{period_id}/roll-forward", response_model=Period, status_code=status.HTTP_201_CREATED)
async def roll_forward_period(
    period_id: int,
    request: Optional[RollForwardRequest] = Body(None),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_admin_user),
):
    """Create the next DRAFT period from a closed one"""
    copy_prices = request.copy_prices if request else True
    return PeriodService(db, current_user).roll_forward(period_id, copy_prices=copy_prices)


@router.post("/{period_id}/close", response_model=CloseResult)
async def close_period(
    period_id: int,
    decision: Optional[ApprovalDecision] = Body(None),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_admin_user),
):
    """
    Close the period now, with the calling admin as approver.

    Every location must be READY. All locations and the period close in one
    transaction.
    """
    comments = decision.comments if decision else None
    return PeriodCloseService(db, current_user).close_period(period_id, comments)


@router.post("/{period_id}/close-request", response_model=CloseResult, status_code=status.HTTP_201_CREATED)
async def request_period_close(
    period_id: int,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.require_supervisor),
):
    """Put the period into PENDING_CLOSE awaiting an admin's approval"""
    return PeriodCloseService(db, current_user).request_close(period_id)
