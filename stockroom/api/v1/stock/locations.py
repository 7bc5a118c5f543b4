"""Stock Location API endpoints

Master data for locations plus everything posted or reported per location:
stock on hand, deliveries, issues, POB and reconciliations.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from stockroom.api import deps
from stockroom.core.exceptions import NotFoundError
from stockroom.core.logging import get_logger
from stockroom.models.auth import User
from stockroom.models.period import Period
from stockroom.models.stock import Location as LocationModel
from stockroom.schemas.auth import UserLocationAssign, UserLocationResponse
from stockroom.schemas.common import ListResponse
from stockroom.schemas.period import Reconciliation, ReconciliationUpdate
from stockroom.schemas.stock import (
    Delivery, DeliveryCreate, DeliveryResponse, Issue, IssueCreate, IssueResponse,
    Location, LocationCreate, LocationStock, LocationUpdate, POBEntry, POBUpsert
)
from stockroom.services.auth_service import AuthService
from stockroom.services.location_access import accessible_location_ids
from stockroom.services.notification_service import ncr_alert_payload, send_price_variance_alert
from stockroom.services.period.period_service import PeriodService
from stockroom.services.period.reconciliation import ReconciliationService
from stockroom.services.stock.ledger import StockLedger
from stockroom.services.stock.stock_issues import IssueService
from stockroom.services.stock.stock_master import StockMasterService
from stockroom.services.stock.stock_receipts import DeliveryService

router = APIRouter()
api_logger = get_logger("api")


def _period_or_current(db: Session, period_id: Optional[int]) -> Period:
    periods = PeriodService(db)
    if period_id is not None:
        return periods.get(period_id)
    period = periods.get_current_period()
    if period is None:
        raise NotFoundError("There is no current period", code="PERIOD_NOT_FOUND")
    return period


@router.get("", response_model=List[Location])
async def list_locations(
    include_inactive: bool = Query(False, description="Include deactivated locations"),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    """
    List the locations visible to the current user.

    Operators see their assigned locations; supervisors and admins see all.
    """
    return StockMasterService(db).list_locations(
        location_ids=accessible_location_ids(db, current_user),
        include_inactive=include_inactive
    )


@router.post("", response_model=Location, status_code=status.HTTP_201_CREATED)
async def create_location(
    location_in: LocationCreate,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_admin_user),
):
    """Create a location. It joins any draft or open period immediately."""
    return StockMasterService(db, current_user).create_location(location_in.model_dump())


@router.get("/{location_id}", response_model=Location)
async def get_location(location: LocationModel = Depends(deps.get_viewable_location)):
    return location


@router.patch("/{location_id}", response_model=Location)
async def update_location(
    location_id: int,
    location_in: LocationUpdate,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_admin_user),
):
    return StockMasterService(db, current_user).update_location(
        location_id, location_in.model_dump(exclude_unset=True)
    )


@router.get("/{location_id}/stock", response_model=List[LocationStock])
async def get_location_stock(
    include_zero: bool = Query(False, description="Include items with nothing on hand"),
    location: LocationModel = Depends(deps.get_viewable_location),
    db: Session = Depends(deps.get_db),
):
    """On hand quantity, WAC and value of every item held at the location"""
    return StockLedger(db).get_location_stock(location.id, include_zero=include_zero)


@router.post("/{location_id}/users", response_model=UserLocationResponse, status_code=status.HTTP_201_CREATED)
async def assign_location_user(
    location_id: int,
    assignment: UserLocationAssign,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_admin_user),
):
    """Grant a user VIEW, POST or MANAGE access to the location"""
    return AuthService(db, current_user).assign_location(
        location_id, assignment.user_id, assignment.access_level
    )


# Deliveries
@router.post("/{location_id}/deliveries", response_model=DeliveryResponse, status_code=status.HTTP_201_CREATED)
async def post_delivery(
    delivery_in: DeliveryCreate,
    background_tasks: BackgroundTasks,
    location: LocationModel = Depends(deps.get_postable_location),
    period: Period = Depends(deps.get_open_period),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    """
    Post a supplier delivery into the open period.

    Lines priced differently from the period's locked price raise an NCR
    each; a price variance email follows once the delivery has committed.
    """
    delivery, ncrs = DeliveryService(db, current_user).post_delivery(
        location.id, period, delivery_in.model_dump()
    )
    if ncrs:
        payload = ncr_alert_payload(delivery, location, delivery.supplier, ncrs)
        background_tasks.add_task(send_price_variance_alert, payload)
        api_logger.info(f"Queued price variance alert for {delivery.delivery_no}")

    return {"delivery": delivery, "has_variance": delivery.has_variance, "ncrs": ncrs}


@router.get("/{location_id}/deliveries", response_model=ListResponse[Delivery])
async def list_deliveries(
    period_id: Optional[int] = Query(None, alias="periodId"),
    has_variance: Optional[bool] = Query(None, alias="hasVariance"),
    pagination: dict = Depends(deps.get_pagination_params),
    location: LocationModel = Depends(deps.get_viewable_location),
    db: Session = Depends(deps.get_db),
):
    deliveries, total = DeliveryService(db).list_deliveries(
        location.id, period_id=period_id, has_variance=has_variance, **pagination
    )
    return {"items": deliveries, "total": total, **pagination}


# Issues
@router.post("/{location_id}/issues", response_model=IssueResponse, status_code=status.HTTP_201_CREATED)
async def post_issue(
    issue_in: IssueCreate,
    location: LocationModel = Depends(deps.get_postable_location),
    period: Period = Depends(deps.get_open_period),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    """Issue stock to a cost centre at the current WAC"""
    issue = IssueService(db, current_user).post_issue(location.id, period, issue_in.model_dump())
    return {"issue": issue}


@router.get("/{location_id}/issues", response_model=ListResponse[Issue])
async def list_issues(
    period_id: Optional[int] = Query(None, alias="periodId"),
    cost_centre: Optional[str] = Query(None, alias="costCentre"),
    pagination: dict = Depends(deps.get_pagination_params),
    location: LocationModel = Depends(deps.get_viewable_location),
    db: Session = Depends(deps.get_db),
):
    issues, total = IssueService(db).list_issues(
        location.id, period_id=period_id, cost_centre=cost_centre, **pagination
    )
    return {"items": issues, "total": total, **pagination}


# POB
@router.post("/{location_id}/pob", response_model=List[POBEntry])
async def upsert_pob(
    pob_in: POBUpsert,
    period_id: Optional[int] = Query(None, alias="periodId"),
    location: LocationModel = Depends(deps.get_postable_location),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    """Record daily persons on board; existing days are overwritten"""
    period = _period_or_current(db, period_id)
    return PeriodService(db, current_user).upsert_pob(
        period, location.id, [entry.model_dump() for entry in pob_in.entries]
    )


@router.get("/{location_id}/pob", response_model=List[POBEntry])
async def list_pob(
    period_id: Optional[int] = Query(None, alias="periodId"),
    location: LocationModel = Depends(deps.get_viewable_location),
    db: Session = Depends(deps.get_db),
):
    period = _period_or_current(db, period_id)
    return PeriodService(db).list_pob(period.id, location.id)


# Reconciliations
@router.get("/{location_id}/reconciliations/{period_id}", response_model=Reconciliation)
async def get_reconciliation(
    period_id: int,
    location: LocationModel = Depends(deps.get_viewable_location),
    db: Session = Depends(deps.get_db),
):
    """Saved reconciliation if one exists, else computed from live data"""
    period = PeriodService(db).get(period_id)
    return ReconciliationService(db).get_reconciliation(period, location)


@router.patch("/{location_id}/reconciliations/{period_id}", response_model=Reconciliation)
async def save_reconciliation(
    period_id: int,
    adjustments: ReconciliationUpdate,
    location: LocationModel = Depends(deps.get_viewable_location),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.require_supervisor),
):
    """Save the reconciliation with manual adjustments"""
    period = PeriodService(db).get(period_id)
    return ReconciliationService(db, current_user).save_reconciliation(
        period, location, adjustments.model_dump(exclude_unset=True)
    )
