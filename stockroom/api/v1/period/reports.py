"""Period report endpoints"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from stockroom.api import deps
from stockroom.models.auth import User
from stockroom.schemas.period import ReconciliationReport
from stockroom.services.location_access import accessible_location_ids, check_location_access
from stockroom.services.period.period_service import PeriodService
from stockroom.services.period.reconciliation import ReconciliationService

router = APIRouter()


@router.get("/reconciliation", response_model=ReconciliationReport)
async def reconciliation_report(
    period_id: int = Query(..., alias="periodId"),
    location_id: Optional[int] = Query(None, alias="locationId"),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    """
    Reconciliation of every accessible location for a period.

    Saved reconciliations are reported as stored; the rest are computed from
    live data. Grand totals cover all reported locations.
    """
    period = PeriodService(db).get(period_id)
    if location_id is not None:
        check_location_access(db, current_user, location_id)
        location_ids = [location_id]
    else:
        location_ids = accessible_location_ids(db, current_user)
    return ReconciliationService(db, current_user).report(period, location_ids)
