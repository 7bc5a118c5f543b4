"""
Non-Conformance Record API endpoints
"""

from typing import Optional
from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session

from stockroom.api import deps
from stockroom.models.auth import User
from stockroom.models.ncr import NCRStatus, NCRType, NotificationRecipient
from stockroom.schemas.ncr import (
    NCR, NCRCreate, NCRFinancialSummary, NCRListResponse, NCRResendRequest, NCRResendResponse, NCRUpdate
)
from stockroom.services.location_access import accessible_location_ids, check_location_access
from stockroom.services.ncr_service import NCRService
from stockroom.services.period.period_service import PeriodService

router = APIRouter()


@router.post("", response_model=NCR, status_code=status.HTTP_201_CREATED)
async def create_ncr(
    ncr_in: NCRCreate,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    """Raise a manual NCR against a location, optionally tied to a delivery"""
    check_location_access(db, current_user, ncr_in.location_id, require_post=True)
    return NCRService(db, current_user).create_manual(ncr_in.model_dump())


@router.get("", response_model=NCRListResponse)
async def list_ncrs(
    location_id: Optional[int] = Query(None, alias="locationId"),
    status_filter: Optional[NCRStatus] = Query(None, alias="status"),
    ncr_type: Optional[NCRType] = Query(None, alias="type"),
    pagination: dict = Depends(deps.get_pagination_params),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    if location_id is not None:
        check_location_access(db, current_user, location_id)
        location_ids = [location_id]
    else:
        location_ids = accessible_location_ids(db, current_user)

    ncrs, total = NCRService(db).list(
        location_ids=location_ids,
        status=status_filter.value if status_filter else None,
        ncr_type=ncr_type.value if ncr_type else None,
        **pagination
    )
    return {"ncrs": ncrs, "total": total}


@router.get("/summary", response_model=NCRFinancialSummary)
async def ncr_financial_summary(
    location_id: int = Query(..., alias="locationId"),
    period_id: int = Query(..., alias="periodId"),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    """Credited, lost, pending and open NCR value for one location and period"""
    check_location_access(db, current_user, location_id)
    period = PeriodService(db).get(period_id)
    return NCRService(db).financial_summary(location_id, period)


@router.get("/{ncr_id}", response_model=NCR)
async def get_ncr(
    ncr_id: int,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    ncr = NCRService(db).get(ncr_id)
    check_location_access(db, current_user, ncr.location_id)
    return ncr


@router.patch("/{ncr_id}", response_model=NCR)
async def update_ncr(
    ncr_id: int,
    ncr_in: NCRUpdate,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    """
    Update an NCR's status or resolution.

    Resolution type and financial impact are accepted only with status
    RESOLVED.
    """
    service = NCRService(db, current_user)
    ncr = service.get(ncr_id)
    check_location_access(db, current_user, ncr.location_id, require_post=True)
    return service.update(ncr, ncr_in.model_dump(exclude_unset=True))


@router.post("/{ncr_id}/resend-notification", response_model=NCRResendResponse)
async def resend_ncr_notification(
    ncr_id: int,
    resend_in: Optional[NCRResendRequest] = Body(None),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_admin_user),
):
    """
    Send an NCR again to the internal notification list or the supplier.

    Fails with NO_RECIPIENTS when the group has no address and with
    EMAIL_SEND_FAILED when the mail server refuses it.
    """
    recipient_type = resend_in.recipient_type if resend_in else NotificationRecipient.INTERNAL
    service = NCRService(db, current_user)
    return service.resend_notification(service.get(ncr_id), recipient_type)
