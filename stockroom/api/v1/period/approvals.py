"""Close approval API endpoints"""

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from stockroom.api import deps
from stockroom.models.auth import User
from stockroom.models.period import ApprovalStatus
from stockroom.schemas.period import Approval, ApprovalDecision, CloseResult
from stockroom.services.period.period_close import PeriodCloseService

router = APIRouter()


@router.get("", response_model=List[Approval])
async def list_approvals(
    status_filter: Optional[ApprovalStatus] = Query(None, alias="status"),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.require_supervisor),
):
    return PeriodCloseService(db, current_user).list_approvals(
        status_filter.value if status_filter else None
    )


@router.patch("/{approval_id}/approve", response_model=CloseResult)
async def approve_close(
    approval_id: int,
    decision: Optional[ApprovalDecision] = Body(None),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_admin_user),
):
    """Approve a pending period close and execute it"""
    comments = decision.comments if decision else None
    return PeriodCloseService(db, current_user).approve_close(approval_id, comments)


@router.patch("/{approval_id}/reject", response_model=CloseResult)
async def reject_close(
    approval_id: int,
    decision: Optional[ApprovalDecision] = Body(None),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_admin_user),
):
    """Reject a pending period close; the period returns to OPEN"""
    comments = decision.comments if decision else None
    return PeriodCloseService(db, current_user).reject_close(approval_id, comments)
