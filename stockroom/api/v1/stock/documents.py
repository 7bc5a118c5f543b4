"""Posted stock document lookups"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockroom.api import deps
from stockroom.models.auth import User
from stockroom.schemas.stock import Delivery, Issue
from stockroom.services.location_access import check_location_access
from stockroom.services.stock.stock_issues import IssueService
from stockroom.services.stock.stock_receipts import DeliveryService

deliveries_router = APIRouter()
issues_router = APIRouter()


@deliveries_router.get("/{delivery_id}", response_model=Delivery)
async def get_delivery(
    delivery_id: int,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    delivery = DeliveryService(db).get_delivery(delivery_id)
    check_location_access(db, current_user, delivery.location_id)
    return delivery


@issues_router.get("/{issue_id}", response_model=Issue)
async def get_issue(
    issue_id: int,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    issue = IssueService(db).get_issue(issue_id)
    check_location_access(db, current_user, issue.location_id)
    return issue
