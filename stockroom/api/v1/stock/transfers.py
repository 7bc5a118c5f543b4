"""Stock Transfer API endpoints

Transfers are requested by anyone who may post at the source location and
decided by a supervisor or admin. Stock moves only on approval.
"""

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from stockroom.api import deps
from stockroom.core.exceptions import LocationAccessDeniedError
from stockroom.models.auth import User
from stockroom.models.documents import TransferStatus
from stockroom.models.period import Period
from stockroom.schemas.common import ListResponse
from stockroom.schemas.stock import Transfer, TransferCreate, TransferReject, TransferResponse
from stockroom.services.location_access import accessible_location_ids
from stockroom.services.stock.stock_transfer import StockTransferService

router = APIRouter()


@router.post("", response_model=TransferResponse, status_code=status.HTTP_201_CREATED)
async def create_transfer(
    transfer_in: TransferCreate,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    """
    Request a transfer between two locations.

    Source stock is checked now and again on approval.
    """
    transfer = StockTransferService(db, current_user).create_transfer(transfer_in.model_dump())
    return {"transfer": transfer, "message": "Transfer awaiting approval"}


@router.get("", response_model=ListResponse[Transfer])
async def list_transfers(
    status_filter: Optional[TransferStatus] = Query(None, alias="status"),
    pagination: dict = Depends(deps.get_pagination_params),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    transfers, total = StockTransferService(db).list_transfers(
        location_ids=accessible_location_ids(db, current_user),
        status=status_filter.value if status_filter else None,
        **pagination
    )
    return {"items": transfers, "total": total, **pagination}


@router.get("/{transfer_id}", response_model=Transfer)
async def get_transfer(
    transfer_id: int,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    transfer = StockTransferService(db).get_transfer(transfer_id)
    visible = accessible_location_ids(db, current_user)
    if visible is not None and transfer.from_location_id not in visible and transfer.to_location_id not in visible:
        raise LocationAccessDeniedError(
            "You do not have access to either location of this transfer",
            details={"transfer_id": transfer_id}
        )
    return transfer


@router.patch("/{transfer_id}/approve", response_model=TransferResponse)
async def approve_transfer(
    transfer_id: int,
    current_user: User = Depends(deps.require_supervisor),
    period: Period = Depends(deps.get_open_period),
    db: Session = Depends(deps.get_db),
):
    """Approve a pending transfer and move the stock in the open period"""
    transfer = StockTransferService(db, current_user).approve_transfer(transfer_id, period)
    return {"transfer": transfer, "message": "Transfer approved and completed"}


@router.patch("/{transfer_id}/reject", response_model=TransferResponse)
async def reject_transfer(
    transfer_id: int,
    rejection: Optional[TransferReject] = Body(None),
    current_user: User = Depends(deps.require_supervisor),
    db: Session = Depends(deps.get_db),
):
    comment = rejection.comment if rejection else None
    transfer = StockTransferService(db, current_user).reject_transfer(transfer_id, comment)
    return {"transfer": transfer, "message": "Transfer rejected"}
