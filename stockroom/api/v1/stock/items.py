"""
Stock Items API endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from stockroom.api import deps
from stockroom.models.auth import User
from stockroom.schemas.common import ListResponse
from stockroom.schemas.stock import Item, ItemCreate, ItemUpdate
from stockroom.services.stock.stock_master import StockMasterService

router = APIRouter()


@router.get("", response_model=ListResponse[Item])
def list_stock_items(
    db: Session = Depends(deps.get_db),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    search: Optional[str] = None,
    category: Optional[str] = None,
    include_inactive: bool = False,
    current_user: User = Depends(deps.get_current_active_user)
):
    """
    Retrieve list of stock items with optional filtering.
    """
    items, total = StockMasterService(db).list_items(
        category=category,
        search=search,
        include_inactive=include_inactive,
        skip=skip,
        limit=limit
    )
    return {"items": items, "total": total, "skip": skip, "limit": limit}


@router.post("", response_model=Item, status_code=status.HTTP_201_CREATED)
def create_stock_item(
    item_in: ItemCreate,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_admin_user)
):
    """
    Create new stock item.

    The reference price becomes the locked period price when the next
    period opens.
    """
    return StockMasterService(db, current_user).create_item(item_in.model_dump())


@router.get("/{item_id}", response_model=Item)
def get_stock_item(
    item_id: int,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user)
):
    return StockMasterService(db).get_item(item_id)


@router.patch("/{item_id}", response_model=Item)
def update_stock_item(
    item_id: int,
    item_in: ItemUpdate,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_admin_user)
):
    return StockMasterService(db, current_user).update_item(item_id, item_in.model_dump(exclude_unset=True))
