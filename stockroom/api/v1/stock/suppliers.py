"""
Supplier API endpoints
"""

from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from stockroom.api import deps
from stockroom.models.auth import User
from stockroom.schemas.stock import Supplier, SupplierCreate
from stockroom.services.stock.stock_master import StockMasterService

router = APIRouter()


@router.get("", response_model=List[Supplier])
def list_suppliers(
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user)
):
    """Active suppliers ordered by code"""
    return StockMasterService(db).list_suppliers()


@router.post("", response_model=Supplier, status_code=status.HTTP_201_CREATED)
def create_supplier(
    supplier_in: SupplierCreate,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_admin_user)
):
    return StockMasterService(db, current_user).create_supplier(supplier_in.model_dump())


@router.get("/{supplier_id}", response_model=Supplier)
def get_supplier(
    supplier_id: int,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user)
):
    return StockMasterService(db).get_supplier(supplier_id)
