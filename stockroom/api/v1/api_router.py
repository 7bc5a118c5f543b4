"""
Main API Router - Consolidates all module routes
"""

from fastapi import APIRouter

from stockroom.api.v1 import admin, auth, ncrs, period, stock
from stockroom.schemas import ErrorResponse

api_router = APIRouter(responses={
    400: {"model": ErrorResponse, "description": "Validation or business rule failure"},
    401: {"model": ErrorResponse, "description": "Missing or invalid credentials"},
    403: {"model": ErrorResponse, "description": "Role or location access denied"},
    404: {"model": ErrorResponse, "description": "Resource not found"},
})

# Authentication routes
api_router.include_router(auth.router, prefix="/auth", tags=["authentication"])
api_router.include_router(admin.users.router, prefix="/users", tags=["users"])

# Master data and per-location postings
api_router.include_router(stock.locations.router, prefix="/locations", tags=["locations"])
api_router.include_router(stock.items.router, prefix="/items", tags=["items"])
api_router.include_router(stock.suppliers.router, prefix="/suppliers", tags=["suppliers"])
api_router.include_router(stock.documents.deliveries_router, prefix="/deliveries", tags=["deliveries"])
api_router.include_router(stock.documents.issues_router, prefix="/issues", tags=["issues"])
api_router.include_router(stock.transfers.router, prefix="/transfers", tags=["transfers"])

# Non-conformance records
api_router.include_router(ncrs.router, prefix="/ncrs", tags=["ncrs"])

# Period control
api_router.include_router(period.periods.router, prefix="/periods", tags=["periods"])
api_router.include_router(period.approvals.router, prefix="/approvals", tags=["approvals"])
api_router.include_router(period.reports.router, prefix="/reports", tags=["reports"])
