"""
Stockroom Common Schemas
Shared Pydantic models for common API structures
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Generic, List, Optional, TypeVar

# Generic type for list responses
T = TypeVar('T')


class ListResponse(BaseModel, Generic[T]):
    """Generic list response with offset pagination"""
    items: List[T] = Field(..., description="Items for the requested window")
    total: int = Field(..., description="Total number of matching items")
    skip: int = Field(0, description="Offset of the first item")
    limit: int = Field(100, description="Maximum number of items returned")


class ErrorDetail(BaseModel):
    code: str = Field(..., description="Stable application error code")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Any] = Field(None, description="Structured detail for the caller")


class ErrorResponse(BaseModel):
    """
    Standard error envelope

    Returned by every failing endpoint; clients branch on ``data.code``.
    """
    statusCode: int = Field(..., description="HTTP status code")
    data: ErrorDetail

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "statusCode": 400,
            "data": {
                "code": "INSUFFICIENT_STOCK",
                "message": "Insufficient stock for 1 item(s) at Main Kitchen",
                "details": {
                    "location_id": 1,
                    "location_name": "Main Kitchen",
                    "insufficient_items": [{
                        "item_id": 7,
                        "item_code": "FLOUR",
                        "requested": "12",
                        "available": "5",
                        "shortfall": "7"
                    }]
                }
            }
        }
    })

