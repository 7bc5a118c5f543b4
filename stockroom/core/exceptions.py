"""
Custom Application Exceptions

Every error carries a stable string ``code`` that API clients branch on,
an HTTP status and optional structured ``details``.
"""
from typing import Any, Optional


class StockroomError(Exception):
    """Base exception for the Stockroom application"""

    status_code = 400
    code = "BUSINESS_RULE_VIOLATION"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Any = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.details = details

    def to_dict(self) -> dict:
        data = {"code": self.code, "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return {"statusCode": self.status_code, "data": data}


class ValidationError(StockroomError):
    """Raised when data validation fails"""
    code = "VALIDATION_ERROR"


class NotFoundError(StockroomError):
    """Raised when a referenced record does not exist"""
    status_code = 404
    code = "NOT_FOUND"


class InsufficientPermissionsError(StockroomError):
    """Raised when user lacks required permissions"""
    status_code = 403
    code = "INSUFFICIENT_PERMISSIONS"


class LocationAccessDeniedError(InsufficientPermissionsError):
    """Raised when a user is not assigned to a location"""
    code = "LOCATION_ACCESS_DENIED"


class BusinessLogicError(StockroomError):
    """Raised when business rules are violated"""
    pass


class InsufficientStockError(BusinessLogicError):
    """Raised when a deduction would take on-hand stock below zero"""
    code = "INSUFFICIENT_STOCK"


class PeriodClosedError(BusinessLogicError):
    """Raised when posting into a closed or closing period"""
    code = "PERIOD_CLOSED"


class InvalidStatusError(BusinessLogicError):
    """Raised when a workflow transition does not match the current status"""
    code = "INVALID_STATUS"


class ConflictError(StockroomError):
    """Raised when the request conflicts with existing state"""
    status_code = 409
    code = "CONFLICT"


class IntegrationError(StockroomError):
    """Raised when external system integration fails"""
    status_code = 502
    code = "INTEGRATION_ERROR"
