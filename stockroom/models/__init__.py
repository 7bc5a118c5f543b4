"""
Stockroom Database Models
Importing this package registers every table with the declarative Base
"""

from .auth import User, UserLocation, UserRole, AccessLevel
from .audit import AuditLog
from .stock import Location, Item, LocationStock, LocationType, UnitOfMeasure
from .supplier import Supplier
from .period import (
    Period, PeriodLocation, ItemPrice, Approval, POBEntry,
    PeriodStatus, PeriodLocationStatus, ApprovalStatus
)
from .documents import (
    Delivery, DeliveryLine, Issue, IssueLine, Transfer, TransferLine,
    CostCentre, TransferStatus
)
from .ncr import NCR, NCRType, NCRStatus, FinancialImpact
from .reconciliation import Reconciliation, ReconciliationStatus

__all__ = [
    "User", "UserLocation", "UserRole", "AccessLevel",
    "AuditLog",
    "Location", "Item", "LocationStock", "LocationType", "UnitOfMeasure",
    "Supplier",
    "Period", "PeriodLocation", "ItemPrice", "Approval", "POBEntry",
    "PeriodStatus", "PeriodLocationStatus", "ApprovalStatus",
    "Delivery", "DeliveryLine", "Issue", "IssueLine", "Transfer", "TransferLine",
    "CostCentre", "TransferStatus",
    "NCR", "NCRType", "NCRStatus", "FinancialImpact",
    "Reconciliation", "ReconciliationStatus",
]
