"""Stock Control Services - ledger, price lock, master data and stock documents"""

from .ledger import StockLedger, calculate_wac
from .price_variance import PriceLockService, calculate_variance
from .stock_master import StockMasterService

__all__ = [
    "StockLedger",
    "calculate_wac",
    "PriceLockService",
    "calculate_variance",
    "StockMasterService",
]
