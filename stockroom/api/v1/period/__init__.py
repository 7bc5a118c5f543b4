"""Period Control API endpoints"""

from . import approvals, periods, reports

__all__ = ["approvals", "periods", "reports"]
