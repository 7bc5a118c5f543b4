"""
Stockroom Business Services
Ledger, documents, period control and reconciliation
"""

from .auth_service import AuthService

__all__ = ["AuthService"]
