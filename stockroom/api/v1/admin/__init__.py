"""
Admin Module API endpoints
User management
"""

from . import users

__all__ = ["users"]
