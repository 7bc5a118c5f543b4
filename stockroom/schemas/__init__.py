"""
Stockroom API Schemas
Pydantic request and response models
"""

from .common import ErrorResponse, ListResponse

__all__ = ["ErrorResponse", "ListResponse"]
