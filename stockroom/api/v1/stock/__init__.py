"""Stock Control API endpoints"""

from . import documents, items, locations, suppliers, transfers

__all__ = ["documents", "items", "locations", "suppliers", "transfers"]
