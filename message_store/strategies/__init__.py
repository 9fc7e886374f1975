"""
Storage Strategies Package.

- base: StorageStrategy contract
- shared: SharedStore (one table, rows tagged by topic)
- dedicated: DedicatedStore (one table per topic)
"""

from .base import StorageStrategy
from .dedicated import DedicatedStore
from .shared import SharedStore


__all__ = [
    "StorageStrategy",
    "SharedStore",
    "DedicatedStore",
]
