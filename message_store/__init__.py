"""
Message Store Package - Schema-Driven Record Storage.

============================================================
PACKAGE OVERVIEW
============================================================
Stores structured messages grouped by topic. Each topic has
a declared schema and a storage mode:

- shared:    one table for all shared topics, payload as JSON
- dedicated: one table per topic, one typed column per field

Every storage unit is kept under a configured footprint by
evicting its oldest records after each write.

============================================================
ARCHITECTURE
============================================================

    +-----------------------------------------------------+
    |                    MessageStore                     |
    |-----------------------------------------------------|
    |  SchemaRegistry   |  topic -> schema, mode          |
    |  StorageStrategy  |  SharedStore / DedicatedStore   |
    |  ColumnMapper     |  field type <-> column type     |
    |  RetentionManager |  size-bounded eviction          |
    |  Database         |  SQLAlchemy engine and pool     |
    +-----------------------------------------------------+

============================================================
USAGE
============================================================
from message_store import create_message_store, StorageMode

store = create_message_store()
store.initialize()
store.create_topic("sensor/temp", {"value": "number"}, StorageMode.DEDICATED)
store.put("sensor/temp", {"value": "25.5"})
store.fetch("sensor/temp", order="desc", limit=10)

============================================================
"""

from .columns import ColumnMapper, PhysicalType, sanitize, validate_identifier
from .config import DatabaseConfig, LayoutConfig, RetentionConfig, StoreConfig
from .engine import Database
from .errors import (
    DecodeError,
    MessageStoreError,
    NotFoundError,
    StorageError,
    UnitMissingError,
    ValidationError,
)
from .export import csv_filename, render_csv
from .registry import SchemaRegistry
from .retention import RetentionManager, RetentionStats
from .store import MessageStore, create_message_store
from .strategies import DedicatedStore, SharedStore, StorageStrategy
from .types import Record, SortOrder, StorageMode, Topic
from .units import StorageUnit


__version__ = "1.0.0"


__all__ = [
    # Facade
    "MessageStore",
    "create_message_store",
    # Types
    "Topic",
    "Record",
    "StorageMode",
    "SortOrder",
    # Components
    "Database",
    "SchemaRegistry",
    "ColumnMapper",
    "PhysicalType",
    "StorageStrategy",
    "SharedStore",
    "DedicatedStore",
    "StorageUnit",
    "RetentionManager",
    "RetentionStats",
    # Config
    "StoreConfig",
    "DatabaseConfig",
    "RetentionConfig",
    "LayoutConfig",
    # Errors
    "MessageStoreError",
    "ValidationError",
    "NotFoundError",
    "StorageError",
    "UnitMissingError",
    "DecodeError",
    # Helpers
    "sanitize",
    "validate_identifier",
    "render_csv",
    "csv_filename",
]
