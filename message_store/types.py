"""
Message Store - Types.

============================================================
PURPOSE
============================================================
Value types shared by every component of the message store.

- StorageMode: shared table vs dedicated table per topic
- SortOrder: read order by receipt time
- Topic: registry descriptor
- Record: one stored message

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .errors import DecodeError, ValidationError


# ============================================================
# ENUMS
# ============================================================

class StorageMode(Enum):
    """Where a topic's records are stored."""

    SHARED = "shared"
    """All topics share one table, rows tagged by topic name."""

    DEDICATED = "dedicated"
    """One table per topic, one column per schema field."""

    @classmethod
    def parse(cls, value: Union["StorageMode", str, bool]) -> "StorageMode":
        """Accept an enum, its value, or a use-dedicated-table flag."""
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            return cls.DEDICATED if value else cls.SHARED
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValidationError(
                operation="parse_mode",
                field="storage_mode",
                reason=f"unknown storage mode {value!r}"
            )


class SortOrder(Enum):
    """Read order by received_at."""

    ASC = "asc"
    DESC = "desc"

    @classmethod
    def parse(cls, value: Union["SortOrder", str, None]) -> "SortOrder":
        if value is None:
            return cls.ASC
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValidationError(
                operation="parse_order",
                field="order",
                reason='order must be "asc" or "desc"'
            )


# ============================================================
# TOPIC
# ============================================================

FieldSchema = Dict[str, Any]


@dataclass
class Topic:
    """
    A registered topic.

    fields keeps declaration order; its values are abstract
    field types ("string", "number", ...) or nested definitions.
    """

    name: str
    """Unique topic name, immutable once created."""

    fields: FieldSchema
    """Ordered mapping field name -> field type."""

    storage_mode: StorageMode = StorageMode.SHARED
    """Backend holding this topic's records."""

    created_at: Optional[datetime] = None
    """Registration time."""

    id: Optional[int] = None
    """Registry row identifier."""

    @property
    def is_dedicated(self) -> bool:
        return self.storage_mode is StorageMode.DEDICATED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "schema": dict(self.fields),
            "storage_mode": self.storage_mode.value,
            "use_dedicated_table": self.is_dedicated,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ============================================================
# RECORD
# ============================================================

@dataclass
class Record:
    """
    One stored message, as returned by a fetch.

    Records whose stored values could not be decoded carry the
    failures in errors; the affected fields read as None.
    """

    id: int
    topic: str
    fields: Dict[str, Any]
    received_at: Optional[datetime] = None
    errors: List[DecodeError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self, include_metadata: bool = False) -> Dict[str, Any]:
        """Payload view; metadata goes under _id and _received_at."""
        data = dict(self.fields)
        if include_metadata:
            data["_id"] = self.id
            data["_received_at"] = (
                self.received_at.isoformat() if self.received_at else None
            )
        return data
