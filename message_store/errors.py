"""
Message Store - Error Taxonomy.

============================================================
PURPOSE
============================================================
Typed errors for every public operation of the message store.
All database errors are caught at the storage boundary and
re-raised as one of these exceptions.

============================================================
EXCEPTION HIERARCHY
============================================================
MessageStoreError (base)
├── ValidationError       Malformed topic definition or value
├── NotFoundError         Unknown topic
├── StorageError          Pool or statement failure
│   └── UnitMissingError  Storage unit (table) does not exist
└── DecodeError           Stored value cannot be parsed back

UnitMissingError is handled inside the facade by a single
self-heal retry. DecodeError is attached to the affected
record instead of aborting a fetch.

============================================================
"""

import logging
from typing import Any, Optional

from sqlalchemy.exc import (
    OperationalError,
    ProgrammingError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)


logger = logging.getLogger(__name__)


# PostgreSQL SQLSTATE for "relation does not exist"
UNDEFINED_TABLE_SQLSTATE = "42P01"


# ============================================================
# BASE EXCEPTION
# ============================================================

class MessageStoreError(Exception):
    """
    Base exception for all message store operations.

    Callers can catch this for generic error handling.
    """

    def __init__(
        self,
        message: str,
        operation: str,
        details: Optional[dict] = None
    ) -> None:
        self.message = message
        self.operation = operation
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        return f"{self.operation}: {self.message}"


# ============================================================
# CALLER ERRORS
# ============================================================

class ValidationError(MessageStoreError):
    """
    Raised when a topic definition or a value is malformed.

    Covers empty names, empty schemas, identifier collisions
    after sanitization and values that cannot be coerced to
    their column type.
    """

    def __init__(
        self,
        operation: str,
        field: str,
        reason: str
    ) -> None:
        super().__init__(
            message=f"Validation failed for {field}: {reason}",
            operation=operation,
            details={"field": field, "reason": reason}
        )
        self.field = field
        self.reason = reason


class NotFoundError(MessageStoreError):
    """Raised when an operation targets a topic that is not registered."""

    def __init__(self, operation: str, topic: str) -> None:
        super().__init__(
            message=f"Topic {topic} not found",
            operation=operation,
            details={"topic": topic}
        )
        self.topic = topic


# ============================================================
# STORAGE ERRORS
# ============================================================

class StorageError(MessageStoreError):
    """
    Raised when the connection pool or a statement fails.

    Use for acquisition timeouts, lost connections and
    statement errors. The original SQLAlchemy error is chained.
    """

    def __init__(
        self,
        operation: str,
        original_error: str,
        unit: Optional[str] = None
    ) -> None:
        where = f" on {unit}" if unit else ""
        super().__init__(
            message=f"Storage failure{where}: {original_error}",
            operation=operation,
            details={"unit": unit, "original_error": original_error}
        )
        self.unit = unit
        self.original_error = original_error


class UnitMissingError(StorageError):
    """
    Raised when the storage unit backing a topic does not exist.

    The facade recovers from this once by creating the unit and
    replaying the write.
    """


class DecodeError(MessageStoreError):
    """
    Raised when a stored structured value fails to parse.

    Detected lazily on read and reported per record.
    """

    def __init__(
        self,
        field: str,
        raw_value: Any,
        reason: str,
        record_id: Optional[int] = None
    ) -> None:
        super().__init__(
            message=f"Cannot decode field {field}: {reason}",
            operation="decode",
            details={"field": field, "record_id": record_id}
        )
        self.field = field
        self.raw_value = raw_value
        self.reason = reason
        self.record_id = record_id


# ============================================================
# SQLALCHEMY TRANSLATION
# ============================================================

def is_missing_unit_error(error: BaseException) -> bool:
    """Check whether a database error means the target table does not exist."""
    original = getattr(error, "orig", None)
    if getattr(original, "pgcode", None) == UNDEFINED_TABLE_SQLSTATE:
        return True
    if getattr(original, "sqlstate", None) == UNDEFINED_TABLE_SQLSTATE:
        return True
    if isinstance(error, (OperationalError, ProgrammingError)):
        text = str(original if original is not None else error).lower()
        return "no such table" in text or (
            "relation" in text and "does not exist" in text
        )
    return False


def translate_error(
    error: SQLAlchemyError,
    operation: str,
    unit: Optional[str] = None
) -> StorageError:
    """
    Wrap a SQLAlchemy error into the store's error taxonomy.

    Args:
        error: The original exception
        operation: Name of the operation that failed
        unit: Storage unit involved, if any

    Returns:
        StorageError or UnitMissingError; callers raise it from error
    """
    if is_missing_unit_error(error):
        return UnitMissingError(
            operation=operation,
            original_error=f"unit {unit} does not exist",
            unit=unit
        )

    if isinstance(error, PoolTimeoutError):
        logger.error(f"Connection acquisition timed out in {operation}: {error}")
    else:
        logger.error(f"Database error in {operation}: {error}")

    return StorageError(
        operation=operation,
        original_error=str(error),
        unit=unit
    )
