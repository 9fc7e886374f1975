"""
Message Store - Column Mapper.

============================================================
PURPOSE
============================================================
Stateless translation between abstract field types and
physical column types, plus value conversion both ways.

TYPE TABLE:
    string             -> TEXT
    number | integer   -> NUMERIC
    boolean            -> BOOLEAN
    date | timestamp   -> TIMESTAMP
    array | object     -> STRUCTURED (JSON text)
    nested definition  -> STRUCTURED
    anything else      -> TEXT (logged fallback)

IDENTIFIERS:
    Field and topic names are sanitized by replacing every
    non-alphanumeric character with "_". The mapping is not
    injective, so collisions are rejected at registration.

============================================================
"""

import json
import logging
import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List

from sqlalchemy import Boolean, DateTime, Numeric, Text
from sqlalchemy.types import TypeEngine

from .errors import DecodeError, ValidationError


logger = logging.getLogger(__name__)


IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
MAX_IDENTIFIER_LENGTH = 63  # PostgreSQL NAMEDATALEN - 1

RESERVED_COLUMNS = frozenset({"id", "received_at"})

_TRUE_STRINGS = frozenset({"true", "1", "yes", "y", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "n", "off", ""})


class PhysicalType(Enum):
    """Physical column kinds."""

    TEXT = "text"
    NUMERIC = "numeric"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    STRUCTURED = "structured"


_TYPE_TABLE: Dict[str, PhysicalType] = {
    "string": PhysicalType.TEXT,
    "number": PhysicalType.NUMERIC,
    "integer": PhysicalType.NUMERIC,
    "boolean": PhysicalType.BOOLEAN,
    "date": PhysicalType.TIMESTAMP,
    "timestamp": PhysicalType.TIMESTAMP,
    "array": PhysicalType.STRUCTURED,
    "object": PhysicalType.STRUCTURED,
}


# ============================================================
# IDENTIFIERS
# ============================================================

def sanitize(name: str) -> str:
    """Replace every non-alphanumeric character with an underscore."""
    return re.sub(r"[^a-zA-Z0-9]", "_", name)


def validate_identifier(identifier: str, operation: str = "validate_identifier") -> str:
    """
    Allowlist check for anything used as a table or column name.

    Raises:
        ValidationError: If the identifier is empty, too long or
            contains anything but letters, digits and underscores
    """
    if not identifier or not IDENTIFIER_PATTERN.match(identifier):
        raise ValidationError(
            operation=operation,
            field=identifier,
            reason="identifier must contain only letters, digits and underscores"
        )
    if len(identifier) > MAX_IDENTIFIER_LENGTH:
        raise ValidationError(
            operation=operation,
            field=identifier,
            reason=f"identifier longer than {MAX_IDENTIFIER_LENGTH} characters"
        )
    return identifier


def serialize_structured(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


# ============================================================
# COLUMN MAPPER
# ============================================================

class ColumnMapper:
    """
    Pure mapping between schema field types and columns.

    Holds no state; one instance can be shared by every store.
    """

    def physical_type(self, field_type: Any) -> PhysicalType:
        if not isinstance(field_type, str):
            # Nested definitions are stored whole
            return PhysicalType.STRUCTURED
        physical = _TYPE_TABLE.get(field_type.lower())
        if physical is None:
            logger.debug(f"Unrecognized field type {field_type!r}, falling back to text")
            return PhysicalType.TEXT
        return physical

    def column_type(self, field_type: Any) -> TypeEngine:
        physical = self.physical_type(field_type)
        if physical is PhysicalType.NUMERIC:
            return Numeric(asdecimal=False)
        if physical is PhysicalType.BOOLEAN:
            return Boolean(create_constraint=False)
        if physical is PhysicalType.TIMESTAMP:
            return DateTime(timezone=True)
        return Text()

    def column_name(self, field_name: str) -> str:
        return validate_identifier(sanitize(field_name), "column_name")

    def column_names(self, fields: Iterable[str]) -> List[str]:
        """
        Sanitized column names for a schema, in declaration order.

        Raises:
            ValidationError: On collisions after sanitization or with
                the metadata columns
        """
        seen: Dict[str, str] = {}
        columns = []
        for field_name in fields:
            column = self.column_name(field_name)
            key = column.lower()
            if key in RESERVED_COLUMNS:
                raise ValidationError(
                    operation="column_names",
                    field=field_name,
                    reason=f"column {column} is reserved"
                )
            if key in seen:
                raise ValidationError(
                    operation="column_names",
                    field=field_name,
                    reason=f"collides with field {seen[key]!r} as column {column}"
                )
            seen[key] = field_name
            columns.append(column)
        return columns

    # =========================================================
    # ENCODE
    # =========================================================

    def encode(self, value: Any, field_type: Any, field_name: str = "value") -> Any:
        """
        Convert a payload value to its physical representation.

        Raises:
            ValidationError: If the value cannot be coerced
        """
        if value is None:
            return None

        physical = self.physical_type(field_type)
        try:
            if physical is PhysicalType.NUMERIC:
                return float(value)
            if physical is PhysicalType.BOOLEAN:
                return self._encode_boolean(value)
            if physical is PhysicalType.TIMESTAMP:
                return self._encode_timestamp(value)
            if physical is PhysicalType.STRUCTURED:
                return serialize_structured(value)
            if isinstance(value, (dict, list)):
                return serialize_structured(value)
            return str(value)
        except (TypeError, ValueError, OverflowError) as e:
            raise ValidationError(
                operation="encode",
                field=field_name,
                reason=f"cannot store {value!r} as {physical.value}: {e}"
            ) from e

    def _encode_boolean(self, value: Any) -> bool:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
        return bool(value)

    def _encode_timestamp(self, value: Any) -> datetime:
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, date):
            parsed = datetime(value.year, value.month, value.day)
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            # Epoch milliseconds, as produced by JavaScript clients
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        elif isinstance(value, str):
            text = value.strip()
            if text.endswith("Z") or text.endswith("z"):
                text = text[:-1] + "+00:00"
            parsed = datetime.fromisoformat(text)
        else:
            raise TypeError(f"unsupported timestamp type {type(value).__name__}")

        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    # =========================================================
    # DECODE
    # =========================================================

    def decode(self, value: Any, field_type: Any, field_name: str = "value") -> Any:
        """
        Convert a physical value back to its logical type.

        Raises:
            DecodeError: If a structured value does not parse
        """
        if value is None:
            return None

        physical = self.physical_type(field_type)
        if physical is PhysicalType.STRUCTURED:
            if not isinstance(value, (str, bytes, bytearray)):
                # Drivers that return JSON columns already parsed
                return value
            try:
                return json.loads(value)
            except ValueError as e:
                raise DecodeError(field=field_name, raw_value=value, reason=str(e)) from e
        if physical is PhysicalType.NUMERIC:
            return float(value)
        if physical is PhysicalType.TIMESTAMP:
            return self.decode_timestamp(value)
        return value

    @staticmethod
    def decode_timestamp(value: Any) -> Any:
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
