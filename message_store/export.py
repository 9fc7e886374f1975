"""
Message Store - Delimited Export.

============================================================
PURPOSE
============================================================
Renders fetched records as comma-separated text for
spreadsheet tooling.

FORMAT:
- header: id, received_at, then schema fields in order; field
  names follow the same quoting rule as cells, so a name with
  a comma stays one column
- one line per record, "\\n" terminated
- no records -> empty string
- None -> empty cell; arrays/objects -> compact JSON
- booleans -> true/false; integral floats without ".0"
- a cell containing a comma, quote or line break is quoted,
  internal quotes doubled

============================================================
"""

from datetime import datetime
from typing import Any, Iterable, List

from .columns import sanitize, serialize_structured
from .types import Record, Topic


_NEEDS_QUOTING = (",", '"', "\n", "\r")


def render_value(value: Any) -> str:
    """Literal text of one cell, before quoting."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return serialize_structured(value)
    return str(value)


def quote_cell(cell: str) -> str:
    if any(c in cell for c in _NEEDS_QUOTING):
        return '"' + cell.replace('"', '""') + '"'
    return cell


def _join(cells: List[str]) -> str:
    return ",".join(quote_cell(cell) for cell in cells)


def render_row(record: Record, field_names: List[str]) -> List[str]:
    row = [str(record.id), render_value(record.received_at)]
    row.extend(render_value(record.fields.get(name)) for name in field_names)
    return row


def render_csv(records: Iterable[Record], topic: Topic) -> str:
    """
    Render records of one topic as CSV text.

    Args:
        records: Records as returned by a fetch
        topic: The topic they belong to (defines the field columns)

    Returns:
        CSV text, or "" when there are no records
    """
    records = list(records)
    if not records:
        return ""

    field_names = list(topic.fields.keys())
    lines = [_join(["id", "received_at", *field_names])]
    lines.extend(_join(render_row(record, field_names)) for record in records)
    return "\n".join(lines) + "\n"


def csv_filename(topic_name: str) -> str:
    return f"{sanitize(topic_name)}_messages.csv"
