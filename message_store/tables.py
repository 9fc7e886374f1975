"""
Message Store - Table Layout.

============================================================
PURPOSE
============================================================
SQLAlchemy Core definitions of every physical table.

TABLES:
- registry (default "topics"): one row per topic
- shared (default "messages"): payloads of all shared topics
- dedicated (prefix + sanitized topic name): one per topic,
  one column per schema field

Dedicated tables are built on demand from the topic schema,
each in its own MetaData so a re-registered schema never
clashes with a previous definition.

============================================================
"""

from dataclasses import dataclass

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
)

from .columns import ColumnMapper, validate_identifier
from .config import LayoutConfig
from .types import FieldSchema


@dataclass
class CoreTables:
    """Tables that exist once per database."""

    metadata: MetaData
    registry: Table
    shared: Table


def build_core_tables(layout: LayoutConfig) -> CoreTables:
    """Registry and shared tables for a layout."""
    registry_name = validate_identifier(layout.registry_table)
    shared_name = validate_identifier(layout.shared_table)
    metadata = MetaData()

    registry = Table(
        registry_name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String(255), nullable=False, unique=True),
        Column("schema", Text, nullable=False, comment="Field schema as JSON, declaration order kept"),
        Column("storage_mode", String(16), nullable=False, server_default="shared"),
        Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    )

    shared = Table(
        shared_name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column(
            "topic_name",
            String(255),
            ForeignKey(f"{registry_name}.name", ondelete="CASCADE"),
            nullable=False,
        ),
        Column("payload", Text, nullable=False, comment="Message payload as JSON"),
        Column("received_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
        Index(f"idx_{shared_name}_topic_received", "topic_name", "received_at", "id"),
    )

    return CoreTables(metadata=metadata, registry=registry, shared=shared)


def build_dedicated_table(
    table_name: str,
    fields: FieldSchema,
    mapper: ColumnMapper
) -> Table:
    """
    Table for one dedicated topic: id, one column per field, received_at.

    Raises:
        ValidationError: On an unsafe table name or column collision
    """
    validate_identifier(table_name, "build_dedicated_table")
    column_names = mapper.column_names(fields.keys())

    columns = [Column("id", Integer, primary_key=True, autoincrement=True)]
    for column_name, field_type in zip(column_names, fields.values()):
        columns.append(Column(column_name, mapper.column_type(field_type), nullable=True))
    columns.append(
        Column("received_at", DateTime(timezone=True), nullable=False, server_default=func.now())
    )

    return Table(
        table_name,
        MetaData(),
        *columns,
        Index(f"idx_{table_name}_received"[:63], "received_at", "id"),
    )
