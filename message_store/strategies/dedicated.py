"""
Message Store - Dedicated Store.

============================================================
PURPOSE
============================================================
One table per topic with one column per schema field, plus
id and received_at. Values are coerced per field through the
ColumnMapper on the way in and decoded on the way out, so a
numeric field given as "25.5" reads back as 25.5.

TABLE NAMING:
    <prefix><sanitized topic name>, e.g. topic_sensor_temperature

Tables are created on registration, or lazily by the facade
when a write finds the table missing.

============================================================
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import MetaData, Table, inspect, select, text
from sqlalchemy.engine import Connection
from sqlalchemy.schema import DropTable

from ..columns import ColumnMapper, sanitize, validate_identifier
from ..engine import Database
from ..errors import DecodeError, UnitMissingError
from ..tables import build_dedicated_table
from ..types import Record, SortOrder, StorageMode, Topic
from .base import StorageStrategy


class DedicatedStore(StorageStrategy):
    """
    One physical table per topic.
    """

    mode = StorageMode.DEDICATED

    def __init__(self, database: Database, mapper: ColumnMapper, table_prefix: str = "topic_") -> None:
        super().__init__(database, mapper)
        self._table_prefix = table_prefix

    def table_name(self, topic_name: str) -> str:
        return validate_identifier(f"{self._table_prefix}{sanitize(topic_name)}", "table_name")

    def unit_table(self, topic: Topic) -> Table:
        return build_dedicated_table(self.table_name(topic.name), topic.fields, self._mapper)

    def _after_create(self, table: Table, conn: Connection) -> None:
        # Fields added by a re-registration need their columns
        existing = {column["name"].lower() for column in inspect(conn).get_columns(table.name)}
        preparer = conn.dialect.identifier_preparer
        for column in table.columns:
            if column.name.lower() in existing:
                continue
            column_type = column.type.compile(dialect=conn.dialect)
            conn.execute(text(
                f"ALTER TABLE {preparer.quote(table.name)} "
                f"ADD COLUMN {preparer.quote(column.name)} {column_type}"
            ))
            self._logger.info(f"Added column {column.name} to {table.name}")

    # =========================================================
    # WRITE
    # =========================================================

    def insert(self, topic: Topic, payload: Dict[str, Any]) -> int:
        table = self.unit_table(topic)
        values = self.encode_payload(topic, payload)
        values["received_at"] = self._now()

        record_id = self._insert_returning_id(table, values, operation="insert")
        self._logger.info(f"Message stored for topic {topic.name} with ID {record_id} (dedicated table)")
        return record_id

    def encode_payload(self, topic: Topic, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Column -> physical value for every schema field, missing fields as None."""
        columns = self._mapper.column_names(topic.fields.keys())
        return {
            column: self._mapper.encode(payload.get(field_name), field_type, field_name)
            for column, (field_name, field_type) in zip(columns, topic.fields.items())
        }

    def drop(self, topic: Topic, connection: Optional[Connection] = None) -> None:
        # Only the name matters; the schema may no longer map onto columns
        table = Table(self.table_name(topic.name), MetaData())
        with self._database.scope(connection, "drop", table.name) as conn:
            conn.execute(DropTable(table, if_exists=True))
        self._logger.info(f"Dedicated table {table.name} dropped for topic {topic.name}")

    # =========================================================
    # READ
    # =========================================================

    def query(
        self,
        topic: Topic,
        limit: Optional[int] = None,
        offset: int = 0,
        order: SortOrder = SortOrder.ASC
    ) -> List[Record]:
        table = self.unit_table(topic)
        stmt = select(table)
        stmt = self._ordered(stmt, table, order, limit, offset)
        try:
            rows = self._select_all(stmt, table.name, "query")
        except UnitMissingError:
            self._logger.warning(f"Dedicated table doesn't exist for topic {topic.name}")
            return []
        columns = self._mapper.column_names(topic.fields.keys())
        return [self._to_record(topic, columns, row) for row in rows]

    def _to_record(self, topic: Topic, columns: List[str], row) -> Record:
        mapping = row._mapping
        fields: Dict[str, Any] = {}
        errors: List[DecodeError] = []

        for column, (field_name, field_type) in zip(columns, topic.fields.items()):
            try:
                fields[field_name] = self._mapper.decode(mapping[column], field_type, field_name)
            except DecodeError as e:
                e.record_id = row.id
                e.details["record_id"] = row.id
                errors.append(e)
                fields[field_name] = None

        if errors:
            self._logger.warning(
                f"Record {row.id} of topic {topic.name} has {len(errors)} undecodable field(s)"
            )

        return Record(
            id=row.id,
            topic=topic.name,
            fields=fields,
            received_at=self._mapper.decode_timestamp(row.received_at),
            errors=errors,
        )
