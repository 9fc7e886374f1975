"""
Message Store - Shared Store.

============================================================
PURPOSE
============================================================
All shared-mode topics live in one table, each row tagged
with its topic name. The payload is projected onto the schema
keys (missing keys as null) and stored as one JSON value;
individual fields are never coerced, so values come back
exactly as they went in (modulo the JSON round trip).

The shared table outlives any single topic. Dropping a topic
deletes its rows only.

============================================================
"""

import json
from typing import Any, Dict, List, Optional

from sqlalchemy import Table, delete, select
from sqlalchemy.engine import Connection

from ..columns import ColumnMapper, serialize_structured
from ..engine import Database
from ..errors import DecodeError
from ..types import Record, SortOrder, StorageMode, Topic
from .base import StorageStrategy


class SharedStore(StorageStrategy):
    """
    One wide table for every shared topic.
    """

    mode = StorageMode.SHARED

    def __init__(self, database: Database, mapper: ColumnMapper, table: Table) -> None:
        super().__init__(database, mapper)
        self._table = table

    def unit_table(self, topic: Topic) -> Table:
        return self._table

    def insert(self, topic: Topic, payload: Dict[str, Any]) -> int:
        record_id = self._insert_returning_id(
            self._table,
            {
                "topic_name": topic.name,
                "payload": serialize_structured(self.project(topic, payload)),
                "received_at": self._now(),
            },
            operation="insert",
        )
        self._logger.info(f"Message stored for topic {topic.name} with ID {record_id} (shared table)")
        return record_id

    @staticmethod
    def project(topic: Topic, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {field_name: payload.get(field_name) for field_name in topic.fields}

    def query(
        self,
        topic: Topic,
        limit: Optional[int] = None,
        offset: int = 0,
        order: SortOrder = SortOrder.ASC
    ) -> List[Record]:
        table = self._table
        stmt = select(table.c.id, table.c.payload, table.c.received_at).where(
            table.c.topic_name == topic.name
        )
        stmt = self._ordered(stmt, table, order, limit, offset)
        rows = self._select_all(stmt, table.name, "query")
        return [self._to_record(topic, row) for row in rows]

    def _to_record(self, topic: Topic, row) -> Record:
        errors = []
        try:
            payload = json.loads(row.payload) if isinstance(row.payload, (str, bytes)) else row.payload
        except ValueError as e:
            errors.append(DecodeError(field="payload", raw_value=row.payload, reason=str(e), record_id=row.id))
            payload = None
        else:
            if not isinstance(payload, dict):
                errors.append(DecodeError(
                    field="payload", raw_value=row.payload, reason="payload is not an object", record_id=row.id
                ))
                payload = None

        if payload is None:
            self._logger.warning(f"Record {row.id} of topic {topic.name} has an undecodable payload")
            fields = {field_name: None for field_name in topic.fields}
        else:
            fields = payload
        return Record(
            id=row.id,
            topic=topic.name,
            fields=fields,
            received_at=self._mapper.decode_timestamp(row.received_at),
            errors=errors,
        )

    def drop(self, topic: Topic, connection: Optional[Connection] = None) -> None:
        table = self._table
        with self._database.scope(connection, "drop", table.name) as conn:
            result = conn.execute(delete(table).where(table.c.topic_name == topic.name))
        self._logger.info(f"Removed {result.rowcount or 0} shared rows for topic {topic.name}")
