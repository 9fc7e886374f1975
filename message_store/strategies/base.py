"""
Message Store - Storage Strategy Base.

============================================================
PURPOSE
============================================================
Common contract for the two ways a topic's records can be
stored. The facade selects one strategy per call from the
topic's storage mode; nothing else branches on the mode.

CONTRACT:
- ensure_unit(topic): create-if-missing, safe under races
- insert(topic, payload) -> id; UnitMissingError if no table
- query(topic, limit, offset, order) -> ordered records
- drop(topic): remove the topic's records
- footprint(topic) / row_count(topic): measured on the unit

============================================================
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import Table
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import CreateIndex, CreateTable

from ..columns import ColumnMapper
from ..engine import Database
from ..errors import StorageError, translate_error
from ..types import Record, SortOrder, StorageMode, Topic
from ..units import StorageUnit


class StorageStrategy(ABC):
    """
    Abstract base class for storage strategies.

    ============================================================
    USAGE
    ============================================================
    class MyStore(StorageStrategy):
        mode = StorageMode.SHARED

        def unit_table(self, topic): ...
    ============================================================
    """

    mode: StorageMode

    def __init__(self, database: Database, mapper: ColumnMapper) -> None:
        self._database = database
        self._mapper = mapper
        self._logger = logging.getLogger(f"message_store.strategy.{self.mode.value}")

    @property
    def database(self) -> Database:
        return self._database

    # =========================================================
    # ABSTRACT
    # =========================================================

    @abstractmethod
    def unit_table(self, topic: Topic) -> Table:
        """Physical table holding this topic's records."""

    @abstractmethod
    def insert(self, topic: Topic, payload: Dict[str, Any]) -> int:
        """
        Append one record.

        Raises:
            UnitMissingError: If the unit does not exist
            ValidationError: If a value cannot be coerced
        """

    @abstractmethod
    def query(
        self,
        topic: Topic,
        limit: Optional[int] = None,
        offset: int = 0,
        order: SortOrder = SortOrder.ASC
    ) -> List[Record]:
        """Read records ordered by (received_at, id)."""

    @abstractmethod
    def drop(self, topic: Topic, connection: Optional[Connection] = None) -> None:
        """Remove every record of the topic."""

    # =========================================================
    # SHARED BEHAVIOUR
    # =========================================================

    def unit_name(self, topic: Topic) -> str:
        return self.unit_table(topic).name

    def unit(self, topic: Topic) -> StorageUnit:
        return StorageUnit(self._database, self.unit_table(topic))

    def ensure_unit(self, topic: Topic) -> str:
        """
        Create the unit if it does not exist.

        Safe to call concurrently: a duplicate-create failure is
        ignored once the table is confirmed to exist.

        Returns:
            The unit name
        """
        table = self.unit_table(topic)
        try:
            with self._database.engine.begin() as conn:
                conn.execute(CreateTable(table, if_not_exists=True))
                for index in table.indexes:
                    conn.execute(CreateIndex(index, if_not_exists=True))
                self._after_create(table, conn)
        except SQLAlchemyError as e:
            if not self._database.has_table(table.name):
                raise translate_error(e, "ensure_unit", table.name) from e
            self._logger.debug(f"Unit {table.name} created concurrently: {e}")
        return table.name

    def _after_create(self, table: Table, conn: Connection) -> None:
        """Hook for strategies that reconcile an existing table."""

    def footprint(self, topic: Topic) -> float:
        return self.unit(topic).footprint_kb()

    def row_count(self, topic: Topic) -> int:
        return self.unit(topic).row_count()

    # =========================================================
    # PROTECTED HELPERS
    # =========================================================

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    @staticmethod
    def _ordered(stmt, table: Table, order: SortOrder, limit: Optional[int], offset: int):
        if order is SortOrder.DESC:
            stmt = stmt.order_by(table.c.received_at.desc(), table.c.id.desc())
        else:
            stmt = stmt.order_by(table.c.received_at.asc(), table.c.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        return stmt

    def _insert_returning_id(self, table: Table, values: Dict[str, Any], operation: str) -> int:
        try:
            with self._database.engine.begin() as conn:
                result = conn.execute(table.insert().values(**values))
                record_id = result.inserted_primary_key[0]
        except SQLAlchemyError as e:
            raise translate_error(e, operation, table.name) from e
        if record_id is None:
            raise StorageError(
                operation=operation,
                original_error="insert returned no identifier",
                unit=table.name
            )
        return int(record_id)

    def _select_all(self, stmt, unit: str, operation: str):
        with self._database.transaction(operation, unit) as conn:
            return conn.execute(stmt).all()

