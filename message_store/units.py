"""
Message Store - Storage Units.

============================================================
PURPOSE
============================================================
A StorageUnit is one physical table seen from the retention
side: how big it is, how many rows it holds, how to delete
the oldest rows and how to reclaim space afterwards.

============================================================
FOOTPRINT
============================================================
- PostgreSQL: pg_total_relation_size (heap, indexes, TOAST)
- Other dialects: estimated as the byte length of every
  column value plus a fixed per-row overhead

============================================================
"""

import logging
from typing import Optional

from sqlalchemy import LargeBinary, Table, cast, delete, func, literal, select, text
from sqlalchemy.engine import Connection
from sqlalchemy.sql.elements import ColumnElement

from .engine import Database


logger = logging.getLogger(__name__)


ESTIMATED_ROW_OVERHEAD_BYTES = 24


class StorageUnit:
    """
    One physical table backing one or more topics.

    For the shared table, every operation spans all topics
    stored in it.
    """

    def __init__(self, database: Database, table: Table) -> None:
        self._database = database
        self._table = table

    @property
    def name(self) -> str:
        return self._table.name

    @property
    def table(self) -> Table:
        return self._table

    def __repr__(self) -> str:
        return f"StorageUnit({self.name!r})"

    # =========================================================
    # MEASUREMENT
    # =========================================================

    def footprint_kb(self, connection: Optional[Connection] = None) -> float:
        """Current size of the unit in kilobytes."""
        with self._database.scope(connection, "footprint", self.name) as conn:
            if conn.dialect.name == "postgresql":
                size = conn.execute(
                    text("SELECT pg_total_relation_size(CAST(:name AS regclass))"),
                    {"name": self._quoted_name(conn)},
                ).scalar()
            else:
                size = conn.execute(select(self._estimated_size())).scalar()
        return float(size or 0) / 1024

    def row_count(self, connection: Optional[Connection] = None) -> int:
        with self._database.scope(connection, "row_count", self.name) as conn:
            return conn.execute(
                select(func.count()).select_from(self._table)
            ).scalar() or 0

    def _estimated_size(self) -> ColumnElement:
        row_bytes = literal(ESTIMATED_ROW_OVERHEAD_BYTES)
        for column in self._table.columns:
            row_bytes = row_bytes + func.coalesce(
                func.length(cast(column, LargeBinary)), 0
            )
        return func.coalesce(func.sum(row_bytes), 0)

    def _quoted_name(self, conn: Connection) -> str:
        return conn.dialect.identifier_preparer.quote(self.name)

    # =========================================================
    # EVICTION
    # =========================================================

    def delete_oldest(self, count: int, connection: Optional[Connection] = None) -> int:
        """
        Delete the oldest rows by (received_at, id).

        Returns:
            Number of rows deleted
        """
        if count <= 0:
            return 0
        table = self._table
        oldest = (
            select(table.c.id)
            .order_by(table.c.received_at.asc(), table.c.id.asc())
            .limit(count)
        )
        with self._database.scope(connection, "delete_oldest", self.name) as conn:
            result = conn.execute(delete(table).where(table.c.id.in_(oldest)))
        return result.rowcount or 0

    def compact(self) -> None:
        """
        Reclaim physical space after deletions.

        Raises:
            StorageError: If the maintenance statement fails
        """
        with self._database.autocommit("compact", self.name) as conn:
            if conn.dialect.name == "postgresql":
                conn.execute(text(f"VACUUM FULL {self._quoted_name(conn)}"))
            elif conn.dialect.name == "sqlite":
                conn.execute(text("VACUUM"))
            else:
                logger.debug(f"No compaction available for dialect {conn.dialect.name}")
