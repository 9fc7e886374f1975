"""
Message Store - Schema Registry.

============================================================
PURPOSE
============================================================
Durable mapping topic name -> {schema, storage mode, created_at}.
Single source of truth for topic existence.

- register() is an idempotent upsert (last write wins)
- remove() accepts the caller's connection so a unit drop and
  the registry delete can commit together

============================================================
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Connection, Row
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .engine import Database
from .errors import NotFoundError, StorageError, translate_error
from .tables import CoreTables
from .types import FieldSchema, StorageMode, Topic


logger = logging.getLogger(__name__)


class SchemaRegistry:
    """
    Topic registry backed by the registry table.
    """

    def __init__(self, database: Database, tables: CoreTables) -> None:
        self._database = database
        self._tables = tables

    @property
    def table_name(self) -> str:
        return self._tables.registry.name

    def ensure_schema(self) -> None:
        """Create the registry and shared tables if missing."""
        with self._database.transaction("ensure_schema", self.table_name) as conn:
            self._tables.metadata.create_all(conn, checkfirst=True)
        logger.info(f"Registry table {self.table_name} ready")

    # =========================================================
    # WRITE
    # =========================================================

    def register(
        self,
        name: str,
        fields: FieldSchema,
        mode: StorageMode
    ) -> Optional[StorageMode]:
        """
        Insert or overwrite a topic definition.

        Returns:
            The previous storage mode if the topic already existed
        """
        try:
            return self._upsert(name, fields, mode)
        except IntegrityError:
            # A concurrent register inserted the same name first
            logger.debug(f"Concurrent registration of {name}, retrying as update")
        except SQLAlchemyError as e:
            raise translate_error(e, "register", self.table_name) from e

        try:
            return self._upsert(name, fields, mode)
        except SQLAlchemyError as e:
            raise translate_error(e, "register", self.table_name) from e

    def _upsert(
        self,
        name: str,
        fields: FieldSchema,
        mode: StorageMode
    ) -> Optional[StorageMode]:
        table = self._tables.registry
        schema_json = json.dumps(fields)

        with self._database.engine.begin() as conn:
            existing = conn.execute(
                select(table.c.storage_mode).where(table.c.name == name)
            ).first()

            if existing is None:
                conn.execute(
                    insert(table).values(
                        name=name,
                        schema=schema_json,
                        storage_mode=mode.value,
                        created_at=datetime.now(timezone.utc),
                    )
                )
                logger.info(f"Topic {name} registered ({mode.value})")
                return None

            conn.execute(
                update(table)
                .where(table.c.name == name)
                .values(schema=schema_json, storage_mode=mode.value)
            )
            logger.info(f"Topic {name} updated ({mode.value})")
            return StorageMode(existing.storage_mode)

    def remove(self, name: str, connection: Optional[Connection] = None) -> bool:
        """
        Delete the registry row.

        Returns:
            True if a row was deleted
        """
        table = self._tables.registry
        with self._database.scope(connection, "remove", self.table_name) as conn:
            result = conn.execute(delete(table).where(table.c.name == name))
        return bool(result.rowcount)

    # =========================================================
    # READ
    # =========================================================

    def find(self, name: str, connection: Optional[Connection] = None) -> Optional[Topic]:
        table = self._tables.registry
        with self._database.scope(connection, "get", self.table_name) as conn:
            row = conn.execute(select(table).where(table.c.name == name)).first()
        return self._to_topic(row) if row is not None else None

    def get(self, name: str, connection: Optional[Connection] = None) -> Topic:
        """
        Raises:
            NotFoundError: If the topic is not registered
        """
        topic = self.find(name, connection)
        if topic is None:
            raise NotFoundError(operation="get", topic=name)
        return topic

    def exists(self, name: str) -> bool:
        return self.find(name) is not None

    def list(self) -> List[Topic]:
        """All topics, newest registration first."""
        table = self._tables.registry
        with self._database.transaction("list", self.table_name) as conn:
            rows = conn.execute(
                select(table).order_by(table.c.created_at.desc(), table.c.id.desc())
            ).all()
        return [self._to_topic(row) for row in rows]

    def _to_topic(self, row: Row) -> Topic:
        try:
            fields: Any = json.loads(row.schema)
        except ValueError as e:
            raise StorageError(
                operation="get",
                original_error=f"corrupt schema for topic {row.name}: {e}",
                unit=self.table_name
            ) from e

        created_at = row.created_at
        if isinstance(created_at, datetime) and created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)

        return Topic(
            id=row.id,
            name=row.name,
            fields=fields,
            storage_mode=StorageMode(row.storage_mode),
            created_at=created_at,
        )
