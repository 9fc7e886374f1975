"""
Message Store - Database Engine.

============================================================
PURPOSE
============================================================
Owns the SQLAlchemy engine and its connection pool.

The Database object is constructed explicitly by the
composing process, injected into every component and shut
down with dispose(). Nothing is created at import time.

- QueuePool with bounded size and acquisition timeout
- One transaction per storage operation
- Autocommit connections for maintenance statements (VACUUM)
- SQLite support for local runs and tests

============================================================
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool, StaticPool

from .config import DatabaseConfig
from .errors import StorageError, translate_error


logger = logging.getLogger(__name__)


# ============================================================
# DATABASE
# ============================================================

class Database:
    """
    Connection pool wrapper.

    Usage:
        database = Database(DatabaseConfig.from_env())
        database.connect()
        with database.transaction() as conn:
            conn.execute(...)
        database.dispose()
    """

    def __init__(self, config: Optional[DatabaseConfig] = None) -> None:
        self._config = config or DatabaseConfig()
        self._engine: Optional[Engine] = None

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def engine(self) -> Engine:
        """Get the engine, creating it on first use."""
        if self._engine is None:
            self._engine = self._create_engine()
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    def _create_engine(self) -> Engine:
        url = make_url(self._config.database_url)
        logger.info(f"Creating database engine for: {url.render_as_string(hide_password=True)}")

        if url.get_backend_name() == "sqlite":
            engine = self._create_sqlite_engine(url)
        else:
            engine = create_engine(
                url,
                poolclass=QueuePool,
                pool_size=self._config.pool_size,
                max_overflow=self._config.max_overflow,
                pool_timeout=self._config.pool_timeout_seconds,
                pool_recycle=self._config.pool_recycle_seconds,
                pool_pre_ping=True,
                echo=self._config.echo,
            )

        @event.listens_for(engine, "checkout")
        def on_checkout(dbapi_conn, connection_record, connection_proxy):
            logger.debug("Database connection checked out from pool")

        return engine

    def _create_sqlite_engine(self, url) -> Engine:
        connect_args = {"check_same_thread": False, "timeout": 30}
        if url.database in (None, "", ":memory:"):
            engine = create_engine(
                url,
                poolclass=StaticPool,
                connect_args=connect_args,
                echo=self._config.echo,
            )
        else:
            engine = create_engine(
                url,
                poolclass=QueuePool,
                pool_size=self._config.pool_size,
                max_overflow=self._config.max_overflow,
                pool_timeout=self._config.pool_timeout_seconds,
                connect_args=connect_args,
                echo=self._config.echo,
            )

        @event.listens_for(engine, "connect")
        def on_connect(dbapi_conn, connection_record):
            # Shared rows cascade with their registry entry
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    # =========================================================
    # LIFECYCLE
    # =========================================================

    def connect(self) -> None:
        """
        Create the engine and verify the database answers.

        Raises:
            StorageError: If no connection can be established
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            logger.info("Database connection verified successfully")
        except SQLAlchemyError as e:
            raise translate_error(e, "connect") from e

    def dispose(self) -> None:
        """Close every pooled connection."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            logger.info("Database connection pool closed")

    def health_check(self) -> bool:
        try:
            self.connect()
            return True
        except StorageError:
            return False

    # =========================================================
    # CONNECTION SCOPES
    # =========================================================

    @contextmanager
    def transaction(self, operation: str = "transaction", unit: Optional[str] = None) -> Generator[Connection, None, None]:
        """
        Check out a connection and run one transaction on it.

        Commits if the block succeeds, rolls back on any exception.
        SQLAlchemy errors are translated into StorageError.
        """
        try:
            with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as e:
            raise translate_error(e, operation, unit) from e

    @contextmanager
    def autocommit(self, operation: str = "maintenance", unit: Optional[str] = None) -> Generator[Connection, None, None]:
        """Connection outside any transaction block, for VACUUM and similar."""
        try:
            with self.engine.connect() as conn:
                yield conn.execution_options(isolation_level="AUTOCOMMIT")
        except SQLAlchemyError as e:
            raise translate_error(e, operation, unit) from e

    @contextmanager
    def scope(
        self,
        connection: Optional[Connection],
        operation: str,
        unit: Optional[str] = None
    ) -> Generator[Connection, None, None]:
        """Reuse the caller's connection, or open a transaction of our own."""
        if connection is not None:
            try:
                yield connection
            except SQLAlchemyError as e:
                raise translate_error(e, operation, unit) from e
        else:
            with self.transaction(operation, unit) as conn:
                yield conn

    def has_table(self, name: str) -> bool:
        try:
            with self.engine.connect() as conn:
                return inspect(conn).has_table(name)
        except SQLAlchemyError as e:
            raise translate_error(e, "has_table", name) from e
