"""
Message Store - Facade.

============================================================
PURPOSE
============================================================
Main entry point of the message store. Owns the registry and
every storage unit; callers never touch them directly.

- create_topic / delete_topic: topic lifecycle
- put: route to the topic's strategy, insert, enforce retention
- fetch / export_csv: ordered, paginated reads

============================================================
TOPIC STATE MACHINE
============================================================
Unregistered -> Registered(mode) -> [schema/mode overwritten
in place] -> Deleted

A mode change only affects future writes and reads; records
already stored in the previous backend are not migrated.

============================================================
SELF-HEAL
============================================================
If an insert fails because the topic's unit is missing, the
unit is created and the insert replayed exactly once. A
second failure propagates.

============================================================
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from .columns import ColumnMapper
from .config import StoreConfig
from .engine import Database
from .errors import StorageError, UnitMissingError, ValidationError
from .export import render_csv
from .registry import SchemaRegistry
from .retention import RetentionManager
from .strategies import DedicatedStore, SharedStore, StorageStrategy
from .tables import build_core_tables
from .types import FieldSchema, Record, SortOrder, StorageMode, Topic


logger = logging.getLogger(__name__)


class MessageStore:
    """
    Schema-driven message store.

    Usage:
        store = create_message_store()
        store.initialize()
        store.create_topic("sensor/temperature", {"value": "number"}, StorageMode.DEDICATED)
        store.put("sensor/temperature", {"value": 21.5})
        records = store.fetch("sensor/temperature", limit=10, order="desc")
        store.close()
    """

    def __init__(
        self,
        database: Database,
        config: Optional[StoreConfig] = None,
        mapper: Optional[ColumnMapper] = None,
        retention: Optional[RetentionManager] = None,
    ) -> None:
        self._database = database
        self._config = config or StoreConfig()
        self._mapper = mapper or ColumnMapper()
        self._retention = retention or RetentionManager(self._config.retention)

        self._tables = build_core_tables(self._config.layout)
        self._registry = SchemaRegistry(database, self._tables)
        self._strategies: Dict[StorageMode, StorageStrategy] = {
            StorageMode.SHARED: SharedStore(database, self._mapper, self._tables.shared),
            StorageMode.DEDICATED: DedicatedStore(
                database, self._mapper, self._config.layout.topic_table_prefix
            ),
        }

    @property
    def database(self) -> Database:
        return self._database

    @property
    def registry(self) -> SchemaRegistry:
        return self._registry

    @property
    def retention(self) -> RetentionManager:
        return self._retention

    def strategy(self, mode: StorageMode) -> StorageStrategy:
        return self._strategies[mode]

    def strategy_for(self, topic: Topic) -> StorageStrategy:
        return self._strategies[topic.storage_mode]

    # =========================================================
    # LIFECYCLE
    # =========================================================

    def initialize(self) -> None:
        """Verify the connection and create the registry and shared tables."""
        self._database.connect()
        self._registry.ensure_schema()
        logger.info("Message store initialized successfully")

    def close(self) -> None:
        self._database.dispose()

    def __enter__(self) -> "MessageStore":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # =========================================================
    # TOPICS
    # =========================================================

    def create_topic(
        self,
        name: str,
        fields: Mapping[str, Any],
        mode: Union[StorageMode, str, bool] = StorageMode.SHARED
    ) -> Topic:
        """
        Register a topic and create its storage unit.

        Raises:
            ValidationError: On an empty name or schema, or on
                identifier collisions after sanitization
        """
        mode = StorageMode.parse(mode)
        fields = self._validate_definition(name, fields, mode)

        previous_mode = self._registry.register(name, fields, mode)
        if previous_mode is not None and previous_mode is not mode:
            logger.warning(
                f"Topic {name} switched from {previous_mode.value} to {mode.value}; "
                f"records stored in the {previous_mode.value} backend are not migrated"
            )

        topic = self._registry.get(name)
        unit_name = self.strategy_for(topic).ensure_unit(topic)
        logger.info(f"Topic {name} added successfully with {mode.value} table {unit_name}")
        return topic

    def _validate_definition(
        self,
        name: str,
        fields: Mapping[str, Any],
        mode: StorageMode
    ) -> FieldSchema:
        if not name or not str(name).strip():
            raise ValidationError(operation="create_topic", field="name", reason="name is required")
        if len(name) > 255:
            raise ValidationError(operation="create_topic", field="name", reason="name longer than 255 characters")
        if not fields:
            raise ValidationError(operation="create_topic", field="fields", reason="schema must declare at least one field")
        if not isinstance(fields, Mapping):
            raise ValidationError(operation="create_topic", field="fields", reason="schema must be a mapping")

        fields = dict(fields)
        for field_name in fields:
            if not isinstance(field_name, str) or not field_name:
                raise ValidationError(operation="create_topic", field="fields", reason="field names must be non-empty strings")

        if mode is StorageMode.DEDICATED:
            self._mapper.column_names(fields.keys())
            self._check_table_collision(name)
        return fields

    def _check_table_collision(self, name: str) -> None:
        dedicated = self._strategies[StorageMode.DEDICATED]
        table_name = dedicated.table_name(name)
        for other in self._registry.list():
            if other.name == name or not other.is_dedicated:
                continue
            if dedicated.table_name(other.name).lower() == table_name.lower():
                raise ValidationError(
                    operation="create_topic",
                    field="name",
                    reason=f"table {table_name} is already used by topic {other.name!r}"
                )

    def get_topic(self, name: str) -> Topic:
        return self._registry.get(name)

    def list_topics(self) -> List[Topic]:
        return self._registry.list()

    def get_topic_schema(self, name: str) -> FieldSchema:
        return dict(self._registry.get(name).fields)

    def delete_topic(self, name: str) -> None:
        """
        Drop the topic's records in every backend and remove it from
        the registry.

        All of it happens in one transaction. A topic that changed mode
        still has records in its previous backend; those go too.

        Raises:
            NotFoundError: If the topic is not registered
        """
        topic = self._registry.get(name)
        strategies = self._strategies_holding(topic)
        with self._database.transaction("delete_topic", strategies[0].unit_name(topic)) as conn:
            for strategy in strategies:
                strategy.drop(topic, connection=conn)
            self._registry.remove(name, connection=conn)
        logger.info(f"Topic {name} deleted successfully")

    def _strategies_holding(self, topic: Topic) -> List[StorageStrategy]:
        strategies = [self.strategy_for(topic)]
        if topic.is_dedicated:
            return strategies + [self._strategies[StorageMode.SHARED]]

        # A dedicated table left from an earlier mode, unless another topic owns it
        dedicated = self._strategies[StorageMode.DEDICATED]
        try:
            table_name = dedicated.table_name(topic.name)
        except ValidationError:
            return strategies
        for other in self._registry.list():
            if other.is_dedicated and dedicated.table_name(other.name).lower() == table_name.lower():
                return strategies
        return strategies + [dedicated]

    # =========================================================
    # WRITE
    # =========================================================

    def put(self, topic_name: str, payload: Mapping[str, Any]) -> int:
        """
        Store one validated payload.

        Returns:
            The assigned record id

        Raises:
            NotFoundError: If the topic is not registered
            ValidationError: If a value cannot be stored in its column
            StorageError: If the insert fails
        """
        topic = self._registry.get(topic_name)
        strategy = self.strategy_for(topic)

        record_id = self._insert_with_self_heal(strategy, topic, dict(payload))
        self._apply_retention(strategy, topic)
        return record_id

    def _insert_with_self_heal(
        self,
        strategy: StorageStrategy,
        topic: Topic,
        payload: Dict[str, Any]
    ) -> int:
        try:
            return strategy.insert(topic, payload)
        except UnitMissingError:
            logger.warning(f"Storage unit missing for topic {topic.name}, creating it now")

        strategy.ensure_unit(topic)
        return strategy.insert(topic, payload)

    def _apply_retention(self, strategy: StorageStrategy, topic: Topic) -> int:
        unit = strategy.unit(topic)
        try:
            deleted = self._retention.enforce(unit)
        except StorageError as e:
            # The record is committed; the next write re-checks
            logger.error(f"Error managing retention for table {unit.name}: {e}", exc_info=True)
            return 0
        if deleted > 0:
            logger.info(f"Retention: {deleted} old rows deleted from {unit.name}")
        return deleted

    def enforce_retention(self, topic_name: str) -> int:
        """Run a retention pass on the unit backing a topic."""
        topic = self._registry.get(topic_name)
        return self._retention.enforce(self.strategy_for(topic).unit(topic))

    # =========================================================
    # READ
    # =========================================================

    def fetch(
        self,
        topic_name: str,
        limit: Optional[int] = None,
        offset: int = 0,
        order: Union[SortOrder, str, None] = None
    ) -> List[Record]:
        """
        Read a topic's records ordered by receipt time.

        Args:
            topic_name: Registered topic
            limit: Maximum records; None reads everything from offset
            offset: Records to skip
            order: "asc" (default) or "desc"

        Raises:
            NotFoundError: If the topic is not registered
            ValidationError: On a negative limit or offset
        """
        order = SortOrder.parse(order) if order is not None else self._config.default_order
        if limit is None:
            limit = self._config.default_limit
        if limit is not None and limit < 0:
            raise ValidationError(operation="fetch", field="limit", reason="limit cannot be negative")
        if offset is None:
            offset = 0
        if offset < 0:
            raise ValidationError(operation="fetch", field="offset", reason="offset cannot be negative")

        topic = self._registry.get(topic_name)
        return self.strategy_for(topic).query(topic, limit=limit, offset=offset, order=order)

    def export_csv(
        self,
        topic_name: str,
        limit: Optional[int] = None,
        offset: int = 0,
        order: Union[SortOrder, str, None] = None
    ) -> str:
        records = self.fetch(topic_name, limit=limit, offset=offset, order=order)
        return render_csv(records, self._registry.get(topic_name))

    def footprint(self, topic_name: str) -> float:
        topic = self._registry.get(topic_name)
        return self.strategy_for(topic).footprint(topic)

    def row_count(self, topic_name: str) -> int:
        topic = self._registry.get(topic_name)
        return self.strategy_for(topic).row_count(topic)


# ============================================================
# FACTORY FUNCTIONS
# ============================================================

def create_message_store(config: Optional[StoreConfig] = None) -> MessageStore:
    """
    Create a MessageStore with its own database pool.

    Raises:
        ValidationError: If the configuration is invalid
    """
    config = config or StoreConfig.from_env()
    errors = config.validate()
    if errors:
        raise ValidationError(operation="configure", field="config", reason="; ".join(errors))
    return MessageStore(Database(config.database), config)
