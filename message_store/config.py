"""
Message Store - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the message store.

Values are read from the environment (a local .env file is
loaded first). Every section can also be built directly for
tests and embedding.

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from .types import SortOrder


# ============================================================
# DATABASE CONFIGURATION
# ============================================================

@dataclass
class DatabaseConfig:
    """
    Connection and pool configuration.
    """

    url: Optional[str] = None
    """Full SQLAlchemy URL. Built from the host parts when unset."""

    host: str = "localhost"
    port: int = 5432
    name: str = "comfy_mqtt"
    user: str = "comfy_mqtt"
    password: str = "comfy_mqtt_password"

    pool_size: int = 20
    """Connections kept in the pool."""

    max_overflow: int = 0
    """Connections allowed beyond pool_size."""

    pool_timeout_seconds: float = 2.0
    """Seconds to wait for a free connection."""

    pool_recycle_seconds: int = 1800
    """Recycle connections after N seconds."""

    echo: bool = False
    """Log SQL statements."""

    @property
    def database_url(self) -> str:
        if self.url:
            # Async drivers are not used by the synchronous engine
            return self.url.replace("postgresql+asyncpg", "postgresql")
        return (
            f"postgresql://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.name}"
        )

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        return cls(
            url=os.getenv("DATABASE_URL_SYNC") or os.getenv("DATABASE_URL"),
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            name=os.getenv("DB_NAME", "comfy_mqtt"),
            user=os.getenv("DB_USER", "comfy_mqtt"),
            password=os.getenv("DB_PASSWORD", "comfy_mqtt_password"),
            pool_size=int(os.getenv("DB_POOL_SIZE", "20")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "0")),
            pool_timeout_seconds=float(os.getenv("DB_POOL_TIMEOUT", "2")),
            pool_recycle_seconds=int(os.getenv("DB_POOL_RECYCLE", "1800")),
            echo=os.getenv("DB_ECHO", "false").lower() == "true",
        )

    def validate(self) -> List[str]:
        errors = []
        if self.pool_size < 1:
            errors.append("pool_size must be at least 1")
        if self.max_overflow < 0:
            errors.append("max_overflow cannot be negative")
        if self.pool_timeout_seconds <= 0:
            errors.append("pool_timeout_seconds must be positive")
        return errors


# ============================================================
# RETENTION CONFIGURATION
# ============================================================

@dataclass
class RetentionConfig:
    """
    Size-bounded retention configuration.
    """

    max_unit_size_kb: float = 102400
    """Maximum footprint of one storage unit in kilobytes."""

    target_ratio: float = 0.8
    """Eviction shrinks a unit to this fraction of the maximum."""

    compact_after_eviction: bool = True
    """Reclaim physical space after deleting rows."""

    @property
    def target_size_kb(self) -> float:
        return self.max_unit_size_kb * self.target_ratio

    @classmethod
    def from_env(cls) -> "RetentionConfig":
        return cls(
            max_unit_size_kb=float(os.getenv("MAX_DB_TABLE_SIZE", "102400")),
            target_ratio=float(os.getenv("RETENTION_TARGET_RATIO", "0.8")),
            compact_after_eviction=os.getenv("RETENTION_COMPACT", "true").lower() == "true",
        )

    def validate(self) -> List[str]:
        errors = []
        if self.max_unit_size_kb <= 0:
            errors.append("max_unit_size_kb must be positive")
        if not 0 < self.target_ratio < 1:
            errors.append("target_ratio must be between 0 and 1")
        return errors


# ============================================================
# LAYOUT CONFIGURATION
# ============================================================

@dataclass
class LayoutConfig:
    """
    Physical table names.
    """

    topic_table_prefix: str = "topic_"
    """Dedicated tables are named prefix + sanitized topic name."""

    shared_table: str = "messages"
    registry_table: str = "topics"

    @classmethod
    def from_env(cls) -> "LayoutConfig":
        return cls(
            topic_table_prefix=os.getenv("TOPIC_TABLE_PREFIX", "topic_"),
            shared_table=os.getenv("SHARED_TABLE_NAME", "messages"),
            registry_table=os.getenv("REGISTRY_TABLE_NAME", "topics"),
        )

    def validate(self) -> List[str]:
        errors = []
        for label, value in (
            ("topic_table_prefix", self.topic_table_prefix),
            ("shared_table", self.shared_table),
            ("registry_table", self.registry_table),
        ):
            if not value or not value.replace("_", "").isalnum():
                errors.append(f"{label} must be alphanumeric or underscore")
        if self.shared_table == self.registry_table:
            errors.append("shared_table and registry_table must differ")
        return errors


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class StoreConfig:
    """
    Complete message store configuration.
    """

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    layout: LayoutConfig = field(default_factory=LayoutConfig)

    default_order: SortOrder = SortOrder.ASC
    """Read order when the caller does not choose one."""

    default_limit: Optional[int] = None
    """Read limit when the caller does not choose one; None is unbounded."""

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "StoreConfig":
        """Load configuration from the environment and a .env file."""
        load_dotenv(dotenv_path)
        default_limit = os.getenv("DEFAULT_READ_LIMIT")
        return cls(
            database=DatabaseConfig.from_env(),
            retention=RetentionConfig.from_env(),
            layout=LayoutConfig.from_env(),
            default_order=SortOrder.parse(os.getenv("DEFAULT_READ_ORDER", "asc")),
            default_limit=int(default_limit) if default_limit else None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []
        errors.extend(self.database.validate())
        errors.extend(self.retention.validate())
        errors.extend(self.layout.validate())
        if self.default_limit is not None and self.default_limit < 1:
            errors.append("default_limit must be at least 1")
        return errors
