"""
Shared fixtures for message store tests.

Every test gets its own file-backed SQLite database under
tmp_path, so tests never share state.
"""

import pytest

from message_store.config import DatabaseConfig, RetentionConfig, StoreConfig
from message_store.engine import Database
from message_store.store import MessageStore


# ============================================================
# DATABASE FIXTURES
# ============================================================

@pytest.fixture
def db_url(tmp_path):
    """SQLite URL in a fresh temporary directory."""
    return f"sqlite:///{tmp_path / 'messages.db'}"


@pytest.fixture
def config(db_url):
    """Store configuration with default retention."""
    return StoreConfig(database=DatabaseConfig(url=db_url))


@pytest.fixture
def database(config):
    """Connected database, disposed after the test."""
    db = Database(config.database)
    db.connect()
    yield db
    db.dispose()


# ============================================================
# STORE FIXTURES
# ============================================================

@pytest.fixture
def store(config):
    """Initialized MessageStore."""
    message_store = MessageStore(Database(config.database), config)
    message_store.initialize()
    yield message_store
    message_store.close()


@pytest.fixture
def small_store(db_url):
    """MessageStore whose units are capped at 2 KB."""
    config = StoreConfig(
        database=DatabaseConfig(url=db_url),
        retention=RetentionConfig(max_unit_size_kb=2),
    )
    message_store = MessageStore(Database(config.database), config)
    message_store.initialize()
    yield message_store
    message_store.close()


@pytest.fixture
def sensor_schema():
    """Schema covering every physical column kind."""
    return {
        "value": "number",
        "unit": "string",
        "active": "boolean",
        "measured_at": "timestamp",
        "tags": "array",
    }
