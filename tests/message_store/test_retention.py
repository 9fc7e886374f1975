"""
Tests for Retention.

============================================================
PURPOSE
============================================================
1. Eviction arithmetic
2. RetentionManager against a mocked unit (failure paths)
3. End-to-end size bound on a real SQLite unit

============================================================
"""

from unittest.mock import MagicMock

import pytest

from message_store.config import RetentionConfig
from message_store.errors import StorageError
from message_store.retention import RetentionManager
from message_store.types import StorageMode
from message_store.units import StorageUnit


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def manager():
    return RetentionManager(RetentionConfig(max_unit_size_kb=100))


@pytest.fixture
def oversized_unit():
    """Unit at 150 KB over 10 rows."""
    unit = MagicMock(spec=StorageUnit)
    unit.name = "topic_test"
    unit.footprint_kb.return_value = 150.0
    unit.row_count.return_value = 10
    unit.delete_oldest.return_value = 5
    return unit


# ============================================================
# ARITHMETIC TESTS
# ============================================================

class TestRowsToDelete:
    """Tests for the eviction count."""

    def test_under_limit_deletes_nothing(self, manager):
        assert manager.rows_to_delete(100.0, 10) == 0
        assert manager.rows_to_delete(50.0, 10) == 0

    def test_shrinks_to_eighty_percent(self, manager):
        # avg 15 KB, target 80 KB, excess 70 KB -> ceil(4.67)
        assert manager.rows_to_delete(150.0, 10) == 5

    def test_rounds_up(self, manager):
        # avg 1.01 KB, excess 21 KB -> ceil(20.79)
        assert manager.rows_to_delete(101.0, 100) == 21

    def test_empty_unit(self, manager):
        assert manager.rows_to_delete(500.0, 0) == 0

    def test_target_ratio_configurable(self):
        manager = RetentionManager(RetentionConfig(max_unit_size_kb=100, target_ratio=0.5))
        # avg 15 KB, target 50 KB, excess 100 KB -> ceil(6.67)
        assert manager.rows_to_delete(150.0, 10) == 7


# ============================================================
# MANAGER TESTS
# ============================================================

class TestRetentionManager:
    """Tests for enforce() with a mocked unit."""

    def test_under_limit_is_noop(self, manager, oversized_unit):
        oversized_unit.footprint_kb.return_value = 99.0

        assert manager.enforce(oversized_unit) == 0
        oversized_unit.delete_oldest.assert_not_called()
        oversized_unit.compact.assert_not_called()
        assert manager.stats.checks == 1

    def test_evicts_and_compacts(self, manager, oversized_unit):
        deleted = manager.enforce(oversized_unit)

        assert deleted == 5
        oversized_unit.delete_oldest.assert_called_once_with(5)
        oversized_unit.compact.assert_called_once()
        assert manager.stats.evictions == 1
        assert manager.stats.rows_evicted == 5
        assert manager.stats.rows_evicted_by_unit == {"topic_test": 5}
        assert manager.stats.last_eviction is not None

    def test_compaction_failure_is_swallowed(self, manager, oversized_unit):
        oversized_unit.compact.side_effect = StorageError(
            operation="compact", original_error="VACUUM cannot run inside a transaction block"
        )

        assert manager.enforce(oversized_unit) == 5
        assert manager.stats.compaction_failures == 1
        assert manager.stats.rows_evicted == 5

    def test_delete_failure_propagates(self, manager, oversized_unit):
        oversized_unit.delete_oldest.side_effect = StorageError(
            operation="delete_oldest", original_error="connection lost"
        )

        with pytest.raises(StorageError):
            manager.enforce(oversized_unit)

    def test_compaction_disabled(self, oversized_unit):
        manager = RetentionManager(
            RetentionConfig(max_unit_size_kb=100, compact_after_eviction=False)
        )

        manager.enforce(oversized_unit)

        oversized_unit.compact.assert_not_called()

    def test_nothing_deleted_skips_compaction(self, manager, oversized_unit):
        oversized_unit.delete_oldest.return_value = 0

        assert manager.enforce(oversized_unit) == 0
        oversized_unit.compact.assert_not_called()

    def test_stats_to_dict(self, manager, oversized_unit):
        manager.enforce(oversized_unit)

        stats = manager.stats.to_dict()
        assert stats["rows_evicted"] == 5
        assert isinstance(stats["last_eviction"], str)


# ============================================================
# END-TO-END TESTS
# ============================================================

class TestSizeBound:
    """Retention against real SQLite units capped at 2 KB."""

    @pytest.mark.parametrize("mode", [StorageMode.DEDICATED, StorageMode.SHARED])
    def test_footprint_stays_bounded(self, small_store, mode):
        small_store.create_topic("bulk", {"body": "string"}, mode)
        ids = []

        for i in range(40):
            ids.append(small_store.put("bulk", {"body": f"{i:04d}" + "x" * 196}))
            assert small_store.footprint("bulk") <= 2

        assert small_store.retention.stats.rows_evicted > 0

        # Survivors are the newest records, with no gaps
        remaining = [r.id for r in small_store.fetch("bulk")]
        assert remaining == ids[-len(remaining):]
        assert remaining == list(range(remaining[0], ids[-1] + 1))

    def test_oldest_evicted_first(self, small_store):
        small_store.create_topic("bulk", {"body": "string"}, StorageMode.DEDICATED)
        for i in range(20):
            small_store.put("bulk", {"body": f"{i:04d}" + "x" * 196})

        bodies = [r.fields["body"][:4] for r in small_store.fetch("bulk")]
        assert bodies[-1] == "0019"
        assert "0000" not in bodies

    def test_manual_pass_on_compliant_unit(self, small_store):
        small_store.create_topic("tiny", {"n": "number"}, StorageMode.DEDICATED)
        small_store.put("tiny", {"n": 1})

        assert small_store.enforce_retention("tiny") == 0
        assert small_store.row_count("tiny") == 1
