"""
Message Store - Retention Manager.

============================================================
PURPOSE
============================================================
Keeps every storage unit under a configured footprint by
evicting its oldest rows.

ALGORITHM:
1. footprint <= maximum               -> nothing to do
2. average row size = footprint / rows
3. target = maximum * target ratio (0.8)
4. delete ceil((footprint - target) / average) oldest rows,
   ordered by (received_at ASC, id ASC)
5. compact the unit; a failure here is logged only, the
   deletion has already committed

Runs synchronously right after each successful insert. A
writer landing between the size check and the delete is
tolerated: the next insert re-checks and evicts further.

============================================================
"""

import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .config import RetentionConfig
from .errors import StorageError
from .units import StorageUnit


logger = logging.getLogger(__name__)


@dataclass
class RetentionStats:
    """Counters for retention passes."""

    checks: int = 0
    evictions: int = 0
    rows_evicted: int = 0
    compaction_failures: int = 0
    last_eviction: Optional[datetime] = None
    rows_evicted_by_unit: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checks": self.checks,
            "evictions": self.evictions,
            "rows_evicted": self.rows_evicted,
            "compaction_failures": self.compaction_failures,
            "last_eviction": self.last_eviction.isoformat() if self.last_eviction else None,
            "rows_evicted_by_unit": dict(self.rows_evicted_by_unit),
        }


class RetentionManager:
    """
    Size-bounded eviction for storage units.
    """

    def __init__(self, config: Optional[RetentionConfig] = None) -> None:
        self._config = config or RetentionConfig()
        self._stats = RetentionStats()
        self._lock = threading.Lock()

    @property
    def config(self) -> RetentionConfig:
        return self._config

    @property
    def stats(self) -> RetentionStats:
        return self._stats

    def rows_to_delete(self, footprint_kb: float, row_count: int) -> int:
        """How many of the oldest rows must go to get back under target."""
        if footprint_kb <= self._config.max_unit_size_kb or row_count <= 0:
            return 0
        average_row_kb = footprint_kb / row_count
        excess_kb = footprint_kb - self._config.target_size_kb
        return max(0, math.ceil(excess_kb / average_row_kb))

    def enforce(self, unit: StorageUnit) -> int:
        """
        Bring a unit back under its footprint budget.

        Returns:
            Number of rows evicted (0 if none)

        Raises:
            StorageError: If measuring or deleting fails
        """
        with self._lock:
            self._stats.checks += 1

        footprint_kb = unit.footprint_kb()
        logger.debug(
            f"Table {unit.name} current size: {footprint_kb:.2f} KB "
            f"(max: {self._config.max_unit_size_kb} KB)"
        )
        if footprint_kb <= self._config.max_unit_size_kb:
            return 0

        row_count = unit.row_count()
        count = self.rows_to_delete(footprint_kb, row_count)
        if count <= 0:
            return 0

        deleted = unit.delete_oldest(count)
        if deleted <= 0:
            return 0

        logger.info(f"Retention: Deleted {deleted} rows from {unit.name} to maintain size limit")
        self._record_eviction(unit.name, deleted)

        if self._config.compact_after_eviction:
            self._compact(unit)

        return deleted

    def _compact(self, unit: StorageUnit) -> None:
        try:
            logger.debug(f"Compacting {unit.name} to reclaim space...")
            unit.compact()
            logger.info(f"Compaction completed for {unit.name}")
        except StorageError as e:
            with self._lock:
                self._stats.compaction_failures += 1
            logger.warning(f"Compaction failed for {unit.name}: {e}")

    def _record_eviction(self, unit_name: str, deleted: int) -> None:
        with self._lock:
            self._stats.evictions += 1
            self._stats.rows_evicted += deleted
            self._stats.last_eviction = datetime.now(timezone.utc)
            self._stats.rows_evicted_by_unit[unit_name] = (
                self._stats.rows_evicted_by_unit.get(unit_name, 0) + deleted
            )
