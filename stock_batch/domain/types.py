"""
stock_batch.domain.types -- Pure frozen dataclasses for maintenance runs.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class MaintenanceRunStatus(str, Enum):
    """Run-level outcome."""

    COMPLETED = "completed"  # No item failed
    FAILED = "failed"  # Every item failed
    PARTIALLY_COMPLETED = "partially_completed"  # Some items failed


class MaintenanceItemStatus(str, Enum):
    """Per-item outcome within a maintenance run."""

    SUCCEEDED = "succeeded"  # Changes kept
    FAILED = "failed"  # SAVEPOINT rolled back
    SKIPPED = "skipped"  # Nothing to do (e.g. already consistent)


@dataclass(frozen=True)
class MaintenanceItemResult:
    """Immutable result of processing one (warehouse, item) pair.

    Each item runs in its own SAVEPOINT -- failure of one item does not
    abort the run.
    """

    item_index: int
    item_key: str  # "<warehouse_id>:<item_id>"
    status: MaintenanceItemStatus
    error_code: str | None = None
    error_message: str | None = None
    result_data: dict[str, Any] | None = None
    duration_ms: int = 0


@dataclass(frozen=True)
class MaintenanceRunResult:
    """Immutable result of one ``MaintenanceRunner.run()`` call."""

    task_type: str
    status: MaintenanceRunStatus
    total_items: int
    succeeded: int
    failed: int
    skipped: int
    item_results: tuple[MaintenanceItemResult, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
