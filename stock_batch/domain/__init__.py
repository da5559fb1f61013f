"""
stock_batch.domain -- Pure types for maintenance runs.

ZERO I/O.  All types are frozen dataclasses.
"""

from stock_batch.domain.types import (
    MaintenanceItemResult,
    MaintenanceItemStatus,
    MaintenanceRunResult,
    MaintenanceRunStatus,
)

__all__ = [
    "MaintenanceItemResult",
    "MaintenanceItemStatus",
    "MaintenanceRunResult",
    "MaintenanceRunStatus",
]
