"""
stock_batch -- Offline maintenance for the stock ledger.

Runs repair and bootstrap tasks item by item, each (warehouse, item)
pair inside its own SAVEPOINT, so one bad pair does not abort a run.

Architecture:
    stock_batch/ is a top-level package.  Nothing in stock_kernel/ or
    stock_engines/ imports from stock_batch.
"""

from stock_batch.runner import MaintenanceRunner
from stock_batch.tasks.base import TaskRegistry, default_task_registry

__all__ = [
    "MaintenanceRunner",
    "TaskRegistry",
    "default_task_registry",
]
