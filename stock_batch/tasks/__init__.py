"""
stock_batch.tasks -- Task protocol, registry, and maintenance task implementations.
"""

from stock_batch.tasks.base import (
    MaintenanceItemInput,
    MaintenanceTask,
    TaskRegistry,
    TaskResult,
    default_task_registry,
)

__all__ = [
    "MaintenanceItemInput",
    "MaintenanceTask",
    "TaskRegistry",
    "TaskResult",
    "default_task_registry",
]
