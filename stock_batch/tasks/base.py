"""
MaintenanceTask protocol, supporting types, and TaskRegistry.

Contract:
    ``MaintenanceTask`` defines the interface every maintenance task implements.
    ``TaskRegistry`` stores registered tasks keyed by ``task_type``.
    ``default_task_registry()`` returns a registry holding the ledger and
    stock maintenance tasks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from stock_batch.domain.types import MaintenanceItemStatus


# =============================================================================
# Supporting DTOs
# =============================================================================


@dataclass(frozen=True)
class MaintenanceItemInput:
    """One (warehouse, item) pair to process.

    Created by ``MaintenanceTask.prepare_items()``.
    """

    item_index: int
    warehouse_id: UUID
    item_id: UUID
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def item_key(self) -> str:
        return f"{self.warehouse_id}:{self.item_id}"


@dataclass(frozen=True)
class TaskResult:
    """Result returned by ``MaintenanceTask.execute_item()``."""

    status: MaintenanceItemStatus
    result_data: dict[str, Any] | None = None
    error_code: str | None = None
    error_message: str | None = None


# =============================================================================
# Parameter helpers
# =============================================================================


def uuid_param(parameters: dict[str, Any], name: str) -> UUID | None:
    value = parameters.get(name)
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))


def day_param(parameters: dict[str, Any], as_of: datetime) -> date:
    value = parameters.get("day")
    if value is None:
        return as_of.date()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def select_pairs(
    pairs: list[tuple[UUID, UUID]], parameters: dict[str, Any]
) -> tuple[MaintenanceItemInput, ...]:
    """Filter pairs by the optional ``warehouse_id``/``item_id`` parameters."""
    warehouse_id = uuid_param(parameters, "warehouse_id")
    item_id = uuid_param(parameters, "item_id")
    selected = [
        (w, i)
        for w, i in pairs
        if (warehouse_id is None or w == warehouse_id)
        and (item_id is None or i == item_id)
    ]
    return tuple(
        MaintenanceItemInput(item_index=n, warehouse_id=w, item_id=i)
        for n, (w, i) in enumerate(selected)
    )


# =============================================================================
# MaintenanceTask Protocol
# =============================================================================


@runtime_checkable
class MaintenanceTask(Protocol):
    """Protocol for maintenance task implementations.

    Contract:
        - ``task_type``: unique string key registered in TaskRegistry.
        - ``description``: human-readable label.
        - ``prepare_items()``: queries eligible pairs, returns an immutable tuple.
        - ``execute_item()``: processes ONE pair within a SAVEPOINT.

    Non-goals:
        - Does NOT manage transactions -- the runner owns the SAVEPOINT lifecycle.
    """

    @property
    def task_type(self) -> str: ...

    @property
    def description(self) -> str: ...

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[MaintenanceItemInput, ...]: ...

    def execute_item(
        self,
        item: MaintenanceItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> TaskResult: ...


# =============================================================================
# TaskRegistry
# =============================================================================


class TaskRegistry:
    """Registry mapping task_type strings to MaintenanceTask implementations.

    Contract:
        - ``register()`` adds a task; raises ValueError on duplicate.
        - ``get()`` retrieves by task_type; raises KeyError if missing.
        - ``list_tasks()`` returns all registered task_type strings.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, MaintenanceTask] = {}

    def register(self, task: MaintenanceTask) -> None:
        if task.task_type in self._tasks:
            raise ValueError(
                f"Task type '{task.task_type}' is already registered"
            )
        self._tasks[task.task_type] = task

    def get(self, task_type: str) -> MaintenanceTask:
        try:
            return self._tasks[task_type]
        except KeyError:
            raise KeyError(
                f"No task registered for type '{task_type}'. "
                f"Available: {sorted(self._tasks.keys())}"
            ) from None

    def list_tasks(self) -> tuple[str, ...]:
        """Return all registered task_type strings, sorted."""
        return tuple(sorted(self._tasks.keys()))

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_type: str) -> bool:
        return task_type in self._tasks


def default_task_registry(
    *,
    policy: Any = None,
    epsilon: Decimal | None = None,
) -> TaskRegistry:
    """Registry holding the three built-in maintenance tasks.

    ``policy`` is a ``LedgerPolicy`` for the initialize task; ``epsilon`` is
    the drift tolerance for repair and sync.
    """
    from stock_batch.tasks.ledger_tasks import (
        InitializeStockMovementsTask,
        RepairStockMovementsTask,
        SyncStockWithBatchesTask,
    )

    registry = TaskRegistry()
    registry.register(InitializeStockMovementsTask(policy=policy))
    registry.register(RepairStockMovementsTask(epsilon=epsilon))
    registry.register(SyncStockWithBatchesTask(epsilon=epsilon))
    return registry
