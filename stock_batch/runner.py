"""
MaintenanceRunner -- SAVEPOINT-per-item execution of maintenance tasks.

Contract:
    ``run()`` resolves a registered task, prepares its items and executes
    each one inside its own SAVEPOINT.  A failing item is rolled back and
    recorded; the remaining items still run.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
    - Does NOT persist run history; results are returned as frozen DTOs.
"""

from __future__ import annotations

import time
from typing import Any

from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.logging_config import LogContext, get_logger

from stock_batch.domain.types import (
    MaintenanceItemResult,
    MaintenanceItemStatus,
    MaintenanceRunResult,
    MaintenanceRunStatus,
)
from stock_batch.tasks.base import TaskRegistry, default_task_registry

logger = get_logger("batch.runner")


class MaintenanceRunner:
    """Runs one maintenance task over every eligible (warehouse, item) pair."""

    def __init__(
        self,
        session: Session,
        task_registry: TaskRegistry | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._task_registry = task_registry or default_task_registry()
        self._clock = clock or SystemClock()

    def run(
        self,
        task_type: str,
        parameters: dict[str, Any] | None = None,
    ) -> MaintenanceRunResult:
        """Execute ``task_type`` with per-item SAVEPOINT isolation.

        Raises:
            KeyError: If task_type is not registered.
        """
        task = self._task_registry.get(task_type)
        parameters = parameters or {}
        start_time = time.monotonic()
        started_at = self._clock.now()

        items = task.prepare_items(
            parameters=parameters, session=self._session, as_of=started_at,
        )
        logger.info(
            "maintenance_run_started",
            extra={"task_type": task_type, "total_items": len(items)},
        )

        succeeded = 0
        failed = 0
        skipped = 0
        item_results: list[MaintenanceItemResult] = []

        for item in items:
            item_start = time.monotonic()
            savepoint = self._session.begin_nested()
            with LogContext.bind(warehouse_id=item.warehouse_id, item_id=item.item_id):
                try:
                    result = task.execute_item(
                        item=item,
                        parameters=parameters,
                        session=self._session,
                        as_of=started_at,
                    )
                    if result.status == MaintenanceItemStatus.SUCCEEDED:
                        savepoint.commit()
                        succeeded += 1
                    elif result.status == MaintenanceItemStatus.SKIPPED:
                        savepoint.rollback()
                        skipped += 1
                    else:
                        savepoint.rollback()
                        failed += 1
                    item_result = MaintenanceItemResult(
                        item_index=item.item_index,
                        item_key=item.item_key,
                        status=result.status,
                        error_code=result.error_code,
                        error_message=result.error_message,
                        result_data=result.result_data,
                        duration_ms=int((time.monotonic() - item_start) * 1000),
                    )
                except Exception as exc:
                    savepoint.rollback()
                    failed += 1
                    error_code = getattr(exc, "code", "UNHANDLED_EXCEPTION")
                    logger.warning(
                        "maintenance_item_failed",
                        extra={
                            "task_type": task_type,
                            "item_key": item.item_key,
                            "error_code": error_code,
                            "error_message": str(exc),
                        },
                    )
                    item_result = MaintenanceItemResult(
                        item_index=item.item_index,
                        item_key=item.item_key,
                        status=MaintenanceItemStatus.FAILED,
                        error_code=error_code,
                        error_message=str(exc),
                        duration_ms=int((time.monotonic() - item_start) * 1000),
                    )
            item_results.append(item_result)

        if failed == 0:
            status = MaintenanceRunStatus.COMPLETED
        elif succeeded == 0 and skipped == 0:
            status = MaintenanceRunStatus.FAILED
        else:
            status = MaintenanceRunStatus.PARTIALLY_COMPLETED

        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            "maintenance_run_completed",
            extra={
                "task_type": task_type,
                "status": status.value,
                "succeeded": succeeded,
                "failed": failed,
                "skipped": skipped,
                "duration_ms": duration_ms,
            },
        )
        return MaintenanceRunResult(
            task_type=task_type,
            status=status,
            total_items=len(items),
            succeeded=succeeded,
            failed=failed,
            skipped=skipped,
            item_results=tuple(item_results),
            started_at=started_at,
            completed_at=self._clock.now(),
            duration_ms=duration_ms,
        )
