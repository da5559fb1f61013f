"""
Maintenance tasks: ledger bootstrap, ledger repair, aggregate resync.

Parameters understood by every task:
    warehouse_id / item_id -- optional filters (UUID or string).
Task-specific:
    day      -- bootstrap date for ``ledger.initialize_movements`` (default: as_of).
    truth    -- ``aggregate`` or ``batches`` for ``ledger.repair_movements``.
    dry_run  -- report without writing (repair and sync).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from stock_kernel.db.types import QUANTITY_EPSILON
from stock_kernel.selectors.batch_selector import BatchSelector
from stock_kernel.selectors.movement_selector import MovementSelector
from stock_kernel.services.inventory_stock_service import InventoryStockService
from stock_kernel.services.stock_movement_service import LedgerPolicy, StockMovementService
from stock_services.reconciliation_service import StockReconciliationService

from stock_batch.domain.types import MaintenanceItemStatus
from stock_batch.tasks.base import (
    MaintenanceItemInput,
    TaskResult,
    day_param,
    select_pairs,
)


class InitializeStockMovementsTask:
    """Seeds a first ledger row from the aggregate for untracked pairs."""

    def __init__(self, policy: LedgerPolicy | None = None):
        self._policy = policy

    @property
    def task_type(self) -> str:
        return "ledger.initialize_movements"

    @property
    def description(self) -> str:
        return "Seed opening ledger rows from current stock"

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[MaintenanceItemInput, ...]:
        tracked = set(MovementSelector(session).tracked_pairs())
        pairs = [p for p in BatchSelector(session).stock_pairs() if p not in tracked]
        return select_pairs(pairs, parameters)

    def execute_item(
        self,
        item: MaintenanceItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> TaskResult:
        day = day_param(parameters, as_of)
        stock = InventoryStockService(session)
        quantity = stock.get_quantity(item.warehouse_id, item.item_id)
        created = StockMovementService(
            session, policy=self._policy, stock_service=stock
        ).initialize_stock_movement(item.warehouse_id, item.item_id, quantity, day)
        if not created:
            return TaskResult(status=MaintenanceItemStatus.SKIPPED)
        return TaskResult(
            status=MaintenanceItemStatus.SUCCEEDED,
            result_data={"movement_date": day.isoformat(), "quantity": str(quantity)},
        )


class RepairStockMovementsTask:
    """Rebuilds each tracked ledger so it closes at the truth quantity."""

    def __init__(self, epsilon: Decimal | None = None):
        self._epsilon = epsilon if epsilon is not None else QUANTITY_EPSILON

    @property
    def task_type(self) -> str:
        return "ledger.repair_movements"

    @property
    def description(self) -> str:
        return "Back-calculate and replay stock movement ledgers"

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[MaintenanceItemInput, ...]:
        return select_pairs(MovementSelector(session).tracked_pairs(), parameters)

    def execute_item(
        self,
        item: MaintenanceItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> TaskResult:
        report = StockReconciliationService(session, epsilon=self._epsilon).repair_ledger(
            item.warehouse_id,
            item.item_id,
            truth=parameters.get("truth", "aggregate"),
            dry_run=bool(parameters.get("dry_run", False)),
        )
        if report.rows_corrected == 0:
            return TaskResult(status=MaintenanceItemStatus.SKIPPED)
        return TaskResult(
            status=MaintenanceItemStatus.SUCCEEDED,
            result_data={
                "truth": report.truth.value,
                "truth_quantity": str(report.truth_quantity),
                "derived_opening": str(report.derived_opening),
                "rows_examined": report.rows_examined,
                "rows_corrected": report.rows_corrected,
                "dry_run": report.dry_run,
            },
        )


class SyncStockWithBatchesTask:
    """Resets the aggregate to the batch total where they disagree."""

    def __init__(self, epsilon: Decimal | None = None):
        self._epsilon = epsilon if epsilon is not None else QUANTITY_EPSILON

    @property
    def task_type(self) -> str:
        return "stock.sync_with_batches"

    @property
    def description(self) -> str:
        return "Resynchronize aggregate stock with batch totals"

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[MaintenanceItemInput, ...]:
        return select_pairs(BatchSelector(session).stock_pairs(), parameters)

    def execute_item(
        self,
        item: MaintenanceItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> TaskResult:
        parity = StockReconciliationService(
            session, epsilon=self._epsilon
        ).sync_aggregate_with_batches(
            item.warehouse_id,
            item.item_id,
            dry_run=bool(parameters.get("dry_run", False)),
        )
        if parity.within_tolerance:
            return TaskResult(status=MaintenanceItemStatus.SKIPPED)
        return TaskResult(
            status=MaintenanceItemStatus.SUCCEEDED,
            result_data={
                "aggregate_before": str(parity.aggregate_quantity),
                "batch_total": str(parity.batch_total),
                "corrected": parity.corrected,
            },
        )
