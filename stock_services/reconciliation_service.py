"""
StockReconciliationService -- drift detection and repair tooling.

Responsibility:
    - Compare the cached aggregate against batch totals and resync it.
    - Rebuild a (warehouse, item) ledger so it closes at a known-correct
      quantity, back-calculating the first opening and replaying forward.
    - Verify closing-formula and chain-continuity invariants without
      changing anything.

Architecture position:
    Services -- offline tooling over kernel models and ``stock_engines.ledger``.
    Invoked by ``stock_batch`` maintenance tasks and the maintenance CLI.

Invariants enforced:
    - Rows are only rewritten when they differ from the replay by more than
      the tolerance (0.01 by default).
    - Ledger drift is reported as a LedgerDriftWarning and never raised.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_engines.ledger import LedgerDay, find_chain_breaks, plan_repair
from stock_kernel.db.types import QUANTITY_EPSILON, quantities_differ
from stock_kernel.exceptions import LedgerDriftWarning
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.stock_movement import StockMovement
from stock_kernel.selectors.batch_selector import BatchSelector
from stock_kernel.selectors.movement_selector import MovementSelector
from stock_kernel.services.inventory_stock_service import InventoryStockService

from stock_services._reconciliation_types import (
    LedgerRepairReport,
    LedgerVerification,
    RepairTruth,
    StockParity,
)

logger = get_logger("services.stock_reconciliation")


class StockReconciliationService:
    """Detects and repairs drift between ledger, batches and aggregate."""

    def __init__(self, session: Session, *, epsilon: Decimal = QUANTITY_EPSILON):
        self._session = session
        self._epsilon = epsilon
        self._stock = InventoryStockService(session)
        self._batches = BatchSelector(session)
        self._movements = MovementSelector(session)

    # ------------------------------------------------------------------
    # Aggregate vs batches
    # ------------------------------------------------------------------

    def check_parity(self, warehouse_id: UUID, item_id: UUID) -> StockParity:
        aggregate = self._stock.get_quantity(warehouse_id, item_id)
        batch_total = self._batches.batch_total(warehouse_id, item_id)
        return StockParity(
            warehouse_id=warehouse_id,
            item_id=item_id,
            aggregate_quantity=aggregate,
            batch_total=batch_total,
            within_tolerance=not quantities_differ(aggregate, batch_total, self._epsilon),
        )

    def find_drift(self) -> tuple[StockParity, ...]:
        """Every (warehouse, item) whose aggregate disagrees with its batches."""
        drifted = []
        for warehouse_id, item_id in self._batches.stock_pairs():
            parity = self.check_parity(warehouse_id, item_id)
            if not parity.within_tolerance:
                drifted.append(parity)
        return tuple(drifted)

    def sync_aggregate_with_batches(
        self, warehouse_id: UUID, item_id: UUID, dry_run: bool = False
    ) -> StockParity:
        """Set the aggregate to the batch total when they differ beyond tolerance."""
        self._stock.lock(warehouse_id, item_id)
        parity = self.check_parity(warehouse_id, item_id)
        if parity.within_tolerance or dry_run:
            return parity

        self._stock.set_quantity(warehouse_id, item_id, parity.batch_total)
        logger.warning(
            "aggregate_resynced",
            extra={
                "warehouse_id": str(warehouse_id),
                "item_id": str(item_id),
                "aggregate_before": str(parity.aggregate_quantity),
                "batch_total": str(parity.batch_total),
            },
        )
        return StockParity(
            warehouse_id=warehouse_id,
            item_id=item_id,
            aggregate_quantity=parity.aggregate_quantity,
            batch_total=parity.batch_total,
            within_tolerance=False,
            corrected=True,
        )

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def _truth_quantity(self, warehouse_id: UUID, item_id: UUID, truth: RepairTruth) -> Decimal:
        if truth == RepairTruth.BATCHES:
            return self._batches.batch_total(warehouse_id, item_id)
        return self._stock.get_quantity(warehouse_id, item_id)

    def check_ledger_drift(
        self,
        warehouse_id: UUID,
        item_id: UUID,
        truth: RepairTruth | str = RepairTruth.AGGREGATE,
    ) -> LedgerDriftWarning | None:
        """Warning when the latest ledger closing disagrees with the truth."""
        closing = self._movements.latest_closing(warehouse_id, item_id)
        if closing is None:
            return None
        truth_quantity = self._truth_quantity(warehouse_id, item_id, RepairTruth(truth))
        if not quantities_differ(closing, truth_quantity, self._epsilon):
            return None
        warning = LedgerDriftWarning(warehouse_id, item_id, closing, truth_quantity)
        logger.warning(
            "ledger_drift_detected",
            extra={
                "warehouse_id": str(warehouse_id),
                "item_id": str(item_id),
                "ledger_closing": str(closing),
                "truth_quantity": str(truth_quantity),
                "drift": str(warning.drift),
            },
        )
        return warning

    def repair_ledger(
        self,
        warehouse_id: UUID,
        item_id: UUID,
        truth: RepairTruth | str = RepairTruth.AGGREGATE,
        dry_run: bool = False,
    ) -> LedgerRepairReport:
        """
        Rebuild the ledger for one pair so it closes at the truth quantity.

        The first opening is back-calculated from the truth by reversing each
        day newest to oldest; the run is then replayed forward and rows that
        differ by more than the tolerance are rewritten.
        """
        truth = RepairTruth(truth)
        with LogContext.bind(warehouse_id=warehouse_id, item_id=item_id):
            rows = list(
                self._session.execute(
                    select(StockMovement)
                    .where(
                        StockMovement.warehouse_id == warehouse_id,
                        StockMovement.item_id == item_id,
                    )
                    .order_by(StockMovement.movement_date.asc())
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalars()
            )
            truth_quantity = self._truth_quantity(warehouse_id, item_id, truth)

            if not rows:
                return LedgerRepairReport(
                    warehouse_id=warehouse_id,
                    item_id=item_id,
                    truth=truth,
                    truth_quantity=truth_quantity,
                    rows_examined=0,
                    rows_corrected=0,
                    derived_opening=None,
                    first_date=None,
                    dry_run=dry_run,
                )

            drift_warning = self.check_ledger_drift(warehouse_id, item_id, truth)
            plan = plan_repair(
                truth_quantity=truth_quantity,
                days=[
                    LedgerDay(
                        movement_date=r.movement_date,
                        opening_balance=r.opening_balance,
                        delta=r.delta,
                        closing_balance=r.closing_balance,
                    )
                    for r in rows
                ],
                epsilon=self._epsilon,
            )

            if not dry_run and plan.updates:
                by_date = {r.movement_date: r for r in rows}
                for update in plan.updates:
                    row = by_date[update.movement_date]
                    row.opening_balance = update.opening_balance
                    row.closing_balance = update.closing_balance
                self._session.flush()

            logger.info(
                "ledger_repaired",
                extra={
                    "truth": truth.value,
                    "truth_quantity": str(truth_quantity),
                    "derived_opening": str(plan.derived_opening),
                    "rows_examined": len(rows),
                    "rows_corrected": len(plan.updates),
                    "dry_run": dry_run,
                },
            )
            return LedgerRepairReport(
                warehouse_id=warehouse_id,
                item_id=item_id,
                truth=truth,
                truth_quantity=truth_quantity,
                rows_examined=len(rows),
                rows_corrected=len(plan.updates),
                derived_opening=plan.derived_opening,
                first_date=rows[0].movement_date,
                drift_warning=drift_warning,
                dry_run=dry_run,
            )

    def verify_ledger(self, warehouse_id: UUID, item_id: UUID) -> LedgerVerification:
        """Closing-formula and continuity violations; changes nothing."""
        rows = self._movements.timeline(warehouse_id, item_id)
        violations = find_chain_breaks(
            [LedgerDay.from_info(r) for r in rows], epsilon=self._epsilon
        )
        if violations:
            logger.warning(
                "ledger_invariant_violations",
                extra={
                    "warehouse_id": str(warehouse_id),
                    "item_id": str(item_id),
                    "violation_count": len(violations),
                },
            )
        return LedgerVerification(
            warehouse_id=warehouse_id,
            item_id=item_id,
            rows_examined=len(rows),
            violations=violations,
        )
