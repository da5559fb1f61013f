"""
Frozen result types for stock reconciliation and ledger repair.

ZERO I/O.  Produced by StockReconciliationService and the maintenance
tasks built on it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from stock_engines.ledger import ChainViolation
from stock_kernel.exceptions import LedgerDriftWarning


class RepairTruth(str, Enum):
    """Quantity the repaired ledger must close at."""

    AGGREGATE = "aggregate"  # InventoryStock.quantity
    BATCHES = "batches"  # Sum of StockBatch.quantity


@dataclass(frozen=True)
class StockParity:
    """Aggregate vs batch-total comparison for one (warehouse, item)."""

    warehouse_id: UUID
    item_id: UUID
    aggregate_quantity: Decimal
    batch_total: Decimal
    within_tolerance: bool
    corrected: bool = False

    @property
    def drift(self) -> Decimal:
        return self.aggregate_quantity - self.batch_total


@dataclass(frozen=True)
class LedgerRepairReport:
    warehouse_id: UUID
    item_id: UUID
    truth: RepairTruth
    truth_quantity: Decimal
    rows_examined: int
    rows_corrected: int
    derived_opening: Decimal | None
    first_date: date | None
    drift_warning: LedgerDriftWarning | None = None
    dry_run: bool = False


@dataclass(frozen=True)
class LedgerVerification:
    warehouse_id: UUID
    item_id: UUID
    rows_examined: int
    violations: tuple[ChainViolation, ...]

    @property
    def is_consistent(self) -> bool:
        return not self.violations
