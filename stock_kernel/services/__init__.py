"""Kernel write services (flush-only; the caller owns the transaction)."""

from stock_kernel.services.batch_allocator import BatchAllocator
from stock_kernel.services.inventory_stock_service import InventoryStockService
from stock_kernel.services.period_gate import (
    PeriodGate,
    StaticPeriodGate,
    require_open_period,
)
from stock_kernel.services.stock_movement_service import (
    LedgerPolicy,
    StockMovementService,
    movement_day,
)

__all__ = [
    "BatchAllocator",
    "InventoryStockService",
    "LedgerPolicy",
    "PeriodGate",
    "StaticPeriodGate",
    "StockMovementService",
    "movement_day",
    "require_open_period",
]
