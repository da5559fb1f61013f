"""
stock_services -- orchestration over the stock kernel and engines.

Public services:
    DeliverySettlementOrchestrator -- full/manual delivery settlement
    StockReceiptService            -- procurement receipts into batches
    StockReconciliationService     -- drift detection, resync and ledger repair
"""

from stock_services._reconciliation_types import (
    LedgerRepairReport,
    LedgerVerification,
    RepairTruth,
    StockParity,
)
from stock_services.delivery_settlement import DeliverySettlementOrchestrator
from stock_services.receipt_service import StockReceiptService
from stock_services.reconciliation_service import StockReconciliationService

__all__ = [
    "DeliverySettlementOrchestrator",
    "LedgerRepairReport",
    "LedgerVerification",
    "RepairTruth",
    "StockParity",
    "StockReceiptService",
    "StockReconciliationService",
]
