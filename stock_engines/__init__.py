"""
stock_engines -- pure calculation layer for stock ledger and settlement.

Every function here is deterministic and free of I/O: no sessions, no
clocks, no environment.  Services in ``stock_kernel.services`` and
``stock_services`` load state, call an engine, and persist the result.
"""

from stock_engines.fifo import (
    BatchCandidate,
    FifoPlan,
    FifoTake,
    order_for_consumption,
    plan_fifo_consumption,
)
from stock_engines.ledger import (
    BalanceUpdate,
    ChainViolation,
    LedgerDay,
    RepairPlan,
    ReplayResult,
    ViolationKind,
    back_calculate_opening,
    closing_balance,
    find_chain_breaks,
    plan_repair,
    replay,
    reverse_opening,
)
from stock_engines.owed import (
    LineOwed,
    compute_owed,
    delivery_status,
    is_fully_settled,
    split_main_quantity,
)

__all__ = [
    "BalanceUpdate",
    "BatchCandidate",
    "ChainViolation",
    "FifoPlan",
    "FifoTake",
    "LedgerDay",
    "LineOwed",
    "RepairPlan",
    "ReplayResult",
    "ViolationKind",
    "back_calculate_opening",
    "closing_balance",
    "compute_owed",
    "delivery_status",
    "find_chain_breaks",
    "is_fully_settled",
    "order_for_consumption",
    "plan_fifo_consumption",
    "plan_repair",
    "replay",
    "reverse_opening",
    "split_main_quantity",
]
