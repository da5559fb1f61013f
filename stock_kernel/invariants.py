"""
Stock Kernel Invariants Contract.

These invariants are structural law for the ledger and settlement engine.
No configuration value may switch them off; configuration only tunes
tolerances and bounds.

Enforcement is distributed across StockMovementService, BatchAllocator,
InventoryStockService and DeliverySettlementOrchestrator.
"""

from enum import Enum, unique


@unique
class StockInvariant(str, Enum):
    """Non-configurable invariants enforced by the stock kernel."""

    CLOSING_FORMULA = "closing_formula"
    """closing = opening + incoming + incoming_gifts - outgoing
    - pending_outgoing - outgoing_gifts on every ledger row."""

    CHAIN_CONTINUITY = "chain_continuity"
    """Each ledger row opens at its predecessor's closing.  Maintained by
    forward propagation after every write."""

    BATCH_AGGREGATE_PARITY = "batch_aggregate_parity"
    """Sum of batch quantities equals the aggregate stock quantity.  Both
    change in the same transaction."""

    FIFO_ORDER = "fifo_order"
    """Earliest expiry first, undated last, then earliest receipt."""

    ALL_OR_NOTHING_SETTLEMENT = "all_or_nothing_settlement"
    """A rejected settlement leaves batches, aggregates, delivery records
    and invoice status unchanged."""

    PER_INVOICE_SERIALIZATION = "per_invoice_serialization"
    """Settlements of one invoice are serialized by a row or advisory lock."""


ALL_STOCK_INVARIANTS: frozenset[StockInvariant] = frozenset(StockInvariant)

# The kernel package may not import from these packages.
# Enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "stock_services",
    "stock_config",
    "stock_batch",
)
