"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (HTTP handlers, maintenance jobs, the CLI) must react to stock
failures precisely.  Parsing message strings is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (item, warehouse, quantities)

Example - RIGHT way:
    try:
        orchestrator.settle_full(invoice_id, actor_id=actor)
    except InsufficientStockError as e:
        api_response(code=e.code, item=e.item_id, shortfall=e.shortfall)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockKernelError (base)
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- InvalidBatchReferenceError
    |
    +-- LedgerError
    |   +-- InvalidMovementError
    |   +-- PropagationLimitError
    |
    +-- SettlementError
    |   +-- InvoiceNotFoundError
    |   +-- InvoiceLineNotFoundError
    |   +-- PaymentNotConfirmedError
    |   +-- AlreadySettledError
    |   +-- OverDeliveryError
    |
    +-- PeriodError
        +-- BooksClosedError

    LedgerDriftWarning (UserWarning, non-fatal)

===============================================================================
ERROR CODES
===============================================================================

    Code                        Meaning
    --------------------------  ---------------------------------------------
    INSUFFICIENT_STOCK          Batches/aggregate cannot cover the request
    INVALID_BATCH_REFERENCE     Manual allocation names a wrong/short batch
    INVALID_MOVEMENT            Movement delta or date is malformed
    PROPAGATION_LIMIT_EXCEEDED  Forward cascade exceeds configured bound
    INVOICE_NOT_FOUND           No sales invoice with that id
    INVOICE_LINE_NOT_FOUND      Manual line does not match an invoice line
    PAYMENT_NOT_CONFIRMED       Settlement before payment confirmation
    ALREADY_SETTLED             Nothing is owed on the invoice
    OVER_DELIVERY               Manual delivery exceeds the owed quantity
    BOOKS_CLOSED                The period gate reports the books closed
    LEDGER_DRIFT                Ledger closing disagrees with stock truth

Storage errors (SQLAlchemy) are never wrapped; they propagate unchanged.
"""

from decimal import Decimal
from uuid import UUID


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_KERNEL_ERROR"


# Stock / batch exceptions


class StockError(StockKernelError):
    """Base exception for batch and aggregate stock errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """Available stock cannot cover the requested quantity.

    Raised before any batch or aggregate row is modified.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        item_id: UUID,
        warehouse_id: UUID,
        required: Decimal,
        available: Decimal,
    ):
        self.item_id = item_id
        self.warehouse_id = warehouse_id
        self.required = required
        self.available = available
        self.shortfall = required - available
        super().__init__(
            f"Insufficient stock for item {item_id} in warehouse "
            f"{warehouse_id}: required {required}, available {available}, "
            f"short by {self.shortfall}"
        )


class InvalidBatchReferenceError(StockError):
    """A manual allocation references a batch that cannot supply it."""

    code: str = "INVALID_BATCH_REFERENCE"

    def __init__(
        self,
        batch_id: UUID,
        warehouse_id: UUID,
        item_id: UUID,
        reason: str,
    ):
        self.batch_id = batch_id
        self.warehouse_id = warehouse_id
        self.item_id = item_id
        self.reason = reason
        super().__init__(
            f"Batch {batch_id} cannot be used for item {item_id} in "
            f"warehouse {warehouse_id}: {reason}"
        )


# Ledger exceptions


class LedgerError(StockKernelError):
    """Base exception for stock movement ledger errors."""

    code: str = "LEDGER_ERROR"


class InvalidMovementError(LedgerError):
    """Movement input is malformed."""

    code: str = "INVALID_MOVEMENT"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid stock movement: {reason}")


class PropagationLimitError(LedgerError):
    """A backdated write would cascade through more rows than allowed."""

    code: str = "PROPAGATION_LIMIT_EXCEEDED"

    def __init__(
        self,
        warehouse_id: UUID,
        item_id: UUID,
        from_date: str,
        row_count: int,
        max_rows: int,
    ):
        self.warehouse_id = warehouse_id
        self.item_id = item_id
        self.from_date = from_date
        self.row_count = row_count
        self.max_rows = max_rows
        super().__init__(
            f"Propagation from {from_date} for item {item_id} in warehouse "
            f"{warehouse_id} touches {row_count} rows (limit {max_rows})"
        )


# Settlement exceptions


class SettlementError(StockKernelError):
    """Base exception for delivery settlement errors."""

    code: str = "SETTLEMENT_ERROR"


class InvoiceNotFoundError(SettlementError):
    """Sales invoice does not exist."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: UUID):
        self.invoice_id = invoice_id
        super().__init__(f"Sales invoice not found: {invoice_id}")


class InvoiceLineNotFoundError(SettlementError):
    """A manual delivery line does not resolve to exactly one invoice line."""

    code: str = "INVOICE_LINE_NOT_FOUND"

    def __init__(self, invoice_id: UUID, reference: str):
        self.invoice_id = invoice_id
        self.reference = reference
        super().__init__(
            f"Invoice {invoice_id} has no unique line matching {reference}"
        )


class PaymentNotConfirmedError(SettlementError):
    """Settlement attempted before the invoice payment was confirmed."""

    code: str = "PAYMENT_NOT_CONFIRMED"

    def __init__(self, invoice_id: UUID):
        self.invoice_id = invoice_id
        super().__init__(
            f"Payment for invoice {invoice_id} is not confirmed"
        )


class AlreadySettledError(SettlementError):
    """Nothing remains owed on the invoice."""

    code: str = "ALREADY_SETTLED"

    def __init__(self, invoice_id: UUID):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} is already fully delivered")


class OverDeliveryError(SettlementError):
    """Manual delivery exceeds what is still owed on a line."""

    code: str = "OVER_DELIVERY"

    def __init__(
        self,
        invoice_id: UUID,
        item_id: UUID,
        requested: Decimal,
        owed: Decimal,
    ):
        self.invoice_id = invoice_id
        self.item_id = item_id
        self.requested = requested
        self.owed = owed
        super().__init__(
            f"Delivering {requested} of item {item_id} on invoice "
            f"{invoice_id} exceeds owed quantity {owed}"
        )


# Period exceptions


class PeriodError(StockKernelError):
    """Base exception for books/period gating errors."""

    code: str = "PERIOD_ERROR"


class BooksClosedError(PeriodError):
    """The accounting period gate reports the books closed."""

    code: str = "BOOKS_CLOSED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Books are closed; cannot perform {operation}")


# Warnings


class LedgerDriftWarning(UserWarning):
    """Ledger closing balance disagrees with the stock truth.

    Non-fatal.  Reported by reconciliation and repair tooling only.
    """

    code: str = "LEDGER_DRIFT"

    def __init__(
        self,
        warehouse_id: UUID,
        item_id: UUID,
        ledger_closing: Decimal,
        truth_quantity: Decimal,
    ):
        self.warehouse_id = warehouse_id
        self.item_id = item_id
        self.ledger_closing = ledger_closing
        self.truth_quantity = truth_quantity
        self.drift = ledger_closing - truth_quantity
        super().__init__(
            f"Ledger drift for item {item_id} in warehouse {warehouse_id}: "
            f"ledger closing {ledger_closing}, truth {truth_quantity}"
        )
