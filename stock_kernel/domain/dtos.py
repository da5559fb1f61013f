"""
Domain DTOs -- frozen value objects passed between kernel, engines and services.

Responsibility:
    Immutable data carriers for movement deltas, ledger snapshots, batch
    consumption records, invoice lines, the tagged gift representation and
    settlement results.  ORM models convert to these at the service boundary
    so engines never see a Session or a mapped instance.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Imported by models/, services/,
    selectors/, stock_engines and stock_services.

Invariants enforced:
    - Quantities are Decimal; float input is rejected at construction.
    - A gift is exactly one of NONE, SAME_ITEM(qty) or DISTINCT_ITEM(item, qty).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from stock_kernel.db.types import ZERO, to_quantity


class DeliveryStatus(str, Enum):
    """Delivery state of a sales invoice."""

    NOT_DELIVERED = "not_delivered"
    PARTIAL = "partial"
    DELIVERED = "delivered"


class SettlementMode(str, Enum):
    """How batches are chosen for a settlement."""

    FULL = "full"  # FIFO over every owed quantity
    MANUAL = "manual"  # Caller names (batch, qty) pairs


class GiftKind(str, Enum):
    NONE = "none"
    SAME_ITEM = "same_item"
    DISTINCT_ITEM = "distinct_item"


def _coerce(obj: object, *names: str) -> None:
    for name in names:
        object.__setattr__(obj, name, to_quantity(getattr(obj, name)))


# =============================================================================
# Gifts
# =============================================================================


@dataclass(frozen=True, slots=True)
class GiftSpec:
    """
    Promotional free quantity attached to an invoice line.

    SAME_ITEM gifts are drawn from the main item's stock; DISTINCT_ITEM
    gifts are drawn from ``item_id``'s own stock and batches.
    """

    kind: GiftKind = GiftKind.NONE
    item_id: UUID | None = None
    quantity: Decimal = ZERO

    def __post_init__(self) -> None:
        _coerce(self, "quantity")
        if self.kind == GiftKind.NONE:
            if self.item_id is not None or self.quantity != ZERO:
                raise ValueError("A NONE gift carries no item and no quantity")
        elif self.kind == GiftKind.SAME_ITEM:
            if self.item_id is not None:
                raise ValueError("A SAME_ITEM gift must not name a gift item")
            if self.quantity <= ZERO:
                raise ValueError("Gift quantity must be positive")
        else:
            if self.item_id is None:
                raise ValueError("A DISTINCT_ITEM gift must name its item")
            if self.quantity <= ZERO:
                raise ValueError("Gift quantity must be positive")

    @classmethod
    def none(cls) -> GiftSpec:
        return cls()

    @classmethod
    def same_item(cls, quantity: Decimal | int | str) -> GiftSpec:
        return cls(kind=GiftKind.SAME_ITEM, quantity=to_quantity(quantity))

    @classmethod
    def distinct_item(
        cls, item_id: UUID, quantity: Decimal | int | str
    ) -> GiftSpec:
        return cls(
            kind=GiftKind.DISTINCT_ITEM,
            item_id=item_id,
            quantity=to_quantity(quantity),
        )

    def stock_item_id(self, main_item_id: UUID) -> UUID | None:
        """Item whose stock supplies the gift, or None when there is no gift."""
        if self.kind == GiftKind.SAME_ITEM:
            return main_item_id
        if self.kind == GiftKind.DISTINCT_ITEM:
            return self.item_id
        return None


# =============================================================================
# Ledger
# =============================================================================


@dataclass(frozen=True, slots=True)
class MovementDelta:
    """
    Signed increments applied to one ledger day.

    Positive values add to the day's accumulators; negative values are
    corrections.  Closing is always recomputed from the resulting totals.
    """

    incoming: Decimal = ZERO
    outgoing: Decimal = ZERO
    pending_outgoing: Decimal = ZERO
    incoming_gifts: Decimal = ZERO
    outgoing_gifts: Decimal = ZERO

    def __post_init__(self) -> None:
        _coerce(
            self,
            "incoming",
            "outgoing",
            "pending_outgoing",
            "incoming_gifts",
            "outgoing_gifts",
        )

    @classmethod
    def receipt(
        cls, quantity: Decimal | int | str, gifts: Decimal | int | str = ZERO
    ) -> MovementDelta:
        return cls(incoming=to_quantity(quantity), incoming_gifts=to_quantity(gifts))

    @classmethod
    def issue(
        cls, quantity: Decimal | int | str, gifts: Decimal | int | str = ZERO
    ) -> MovementDelta:
        return cls(outgoing=to_quantity(quantity), outgoing_gifts=to_quantity(gifts))

    @property
    def net(self) -> Decimal:
        """Effect of this delta on the closing balance."""
        return (
            self.incoming
            + self.incoming_gifts
            - self.outgoing
            - self.pending_outgoing
            - self.outgoing_gifts
        )

    @property
    def is_zero(self) -> bool:
        return (
            self.incoming == ZERO
            and self.outgoing == ZERO
            and self.pending_outgoing == ZERO
            and self.incoming_gifts == ZERO
            and self.outgoing_gifts == ZERO
        )

    def __add__(self, other: MovementDelta) -> MovementDelta:
        return MovementDelta(
            incoming=self.incoming + other.incoming,
            outgoing=self.outgoing + other.outgoing,
            pending_outgoing=self.pending_outgoing + other.pending_outgoing,
            incoming_gifts=self.incoming_gifts + other.incoming_gifts,
            outgoing_gifts=self.outgoing_gifts + other.outgoing_gifts,
        )


@dataclass(frozen=True, slots=True)
class StockMovementInfo:
    """Snapshot of one stored ledger row."""

    movement_id: UUID
    warehouse_id: UUID
    item_id: UUID
    movement_date: date
    opening_balance: Decimal
    incoming: Decimal
    outgoing: Decimal
    pending_outgoing: Decimal
    incoming_gifts: Decimal
    outgoing_gifts: Decimal
    closing_balance: Decimal

    @property
    def delta(self) -> MovementDelta:
        return MovementDelta(
            incoming=self.incoming,
            outgoing=self.outgoing,
            pending_outgoing=self.pending_outgoing,
            incoming_gifts=self.incoming_gifts,
            outgoing_gifts=self.outgoing_gifts,
        )


@dataclass(frozen=True, slots=True)
class PropagationResult:
    """Outcome of a forward cascade after a ledger write."""

    warehouse_id: UUID
    item_id: UUID
    from_date: date
    rows_examined: int
    rows_updated: int
    final_closing: Decimal | None = None


@dataclass(frozen=True, slots=True)
class PeriodBalances:
    """Opening and closing stock for a reporting window."""

    warehouse_id: UUID
    item_id: UUID
    start_date: date
    end_date: date
    opening_balance: Decimal
    closing_balance: Decimal
    total_incoming: Decimal
    total_outgoing: Decimal


# =============================================================================
# Batches
# =============================================================================


@dataclass(frozen=True, slots=True)
class BatchInfo:
    batch_id: UUID
    warehouse_id: UUID
    item_id: UUID
    quantity: Decimal
    received_quantity: Decimal
    received_at: datetime
    expiry_date: date | None = None
    receipt_id: UUID | None = None


@dataclass(frozen=True, slots=True)
class BatchConsumption:
    """Quantity taken from one batch by one allocation."""

    batch_id: UUID
    item_id: UUID
    quantity: Decimal
    remaining_after: Decimal


@dataclass(frozen=True, slots=True)
class AllocationResult:
    """All batch consumptions satisfying one allocation request."""

    warehouse_id: UUID
    item_id: UUID
    requested: Decimal
    consumptions: tuple[BatchConsumption, ...] = ()

    @property
    def total(self) -> Decimal:
        return sum((c.quantity for c in self.consumptions), ZERO)


@dataclass(frozen=True, slots=True)
class BatchAllocationRequest:
    """Caller-chosen (batch, quantity) pair for manual settlement."""

    batch_id: UUID
    quantity: Decimal

    def __post_init__(self) -> None:
        _coerce(self, "quantity")
        if self.quantity <= ZERO:
            raise ValueError("Allocation quantity must be positive")


# =============================================================================
# Invoices and settlement
# =============================================================================


@dataclass(frozen=True, slots=True)
class InvoiceLineInfo:
    invoice_item_id: UUID
    item_id: UUID
    quantity: Decimal
    gift: GiftSpec = field(default_factory=GiftSpec)

    def __post_init__(self) -> None:
        _coerce(self, "quantity")


@dataclass(frozen=True, slots=True)
class DeliveredLineInfo:
    """One historical delivery-item row (increment delivered by one event)."""

    invoice_item_id: UUID
    item_id: UUID
    quantity: Decimal
    gift_qty: Decimal = ZERO
    gift_item_id: UUID | None = None
    gift_quantity: Decimal = ZERO

    def __post_init__(self) -> None:
        _coerce(self, "quantity", "gift_qty", "gift_quantity")


@dataclass(frozen=True, slots=True)
class ManualDeliveryLine:
    """
    Manual settlement instruction for one invoice line.

    The line is identified by ``invoice_item_id`` or, when unambiguous,
    by ``item_id``.  ``allocations`` draw the main item (and any same-item
    gift); ``gift_allocations`` draw a distinct gift item.
    """

    invoice_item_id: UUID | None = None
    item_id: UUID | None = None
    allocations: tuple[BatchAllocationRequest, ...] = ()
    gift_allocations: tuple[BatchAllocationRequest, ...] = ()

    def __post_init__(self) -> None:
        if self.invoice_item_id is None and self.item_id is None:
            raise ValueError("A manual line needs invoice_item_id or item_id")
        object.__setattr__(self, "allocations", tuple(self.allocations))
        object.__setattr__(self, "gift_allocations", tuple(self.gift_allocations))
        if not self.allocations and not self.gift_allocations:
            raise ValueError("A manual line needs at least one batch allocation")


@dataclass(frozen=True, slots=True)
class DeliveredLine:
    """Increment settled on one invoice line by one delivery."""

    invoice_item_id: UUID
    item_id: UUID
    quantity: Decimal
    gift_qty: Decimal
    gift_item_id: UUID | None
    gift_quantity: Decimal
    consumptions: tuple[BatchConsumption, ...] = ()


@dataclass(frozen=True)
class SettlementResult:
    delivery_id: UUID
    invoice_id: UUID
    mode: SettlementMode
    status: DeliveryStatus
    lines: tuple[DeliveredLine, ...]
    consumed_by_item: Mapping[UUID, Decimal] = field(default_factory=dict)


# =============================================================================
# Receipts
# =============================================================================


@dataclass(frozen=True, slots=True)
class ReceiptLine:
    """One received line: paid quantity plus supplier gift, same item."""

    item_id: UUID
    quantity: Decimal
    gift_quantity: Decimal = ZERO
    expiry_date: date | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        _coerce(self, "quantity", "gift_quantity")
        if self.quantity < ZERO or self.gift_quantity < ZERO:
            raise ValueError("Receipt quantities must not be negative")
        if self.quantity + self.gift_quantity <= ZERO:
            raise ValueError("Receipt line must receive a positive quantity")

    @property
    def total(self) -> Decimal:
        return self.quantity + self.gift_quantity


@dataclass(frozen=True, slots=True)
class ReceiptResult:
    receipt_id: UUID
    warehouse_id: UUID
    received_at: datetime
    batches: tuple[BatchInfo, ...]
