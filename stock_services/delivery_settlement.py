"""
DeliverySettlementOrchestrator -- settle sales-invoice deliveries against batches.

Responsibility:
    Turn "deliver what is owed on invoice X" into batch consumption,
    aggregate decrements, append-only delivery records and a new invoice
    delivery status, as one atomic unit.

Architecture position:
    Services -- orchestrates kernel services (BatchAllocator,
    InventoryStockService), selectors (DeliverySelector) and the pure
    ``stock_engines.owed`` engine.  The stock movement ledger is not
    written here; collaborators record movements separately.

Invariants enforced:
    - Per-invoice serialization: the invoice row (or a PostgreSQL advisory
      lock keyed by the invoice id) is locked before owed quantities are
      derived, so a concurrent second settlement sees the first one's
      deliveries.
    - All-or-nothing: the whole settlement runs in a SAVEPOINT; any error
      rolls back batches, aggregates, delivery rows and status.
    - Delivery items store only this event's increment.
    - Same-item gifts draw from the main item's batches in the same
      allocation; distinct-item gifts draw from the gift item's batches.
    - One aggregate decrement per item per settlement.

Failure modes:
    - InvoiceNotFoundError, BooksClosedError, PaymentNotConfirmedError,
      AlreadySettledError (shared preconditions, in that order).
    - InsufficientStockError (full mode), InvalidBatchReferenceError,
      InvoiceLineNotFoundError, OverDeliveryError (manual mode).

Audit relevance:
    ``settlement_completed`` / ``settlement_rejected`` log records carry the
    invoice, mode, delivery id and error code.  Delivery batch rows give the
    exact batch trail of every delivered unit.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.orm import Session

from stock_config.schema import LockStrategy
from stock_engines.owed import (
    LineOwed,
    compute_owed,
    delivery_status,
    is_fully_settled,
    split_main_quantity,
)
from stock_kernel.db.engine import is_postgres
from stock_kernel.db.types import ZERO
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import (
    AllocationResult,
    BatchConsumption,
    DeliveredLine,
    DeliveredLineInfo,
    GiftKind,
    ManualDeliveryLine,
    SettlementMode,
    SettlementResult,
)
from stock_kernel.exceptions import (
    AlreadySettledError,
    InsufficientStockError,
    InvoiceLineNotFoundError,
    InvoiceNotFoundError,
    OverDeliveryError,
    PaymentNotConfirmedError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.delivery import (
    InventoryDelivery,
    InventoryDeliveryBatch,
    InventoryDeliveryItem,
)
from stock_kernel.models.sales_invoice import SalesInvoice
from stock_kernel.selectors.delivery_selector import DeliverySelector
from stock_kernel.services.batch_allocator import BatchAllocator
from stock_kernel.services.inventory_stock_service import InventoryStockService
from stock_kernel.services.period_gate import PeriodGate, require_open_period

logger = get_logger("services.delivery_settlement")


def advisory_lock_key(invoice_id: UUID) -> int:
    """Signed 64-bit key for pg_advisory_xact_lock derived from the invoice id."""
    return int.from_bytes(invoice_id.bytes[:8], "big", signed=True)


class DeliverySettlementOrchestrator:
    """
    Settles full or manual deliveries for sales invoices.

    Contract:
        Runs inside the caller's transaction (flush only; the SAVEPOINT it
        opens is released on success).  The caller commits.

    Non-goals:
        - Does not confirm payments or open the books.
        - Does not write the stock movement ledger.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        period_gate: PeriodGate | None = None,
        lock_strategy: LockStrategy | str = LockStrategy.ROW,
        allocator: BatchAllocator | None = None,
        stock_service: InventoryStockService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._period_gate = period_gate
        self._lock_strategy = LockStrategy(lock_strategy)
        self._allocator = allocator or BatchAllocator(session)
        self._stock = stock_service or InventoryStockService(session)
        self._deliveries = DeliverySelector(session)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def settle_full(
        self, invoice_id: UUID, *, actor_id: UUID, notes: str | None = None
    ) -> SettlementResult:
        """Deliver everything still owed, choosing batches FIFO."""
        return self.settle_delivery(
            invoice_id, SettlementMode.FULL, actor_id=actor_id, notes=notes
        )

    def settle_manual(
        self,
        invoice_id: UUID,
        lines: Sequence[ManualDeliveryLine],
        *,
        actor_id: UUID,
        notes: str | None = None,
    ) -> SettlementResult:
        """Deliver caller-chosen quantities from caller-chosen batches."""
        return self.settle_delivery(
            invoice_id, SettlementMode.MANUAL, lines, actor_id=actor_id, notes=notes
        )

    def settle_delivery(
        self,
        invoice_id: UUID,
        mode: SettlementMode | str,
        lines: Sequence[ManualDeliveryLine] | None = None,
        *,
        actor_id: UUID,
        notes: str | None = None,
    ) -> SettlementResult:
        """
        Settle one delivery event for ``invoice_id``.

        Preconditions:
            MANUAL mode requires at least one line.

        Postconditions:
            On success a delivery record exists, batches and aggregates are
            decremented by exactly the delivered quantities and the invoice
            status is DELIVERED or PARTIAL.  On failure nothing changed.
        """
        mode = SettlementMode(mode)
        if mode == SettlementMode.MANUAL and not lines:
            raise ValueError("Manual settlement requires at least one line")

        with LogContext.bind(invoice_id=invoice_id, actor_id=actor_id):
            savepoint = self._session.begin_nested()
            try:
                result = self._settle(invoice_id, mode, lines or (), actor_id, notes)
                savepoint.commit()
            except Exception as exc:
                savepoint.rollback()
                logger.warning(
                    "settlement_rejected",
                    extra={
                        "mode": mode.value,
                        "error_code": getattr(exc, "code", type(exc).__name__),
                        "error": str(exc),
                    },
                )
                raise

            logger.info(
                "settlement_completed",
                extra={
                    "mode": mode.value,
                    "delivery_id": str(result.delivery_id),
                    "status": result.status.value,
                    "lines_delivered": len(result.lines),
                    "consumed_by_item": {
                        str(k): str(v) for k, v in result.consumed_by_item.items()
                    },
                },
            )
            return result

    def get_owed(self, invoice_id: UUID) -> tuple[LineOwed, ...]:
        """Per-line owed breakdown (read-only)."""
        invoice = self._session.get(SalesInvoice, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return compute_owed(
            lines=[line.to_dto() for line in invoice.lines],
            history=self._deliveries.delivered_lines(invoice_id),
        )

    # ------------------------------------------------------------------
    # Settlement core
    # ------------------------------------------------------------------

    def _lock_invoice(self, invoice_id: UUID) -> SalesInvoice:
        stmt = select(SalesInvoice).where(SalesInvoice.id == invoice_id)
        if self._lock_strategy == LockStrategy.ADVISORY and is_postgres(self._session):
            self._session.execute(
                text("SELECT pg_advisory_xact_lock(:key)"),
                {"key": advisory_lock_key(invoice_id)},
            )
        else:
            stmt = stmt.with_for_update()
        invoice = self._session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    def _settle(
        self,
        invoice_id: UUID,
        mode: SettlementMode,
        lines: Sequence[ManualDeliveryLine],
        actor_id: UUID,
        notes: str | None,
    ) -> SettlementResult:
        invoice = self._lock_invoice(invoice_id)
        require_open_period(self._period_gate, "settle_delivery")
        if not invoice.payment_confirmed:
            raise PaymentNotConfirmedError(invoice_id)

        invoice_lines = [line.to_dto() for line in invoice.lines]
        history = self._deliveries.delivered_lines(invoice_id)
        owed = compute_owed(lines=invoice_lines, history=history)
        if is_fully_settled(owed):
            raise AlreadySettledError(invoice_id)

        delivery = InventoryDelivery(
            invoice_id=invoice_id,
            warehouse_id=invoice.warehouse_id,
            mode=mode.value,
            delivered_at=self._clock.now(),
            notes=notes,
            created_by_id=actor_id,
        )
        self._session.add(delivery)

        consumed: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        if mode == SettlementMode.FULL:
            delivered = self._deliver_full(invoice, owed, delivery, consumed)
        else:
            delivered = self._deliver_manual(invoice, owed, lines, delivery, consumed)

        for item_id, quantity in consumed.items():
            self._stock.decrement(invoice.warehouse_id, item_id, quantity)

        new_history = tuple(history) + tuple(
            DeliveredLineInfo(
                invoice_item_id=d.invoice_item_id,
                item_id=d.item_id,
                quantity=d.quantity,
                gift_qty=d.gift_qty,
                gift_item_id=d.gift_item_id,
                gift_quantity=d.gift_quantity,
            )
            for d in delivered
        )
        status = delivery_status(compute_owed(lines=invoice_lines, history=new_history))
        invoice.delivery_status = status.value
        invoice.updated_by_id = actor_id
        self._session.flush()

        return SettlementResult(
            delivery_id=delivery.id,
            invoice_id=invoice_id,
            mode=mode,
            status=status,
            lines=tuple(delivered),
            consumed_by_item=dict(consumed),
        )

    def _available(self, warehouse_id: UUID, item_id: UUID, already_consumed: Decimal) -> Decimal:
        stock = self._stock.lock(warehouse_id, item_id)
        on_hand = stock.quantity if stock is not None else ZERO
        return on_hand - already_consumed

    def _allocate_checked(
        self,
        warehouse_id: UUID,
        item_id: UUID,
        quantity: Decimal,
        consumed: dict[UUID, Decimal],
    ) -> AllocationResult:
        available = self._available(warehouse_id, item_id, consumed[item_id])
        if available < quantity:
            raise InsufficientStockError(
                item_id=item_id,
                warehouse_id=warehouse_id,
                required=quantity,
                available=max(available, ZERO),
            )
        allocation = self._allocator.allocate(warehouse_id, item_id, quantity)
        consumed[item_id] += quantity
        return allocation

    def _deliver_full(
        self,
        invoice: SalesInvoice,
        owed: Sequence[LineOwed],
        delivery: InventoryDelivery,
        consumed: dict[UUID, Decimal],
    ) -> list[DeliveredLine]:
        warehouse_id = invoice.warehouse_id
        delivered: list[DeliveredLine] = []
        for line in owed:
            if line.is_settled:
                continue

            consumptions: list[BatchConsumption] = []
            main_need = line.main_stock_need
            if main_need > ZERO:
                allocation = self._allocate_checked(warehouse_id, line.item_id, main_need, consumed)
                consumptions.extend(allocation.consumptions)

            gift_need = line.distinct_gift_need
            if gift_need > ZERO:
                allocation = self._allocate_checked(warehouse_id, line.gift.item_id, gift_need, consumed)
                consumptions.extend(allocation.consumptions)

            main_part, same_gift = split_main_quantity(line, main_need)
            delivered.append(
                self._record_line(delivery, line, main_part, same_gift, gift_need, consumptions)
            )
        return delivered

    def _resolve_line(
        self,
        invoice_id: UUID,
        owed: Sequence[LineOwed],
        manual: ManualDeliveryLine,
    ) -> LineOwed:
        if manual.invoice_item_id is not None:
            matches = [l for l in owed if l.invoice_item_id == manual.invoice_item_id]
            reference = f"line {manual.invoice_item_id}"
        else:
            matches = [l for l in owed if l.item_id == manual.item_id]
            reference = f"item {manual.item_id}"
        if len(matches) != 1:
            raise InvoiceLineNotFoundError(invoice_id, reference)
        return matches[0]

    def _deliver_manual(
        self,
        invoice: SalesInvoice,
        owed: Sequence[LineOwed],
        lines: Sequence[ManualDeliveryLine],
        delivery: InventoryDelivery,
        consumed: dict[UUID, Decimal],
    ) -> list[DeliveredLine]:
        warehouse_id = invoice.warehouse_id

        # Several instructions may target the same invoice line.
        grouped: dict[UUID, tuple[LineOwed, list, list]] = {}
        for manual in lines:
            line = self._resolve_line(invoice.id, owed, manual)
            _, main_reqs, gift_reqs = grouped.setdefault(line.invoice_item_id, (line, [], []))
            main_reqs.extend(manual.allocations)
            gift_reqs.extend(manual.gift_allocations)

        delivered: list[DeliveredLine] = []
        for line, main_reqs, gift_reqs in grouped.values():
            main_total = sum((r.quantity for r in main_reqs), ZERO)
            gift_total = sum((r.quantity for r in gift_reqs), ZERO)

            if main_total > line.main_stock_need:
                raise OverDeliveryError(invoice.id, line.item_id, main_total, line.main_stock_need)
            if gift_reqs and line.gift.kind != GiftKind.DISTINCT_ITEM:
                raise OverDeliveryError(invoice.id, line.item_id, gift_total, ZERO)
            if gift_total > line.distinct_gift_need:
                raise OverDeliveryError(
                    invoice.id, line.gift.item_id, gift_total, line.distinct_gift_need
                )

            consumptions: list[BatchConsumption] = []
            for req in main_reqs:
                consumptions.append(
                    self._allocator.consume_batch(warehouse_id, line.item_id, req.batch_id, req.quantity)
                )
                consumed[line.item_id] += req.quantity
            for req in gift_reqs:
                consumptions.append(
                    self._allocator.consume_batch(warehouse_id, line.gift.item_id, req.batch_id, req.quantity)
                )
                consumed[line.gift.item_id] += req.quantity

            main_part, same_gift = split_main_quantity(line, main_total)
            delivered.append(
                self._record_line(delivery, line, main_part, same_gift, gift_total, consumptions)
            )
        return delivered

    def _record_line(
        self,
        delivery: InventoryDelivery,
        line: LineOwed,
        quantity: Decimal,
        same_gift: Decimal,
        distinct_gift: Decimal,
        consumptions: Sequence[BatchConsumption],
    ) -> DeliveredLine:
        gift_item_id = line.gift.item_id if distinct_gift > ZERO else None
        item = InventoryDeliveryItem(
            invoice_item_id=line.invoice_item_id,
            item_id=line.item_id,
            quantity=quantity,
            gift_qty=same_gift,
            gift_item_id=gift_item_id,
            gift_quantity=distinct_gift,
        )
        for c in consumptions:
            item.batches.append(
                InventoryDeliveryBatch(batch_id=c.batch_id, item_id=c.item_id, quantity=c.quantity)
            )
        delivery.items.append(item)
        self._session.flush()
        return DeliveredLine(
            invoice_item_id=line.invoice_item_id,
            item_id=line.item_id,
            quantity=quantity,
            gift_qty=same_gift,
            gift_item_id=gift_item_id,
            gift_quantity=distinct_gift,
            consumptions=tuple(consumptions),
        )
