"""
BatchAllocator -- FIFO consumption of dated stock batches.

Responsibility:
    Lock the candidate batches of one (warehouse, item), plan consumption
    with ``stock_engines.fifo`` and apply the plan.  Also validates and
    applies caller-chosen (batch, quantity) pairs for manual settlement.

Architecture position:
    Kernel > Services.  Used by the delivery settlement orchestrator.

Invariants enforced:
    - Consumption order: earliest expiry first, undated last, then earliest
      receipt.
    - All-or-nothing: a shortage raises before any batch is modified.
    - Batch quantities never go negative.
    - The aggregate stock is NOT touched here; callers decrement it in the
      same transaction.

Failure modes:
    - InsufficientStockError(item, warehouse, required, available).
    - InvalidBatchReferenceError for a manual pair naming a missing batch,
      a batch of another warehouse/item, or more than it holds.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from stock_kernel.db.types import ZERO, to_quantity
from stock_kernel.domain.dtos import AllocationResult, BatchConsumption
from stock_kernel.exceptions import InsufficientStockError, InvalidBatchReferenceError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.stock_batch import StockBatch
from stock_kernel.services.base import BaseService
from stock_engines.fifo import BatchCandidate, plan_fifo_consumption

logger = get_logger("services.batch_allocator")


class BatchAllocator(BaseService[StockBatch]):
    """
    FIFO and manual batch consumption.

    Contract:
        Flushes within the caller's transaction.

    Non-goals:
        Does not maintain InventoryStock or the movement ledger.
    """

    def _lock_candidates(self, warehouse_id: UUID, item_id: UUID) -> list[StockBatch]:
        return list(
            self.session.execute(
                select(StockBatch)
                .where(
                    StockBatch.warehouse_id == warehouse_id,
                    StockBatch.item_id == item_id,
                    StockBatch.quantity > 0,
                )
                .order_by(StockBatch.received_at.asc())
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def allocate(
        self,
        warehouse_id: UUID,
        item_id: UUID,
        required_qty: Decimal | int | str,
    ) -> AllocationResult:
        """
        Consume ``required_qty`` from the item's batches in FIFO order.

        Returns:
            AllocationResult listing each batch consumed, in consumption order.

        Raises:
            InsufficientStockError: Batches cannot cover the requirement.
            ValueError: Negative requirement.
        """
        required = to_quantity(required_qty)
        if required < ZERO:
            raise ValueError(f"Required quantity must not be negative: {required}")
        if required == ZERO:
            return AllocationResult(warehouse_id=warehouse_id, item_id=item_id, requested=required)

        batches = self._lock_candidates(warehouse_id, item_id)
        plan = plan_fifo_consumption(
            candidates=[
                BatchCandidate(
                    batch_id=b.id,
                    quantity=b.quantity,
                    received_at=b.received_at,
                    expiry_date=b.expiry_date,
                )
                for b in batches
            ],
            required=required,
        )

        if not plan.is_satisfied:
            logger.warning(
                "fifo_allocation_short",
                extra={
                    "warehouse_id": str(warehouse_id),
                    "item_id": str(item_id),
                    "required": str(required),
                    "available": str(plan.available),
                    "shortfall": str(plan.shortfall),
                },
            )
            raise InsufficientStockError(
                item_id=item_id,
                warehouse_id=warehouse_id,
                required=required,
                available=plan.available,
            )

        by_id = {b.id: b for b in batches}
        consumptions: list[BatchConsumption] = []
        for take in plan.takes:
            batch = by_id[take.batch_id]
            batch.quantity = take.remaining_after
            consumptions.append(
                BatchConsumption(
                    batch_id=take.batch_id,
                    item_id=item_id,
                    quantity=take.quantity,
                    remaining_after=take.remaining_after,
                )
            )
        self.session.flush()

        logger.info(
            "fifo_allocation_completed",
            extra={
                "warehouse_id": str(warehouse_id),
                "item_id": str(item_id),
                "required": str(required),
                "batches_consumed": len(consumptions),
            },
        )
        return AllocationResult(
            warehouse_id=warehouse_id,
            item_id=item_id,
            requested=required,
            consumptions=tuple(consumptions),
        )

    def consume_batch(
        self,
        warehouse_id: UUID,
        item_id: UUID,
        batch_id: UUID,
        quantity: Decimal | int | str,
    ) -> BatchConsumption:
        """
        Consume an explicit quantity from one named batch.

        Raises:
            InvalidBatchReferenceError: Unknown batch, wrong warehouse/item,
                or not enough remaining.
        """
        qty = to_quantity(quantity)
        if qty <= ZERO:
            raise ValueError(f"Batch quantity must be positive: {qty}")

        batch = self.session.execute(
            select(StockBatch)
            .where(StockBatch.id == batch_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        reason = None
        if batch is None:
            reason = "batch does not exist"
        elif batch.warehouse_id != warehouse_id:
            reason = f"batch belongs to warehouse {batch.warehouse_id}"
        elif batch.item_id != item_id:
            reason = f"batch holds item {batch.item_id}"
        elif batch.quantity < qty:
            reason = f"batch holds {batch.quantity}, requested {qty}"
        if reason is not None:
            logger.warning(
                "manual_batch_rejected",
                extra={"batch_id": str(batch_id), "reason": reason},
            )
            raise InvalidBatchReferenceError(
                batch_id=batch_id,
                warehouse_id=warehouse_id,
                item_id=item_id,
                reason=reason,
            )

        batch.quantity = batch.quantity - qty
        self.session.flush()
        return BatchConsumption(
            batch_id=batch_id,
            item_id=item_id,
            quantity=qty,
            remaining_after=batch.quantity,
        )
