"""
Module: stock_kernel.selectors.batch_selector
Responsibility: Read access to stock batches and their totals, and the list
    of (warehouse, item) pairs known to either batches or the aggregate.
Architecture position: Kernel > Selectors.  Read-only.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, union

from stock_kernel.domain.dtos import BatchInfo
from stock_kernel.models.stock_batch import InventoryStock, StockBatch
from stock_kernel.selectors.base import BaseSelector
from stock_engines.fifo import BatchCandidate, order_for_consumption


class BatchSelector(BaseSelector[StockBatch]):

    def list_batches(
        self, warehouse_id: UUID, item_id: UUID, include_empty: bool = False
    ) -> list[BatchInfo]:
        stmt = select(StockBatch).where(
            StockBatch.warehouse_id == warehouse_id,
            StockBatch.item_id == item_id,
        )
        if not include_empty:
            stmt = stmt.where(StockBatch.quantity > 0)
        rows = self.session.execute(stmt.order_by(StockBatch.received_at.asc())).scalars()
        return [r.to_dto() for r in rows]

    def available_batches(self, warehouse_id: UUID, item_id: UUID) -> list[BatchInfo]:
        """Non-empty batches in the order FIFO allocation would consume them."""
        batches = {b.batch_id: b for b in self.list_batches(warehouse_id, item_id)}
        ordered = order_for_consumption(
            BatchCandidate(
                batch_id=b.batch_id,
                quantity=b.quantity,
                received_at=b.received_at,
                expiry_date=b.expiry_date,
            )
            for b in batches.values()
        )
        return [batches[c.batch_id] for c in ordered]

    def get_batch(self, batch_id: UUID) -> BatchInfo | None:
        batch = self.session.get(StockBatch, batch_id)
        return batch.to_dto() if batch is not None else None

    def batch_total(self, warehouse_id: UUID, item_id: UUID) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(StockBatch.quantity), 0)).where(
                StockBatch.warehouse_id == warehouse_id,
                StockBatch.item_id == item_id,
            )
        ).scalar_one()
        return Decimal(str(total))

    def stock_pairs(self) -> list[tuple[UUID, UUID]]:
        """Every (warehouse_id, item_id) present in batches or the aggregate."""
        pairs = union(
            select(StockBatch.warehouse_id, StockBatch.item_id),
            select(InventoryStock.warehouse_id, InventoryStock.item_id),
        ).subquery()
        rows = self.session.execute(
            select(pairs.c.warehouse_id, pairs.c.item_id).order_by(
                pairs.c.warehouse_id, pairs.c.item_id
            )
        ).all()
        return [(UUID(str(w)), UUID(str(i))) for w, i in rows]
