"""
Module: stock_kernel.models.stock_batch
Responsibility: ORM models for receipt lots (StockBatch) and the cached
    per-(warehouse, item) total (InventoryStock).
Architecture position: Kernel > Models.  Warehouse, item and receipt are
    referenced by UUID with no foreign key.

Invariants enforced:
    - StockBatch.quantity never goes negative (check constraint).
    - Batches are decrement-only after creation; exhausted rows are kept.
    - InventoryStock is unique per (warehouse_id, item_id) and is only
      changed in the same transaction as the matching batch mutation.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Index,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base
from stock_kernel.db.types import ZERO
from stock_kernel.domain.dtos import BatchInfo


class StockBatch(Base):
    """
    A dated receipt lot with its remaining quantity.

    Guarantees:
        - received_quantity records what arrived; quantity is what remains.
        - expiry_date is optional; undated batches are consumed last.
    """

    __tablename__ = "stock_batches"

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="non_negative"),
        Index("idx_stock_batch_item", "warehouse_id", "item_id"),
        Index("idx_stock_batch_expiry", "expiry_date"),
        Index("idx_stock_batch_receipt", "receipt_id"),
    )

    warehouse_id: Mapped[UUID] = mapped_column()
    item_id: Mapped[UUID] = mapped_column()

    quantity: Mapped[Decimal] = mapped_column()
    received_quantity: Mapped[Decimal] = mapped_column()

    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    receipt_id: Mapped[UUID | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    def to_dto(self) -> BatchInfo:
        return BatchInfo(
            batch_id=self.id,
            warehouse_id=self.warehouse_id,
            item_id=self.item_id,
            quantity=self.quantity,
            received_quantity=self.received_quantity,
            received_at=self.received_at,
            expiry_date=self.expiry_date,
            receipt_id=self.receipt_id,
        )

    def __repr__(self) -> str:
        return (
            f"<StockBatch {self.id} item={self.item_id} qty={self.quantity} "
            f"expiry={self.expiry_date}>"
        )


class InventoryStock(Base):
    """Cached total quantity on hand for one (warehouse, item)."""

    __tablename__ = "inventory_stocks"

    __table_args__ = (
        UniqueConstraint("warehouse_id", "item_id", name="uq_inventory_stock_item"),
    )

    warehouse_id: Mapped[UUID] = mapped_column()
    item_id: Mapped[UUID] = mapped_column()
    quantity: Mapped[Decimal] = mapped_column(default=ZERO)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<InventoryStock {self.warehouse_id}/{self.item_id} qty={self.quantity}>"
