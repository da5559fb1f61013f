"""
Module: stock_kernel.models.delivery
Responsibility: Append-only settlement records.  A delivery is one settlement
    event for an invoice; each delivery item is the increment settled on one
    invoice line; each delivery batch row records which batch supplied how
    much of which item.
Architecture position: Kernel > Models.

Invariants enforced:
    - Delivery items carry only the increment of their own event, never a
      running total.  Owed quantities are derived by summing them.
    - Delivery batch rows for a delivery item sum to quantity + gift_qty for
      the main item and to gift_quantity for a distinct gift item.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import Base, TrackedBase
from stock_kernel.db.types import ZERO
from stock_kernel.domain.dtos import DeliveredLineInfo


class InventoryDelivery(TrackedBase):
    """One settlement event against a sales invoice."""

    __tablename__ = "inventory_deliveries"

    __table_args__ = (
        Index("idx_inventory_delivery_invoice", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("sales_invoices.id"))
    warehouse_id: Mapped[UUID] = mapped_column()
    mode: Mapped[str] = mapped_column(String(20))
    delivered_at: Mapped[datetime] = mapped_column()
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    items: Mapped[list[InventoryDeliveryItem]] = relationship(
        back_populates="delivery",
        cascade="all, delete-orphan",
    )


class InventoryDeliveryItem(Base):
    """Increment delivered on one invoice line by one delivery."""

    __tablename__ = "inventory_delivery_items"

    __table_args__ = (
        Index("idx_inventory_delivery_item_delivery", "delivery_id"),
        Index("idx_inventory_delivery_item_line", "invoice_item_id"),
    )

    delivery_id: Mapped[UUID] = mapped_column(ForeignKey("inventory_deliveries.id"))
    invoice_item_id: Mapped[UUID] = mapped_column(ForeignKey("sales_invoice_items.id"))
    item_id: Mapped[UUID] = mapped_column()
    quantity: Mapped[Decimal] = mapped_column(default=ZERO)

    # Same-item gift delivered with the main item
    gift_qty: Mapped[Decimal] = mapped_column(default=ZERO)
    # Distinct gift item delivered from its own stock
    gift_item_id: Mapped[UUID | None] = mapped_column(nullable=True)
    gift_quantity: Mapped[Decimal] = mapped_column(default=ZERO)

    delivery: Mapped[InventoryDelivery] = relationship(back_populates="items")
    batches: Mapped[list[InventoryDeliveryBatch]] = relationship(
        back_populates="delivery_item",
        cascade="all, delete-orphan",
    )

    def to_dto(self) -> DeliveredLineInfo:
        return DeliveredLineInfo(
            invoice_item_id=self.invoice_item_id,
            item_id=self.item_id,
            quantity=self.quantity,
            gift_qty=self.gift_qty,
            gift_item_id=self.gift_item_id,
            gift_quantity=self.gift_quantity,
        )


class InventoryDeliveryBatch(Base):
    """Quantity of one item drawn from one batch for one delivery item."""

    __tablename__ = "inventory_delivery_batches"

    __table_args__ = (
        Index("idx_inventory_delivery_batch_item", "delivery_item_id"),
        Index("idx_inventory_delivery_batch_batch", "batch_id"),
    )

    delivery_item_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_delivery_items.id")
    )
    batch_id: Mapped[UUID] = mapped_column(ForeignKey("stock_batches.id"))
    item_id: Mapped[UUID] = mapped_column()
    quantity: Mapped[Decimal] = mapped_column()

    delivery_item: Mapped[InventoryDeliveryItem] = relationship(back_populates="batches")
