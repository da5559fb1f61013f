"""
Module: stock_kernel.selectors.delivery_selector
Responsibility: Delivery history for an invoice: the per-line increments
    used to derive owed quantities, and the batch trail of each delivery.
Architecture position: Kernel > Selectors.  Read-only.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.dtos import DeliveredLineInfo
from stock_kernel.models.delivery import (
    InventoryDelivery,
    InventoryDeliveryBatch,
    InventoryDeliveryItem,
)
from stock_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class DeliveryBatchTrail:
    delivery_id: UUID
    delivery_item_id: UUID
    batch_id: UUID
    item_id: UUID
    quantity: Decimal


@dataclass(frozen=True)
class DeliverySummary:
    delivery_id: UUID
    invoice_id: UUID
    mode: str
    delivered_at: datetime
    item_count: int


class DeliverySelector(BaseSelector[InventoryDelivery]):

    def delivered_lines(self, invoice_id: UUID) -> tuple[DeliveredLineInfo, ...]:
        rows = self.session.execute(
            select(InventoryDeliveryItem)
            .join(InventoryDelivery, InventoryDeliveryItem.delivery_id == InventoryDelivery.id)
            .where(InventoryDelivery.invoice_id == invoice_id)
        ).scalars()
        return tuple(r.to_dto() for r in rows)

    def deliveries_for_invoice(self, invoice_id: UUID) -> list[DeliverySummary]:
        deliveries = self.session.execute(
            select(InventoryDelivery)
            .where(InventoryDelivery.invoice_id == invoice_id)
            .order_by(InventoryDelivery.delivered_at.asc())
        ).scalars()
        return [
            DeliverySummary(
                delivery_id=d.id,
                invoice_id=d.invoice_id,
                mode=d.mode,
                delivered_at=d.delivered_at,
                item_count=len(d.items),
            )
            for d in deliveries
        ]

    def batch_trail(self, delivery_id: UUID) -> list[DeliveryBatchTrail]:
        rows = self.session.execute(
            select(InventoryDeliveryBatch, InventoryDeliveryItem.delivery_id)
            .join(
                InventoryDeliveryItem,
                InventoryDeliveryBatch.delivery_item_id == InventoryDeliveryItem.id,
            )
            .where(InventoryDeliveryItem.delivery_id == delivery_id)
        ).all()
        return [
            DeliveryBatchTrail(
                delivery_id=did,
                delivery_item_id=b.delivery_item_id,
                batch_id=b.batch_id,
                item_id=b.item_id,
                quantity=b.quantity,
            )
            for b, did in rows
        ]
