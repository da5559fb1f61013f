"""
Module: stock_kernel.models.sales_invoice
Responsibility: ORM models for sales invoices and their lines as seen by the
    settlement engine.  The sales subsystem owns creation and pricing; the
    settlement engine reads lines and writes only ``delivery_status``.
Architecture position: Kernel > Models.  Customer, warehouse and items are
    referenced by UUID with no foreign key.

Invariants enforced:
    - Each line carries exactly one gift shape: gift_kind in
      {none, same_item, distinct_item}; gift_item_id is set only for
      distinct_item.
    - delivery_status is one of DeliveryStatus.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import Base, TrackedBase
from stock_kernel.db.types import ZERO
from stock_kernel.domain.dtos import (
    DeliveryStatus,
    GiftKind,
    GiftSpec,
    InvoiceLineInfo,
)


class SalesInvoice(TrackedBase):
    """Sales invoice header with payment gate and delivery status."""

    __tablename__ = "sales_invoices"

    __table_args__ = (
        Index("idx_sales_invoice_warehouse", "warehouse_id"),
        Index("idx_sales_invoice_status", "delivery_status"),
    )

    invoice_number: Mapped[str] = mapped_column(String(50), unique=True)
    warehouse_id: Mapped[UUID] = mapped_column()
    customer_id: Mapped[UUID] = mapped_column()

    payment_confirmed: Mapped[bool] = mapped_column(default=False)
    payment_confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payment_confirmed_by_id: Mapped[UUID | None] = mapped_column(nullable=True)

    delivery_status: Mapped[str] = mapped_column(
        String(20), default=DeliveryStatus.NOT_DELIVERED.value,
    )

    lines: Mapped[list[SalesInvoiceItem]] = relationship(
        back_populates="invoice",
        order_by="SalesInvoiceItem.line_number",
        cascade="all, delete-orphan",
    )

    @property
    def status(self) -> DeliveryStatus:
        return DeliveryStatus(self.delivery_status)

    def confirm_payment(self, actor_id: UUID, confirmed_at: datetime) -> None:
        """Open the settlement gate (normally done by the accounting side)."""
        self.payment_confirmed = True
        self.payment_confirmed_at = confirmed_at
        self.payment_confirmed_by_id = actor_id
        self.updated_by_id = actor_id

    def __repr__(self) -> str:
        return f"<SalesInvoice {self.invoice_number} {self.delivery_status}>"


class SalesInvoiceItem(Base):
    """One ordered line, optionally carrying a promotional gift."""

    __tablename__ = "sales_invoice_items"

    __table_args__ = (
        CheckConstraint(
            "gift_kind IN ('none', 'same_item', 'distinct_item')",
            name="gift_kind",
        ),
        Index("idx_sales_invoice_item_invoice", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("sales_invoices.id"))
    line_number: Mapped[int] = mapped_column()
    item_id: Mapped[UUID] = mapped_column()
    quantity: Mapped[Decimal] = mapped_column()

    gift_kind: Mapped[str] = mapped_column(String(20), default=GiftKind.NONE.value)
    gift_item_id: Mapped[UUID | None] = mapped_column(nullable=True)
    gift_quantity: Mapped[Decimal] = mapped_column(default=ZERO)

    invoice: Mapped[SalesInvoice] = relationship(back_populates="lines")

    @property
    def gift(self) -> GiftSpec:
        return GiftSpec(
            kind=GiftKind(self.gift_kind or GiftKind.NONE.value),
            item_id=self.gift_item_id,
            quantity=self.gift_quantity if self.gift_quantity is not None else ZERO,
        )

    @gift.setter
    def gift(self, spec: GiftSpec) -> None:
        self.gift_kind = spec.kind.value
        self.gift_item_id = spec.item_id
        self.gift_quantity = spec.quantity

    def to_dto(self) -> InvoiceLineInfo:
        return InvoiceLineInfo(
            invoice_item_id=self.id,
            item_id=self.item_id,
            quantity=self.quantity,
            gift=self.gift,
        )
