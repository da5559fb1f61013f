"""
Module: stock_kernel.models.stock_movement
Responsibility: ORM model for the day-indexed stock movement ledger.  One row
    per (warehouse, item, calendar day) holding the day's opening balance, the
    five movement accumulators and the derived closing balance.
Architecture position: Kernel > Models.  Warehouse and item are owned by the
    master-data subsystem and referenced by UUID with no foreign key.

Invariants enforced:
    - Uniqueness of (warehouse_id, item_id, movement_date).
    - closing = opening + incoming + incoming_gifts - outgoing
      - pending_outgoing - outgoing_gifts (maintained by StockMovementService;
      ``recompute_closing`` is the only place the formula is applied to a row).

Failure modes:
    - IntegrityError on a concurrent insert of the same day row.  The
      movement service retries such collisions as updates.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, TimestampMixin
from stock_kernel.db.types import ZERO
from stock_kernel.domain.dtos import MovementDelta, StockMovementInfo


class StockMovement(TimestampMixin, Base):
    """
    One ledger day for one (warehouse, item).

    Guarantees:
        - All balances are Decimal (Numeric(38,9)).
        - opening_balance is only changed by a forward cascade or repair.
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        UniqueConstraint(
            "warehouse_id", "item_id", "movement_date",
            name="uq_stock_movement_day",
        ),
        Index("idx_stock_movement_date", "movement_date"),
    )

    warehouse_id: Mapped[UUID] = mapped_column()
    item_id: Mapped[UUID] = mapped_column()
    movement_date: Mapped[date] = mapped_column(Date)

    opening_balance: Mapped[Decimal] = mapped_column(default=ZERO)
    incoming: Mapped[Decimal] = mapped_column(default=ZERO)
    outgoing: Mapped[Decimal] = mapped_column(default=ZERO)
    pending_outgoing: Mapped[Decimal] = mapped_column(default=ZERO)
    incoming_gifts: Mapped[Decimal] = mapped_column(default=ZERO)
    outgoing_gifts: Mapped[Decimal] = mapped_column(default=ZERO)
    closing_balance: Mapped[Decimal] = mapped_column(default=ZERO)

    @property
    def delta(self) -> MovementDelta:
        """The day's accumulated movements as a delta."""
        return MovementDelta(
            incoming=self.incoming or ZERO,
            outgoing=self.outgoing or ZERO,
            pending_outgoing=self.pending_outgoing or ZERO,
            incoming_gifts=self.incoming_gifts or ZERO,
            outgoing_gifts=self.outgoing_gifts or ZERO,
        )

    def apply_delta(self, delta: MovementDelta) -> None:
        """Add signed increments to the accumulators and recompute closing."""
        self.incoming = (self.incoming or ZERO) + delta.incoming
        self.outgoing = (self.outgoing or ZERO) + delta.outgoing
        self.pending_outgoing = (self.pending_outgoing or ZERO) + delta.pending_outgoing
        self.incoming_gifts = (self.incoming_gifts or ZERO) + delta.incoming_gifts
        self.outgoing_gifts = (self.outgoing_gifts or ZERO) + delta.outgoing_gifts
        self.recompute_closing()

    def recompute_closing(self) -> Decimal:
        self.closing_balance = (self.opening_balance or ZERO) + self.delta.net
        return self.closing_balance

    def to_dto(self) -> StockMovementInfo:
        return StockMovementInfo(
            movement_id=self.id,
            warehouse_id=self.warehouse_id,
            item_id=self.item_id,
            movement_date=self.movement_date,
            opening_balance=self.opening_balance,
            incoming=self.incoming,
            outgoing=self.outgoing,
            pending_outgoing=self.pending_outgoing,
            incoming_gifts=self.incoming_gifts,
            outgoing_gifts=self.outgoing_gifts,
            closing_balance=self.closing_balance,
        )

    def __repr__(self) -> str:
        return (
            f"<StockMovement {self.warehouse_id}/{self.item_id} "
            f"{self.movement_date}: {self.opening_balance} -> {self.closing_balance}>"
        )
