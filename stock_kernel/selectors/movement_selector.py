"""
Module: stock_kernel.selectors.movement_selector
Responsibility: Read access to the stock movement ledger: literal stored rows
    for a date window, single-day lookup, full timeline, and opening/closing
    balances for a reporting period.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - get_stock_movements returns only stored rows, ascending by date.  Days
      without movements are not synthesized.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from stock_kernel.db.types import ZERO
from stock_kernel.domain.dtos import PeriodBalances, StockMovementInfo
from stock_kernel.models.stock_movement import StockMovement
from stock_kernel.selectors.base import BaseSelector


def _as_day(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


class MovementSelector(BaseSelector[StockMovement]):
    """Queries over stored ledger rows."""

    def _pair(self, warehouse_id: UUID, item_id: UUID):
        return (
            StockMovement.warehouse_id == warehouse_id,
            StockMovement.item_id == item_id,
        )

    def get_stock_movements(
        self,
        warehouse_id: UUID,
        item_id: UUID,
        start_date: date | datetime,
        end_date: date | datetime,
    ) -> list[StockMovementInfo]:
        """Stored rows with start_date <= day <= end_date, ascending."""
        rows = self.session.execute(
            select(StockMovement)
            .where(
                *self._pair(warehouse_id, item_id),
                StockMovement.movement_date >= _as_day(start_date),
                StockMovement.movement_date <= _as_day(end_date),
            )
            .order_by(StockMovement.movement_date.asc())
        ).scalars()
        return [r.to_dto() for r in rows]

    def get_movement(
        self, warehouse_id: UUID, item_id: UUID, day: date | datetime
    ) -> StockMovementInfo | None:
        row = self.session.execute(
            select(StockMovement).where(
                *self._pair(warehouse_id, item_id),
                StockMovement.movement_date == _as_day(day),
            )
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def timeline(self, warehouse_id: UUID, item_id: UUID) -> list[StockMovementInfo]:
        """Every stored row for the pair, ascending."""
        rows = self.session.execute(
            select(StockMovement)
            .where(*self._pair(warehouse_id, item_id))
            .order_by(StockMovement.movement_date.asc())
        ).scalars()
        return [r.to_dto() for r in rows]

    def latest_closing(
        self, warehouse_id: UUID, item_id: UUID, as_of: date | datetime | None = None
    ) -> Decimal | None:
        stmt = select(StockMovement.closing_balance).where(*self._pair(warehouse_id, item_id))
        if as_of is not None:
            stmt = stmt.where(StockMovement.movement_date <= _as_day(as_of))
        return self.session.execute(
            stmt.order_by(StockMovement.movement_date.desc()).limit(1)
        ).scalar_one_or_none()

    def tracked_pairs(self) -> list[tuple[UUID, UUID]]:
        """Distinct (warehouse_id, item_id) pairs with ledger rows."""
        return [
            (w, i)
            for w, i in self.session.execute(
                select(StockMovement.warehouse_id, StockMovement.item_id)
                .distinct()
                .order_by(StockMovement.warehouse_id, StockMovement.item_id)
            ).all()
        ]

    def period_balances(
        self,
        warehouse_id: UUID,
        item_id: UUID,
        start_date: date | datetime,
        end_date: date | datetime,
    ) -> PeriodBalances:
        """
        Opening and closing stock for a reporting window.

        Opening is the first in-window row's opening, else the latest closing
        before the window, else zero.  Closing is the latest closing on or
        before the window end, else the opening.
        """
        start = _as_day(start_date)
        end = _as_day(end_date)
        rows = self.get_stock_movements(warehouse_id, item_id, start, end)

        if rows:
            opening = rows[0].opening_balance
        else:
            before = self.session.execute(
                select(StockMovement.closing_balance)
                .where(
                    *self._pair(warehouse_id, item_id),
                    StockMovement.movement_date < start,
                )
                .order_by(StockMovement.movement_date.desc())
                .limit(1)
            ).scalar_one_or_none()
            opening = before if before is not None else ZERO

        closing = rows[-1].closing_balance if rows else opening

        totals = self.session.execute(
            select(
                func.coalesce(func.sum(StockMovement.incoming + StockMovement.incoming_gifts), 0),
                func.coalesce(
                    func.sum(
                        StockMovement.outgoing
                        + StockMovement.pending_outgoing
                        + StockMovement.outgoing_gifts
                    ),
                    0,
                ),
            ).where(
                *self._pair(warehouse_id, item_id),
                StockMovement.movement_date >= start,
                StockMovement.movement_date <= end,
            )
        ).one()

        return PeriodBalances(
            warehouse_id=warehouse_id,
            item_id=item_id,
            start_date=start,
            end_date=end,
            opening_balance=opening,
            closing_balance=closing,
            total_incoming=Decimal(str(totals[0])),
            total_outgoing=Decimal(str(totals[1])),
        )
