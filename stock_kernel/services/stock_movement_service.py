"""
StockMovementService -- the Movement Recorder for the day-indexed ledger.

Responsibility:
    Apply a signed movement delta to the ledger row of one
    (warehouse, item, day), creating the row with the correct opening
    balance when needed, then cascade the change forward to every later
    day so chain continuity holds again.

Architecture position:
    Kernel > Services -- imperative shell around ``stock_engines.ledger``.

Invariants enforced:
    - closing = opening + incoming + incoming_gifts - outgoing
      - pending_outgoing - outgoing_gifts on every row written.
    - opening(next row) == closing(previous row) after every write.
    - A new row opens at the latest earlier closing; with no earlier row it
      bootstraps from the aggregate stock quantity (see LedgerPolicy).
    - Rows are locked (SELECT ... FOR UPDATE) before mutation; a concurrent
      first insert of the same day is retried as an update.

Failure modes:
    - InvalidMovementError for a malformed day.
    - PropagationLimitError when the cascade would exceed the configured
      bound; raised before any row is changed.
    - BooksClosedError when an injected period gate reports closed.

Audit relevance:
    Every write logs ``movement_recorded`` and ``propagation_completed``
    with the row counts touched.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import exists, func, select
from sqlalchemy.exc import IntegrityError

from stock_kernel.db.types import ZERO, to_quantity
from stock_kernel.domain.dtos import MovementDelta, PropagationResult, StockMovementInfo
from stock_kernel.exceptions import InvalidMovementError, PropagationLimitError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.stock_batch import InventoryStock
from stock_kernel.models.stock_movement import StockMovement
from stock_kernel.services.base import BaseService
from stock_kernel.services.inventory_stock_service import InventoryStockService
from stock_kernel.services.period_gate import PeriodGate, require_open_period
from stock_engines.ledger import LedgerDay, replay

logger = get_logger("services.stock_movement")


@dataclass(frozen=True)
class LedgerPolicy:
    """Tunables for opening bootstrap and cascade bounds."""

    bootstrap_from_aggregate: bool = True
    propagation_warn_rows: int = 366
    propagation_max_rows: int | None = None


def movement_day(value: date | datetime) -> date:
    """Normalize a timestamp or date to the ledger's calendar-day key."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raise InvalidMovementError(f"movement day must be a date, got {type(value).__name__}")


def _to_ledger_day(row: StockMovement) -> LedgerDay:
    return LedgerDay(
        movement_date=row.movement_date,
        opening_balance=row.opening_balance,
        delta=row.delta,
        closing_balance=row.closing_balance,
    )


class StockMovementService(BaseService[StockMovement]):
    """
    Records movements and keeps the ledger chain continuous.

    Contract:
        Flushes within the caller's transaction; never commits.

    Non-goals:
        Does not touch batches or the aggregate stock.
    """

    def __init__(
        self,
        session,
        policy: LedgerPolicy | None = None,
        period_gate: PeriodGate | None = None,
        stock_service: InventoryStockService | None = None,
    ):
        super().__init__(session)
        self._policy = policy or LedgerPolicy()
        self._period_gate = period_gate
        self._stock = stock_service or InventoryStockService(session)

    # ------------------------------------------------------------------
    # Reads used while writing
    # ------------------------------------------------------------------

    def _lock_day(self, warehouse_id: UUID, item_id: UUID, day: date) -> StockMovement | None:
        return self.session.execute(
            select(StockMovement)
            .where(
                StockMovement.warehouse_id == warehouse_id,
                StockMovement.item_id == item_id,
                StockMovement.movement_date == day,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _closing_at_or_before(
        self, warehouse_id: UUID, item_id: UUID, day: date, inclusive: bool
    ) -> Decimal | None:
        date_filter = (
            StockMovement.movement_date <= day
            if inclusive
            else StockMovement.movement_date < day
        )
        return self.session.execute(
            select(StockMovement.closing_balance)
            .where(
                StockMovement.warehouse_id == warehouse_id,
                StockMovement.item_id == item_id,
                date_filter,
            )
            .order_by(StockMovement.movement_date.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _count_after(self, warehouse_id: UUID, item_id: UUID, day: date) -> int:
        return self.session.execute(
            select(func.count(StockMovement.id)).where(
                StockMovement.warehouse_id == warehouse_id,
                StockMovement.item_id == item_id,
                StockMovement.movement_date > day,
            )
        ).scalar_one()

    def _check_cascade_bound(
        self, warehouse_id: UUID, item_id: UUID, day: date, row_count: int
    ) -> None:
        max_rows = self._policy.propagation_max_rows
        if max_rows is not None and row_count > max_rows:
            logger.warning(
                "propagation_limit_exceeded",
                extra={
                    "from_date": day.isoformat(),
                    "row_count": row_count,
                    "max_rows": max_rows,
                },
            )
            raise PropagationLimitError(
                warehouse_id=warehouse_id,
                item_id=item_id,
                from_date=day.isoformat(),
                row_count=row_count,
                max_rows=max_rows,
            )

    def opening_balance_for(self, warehouse_id: UUID, item_id: UUID, day: date | datetime) -> Decimal:
        """
        Opening balance a new row for ``day`` would receive.

        The closing of the latest row strictly before the day; with none,
        the aggregate stock quantity (or zero when bootstrap is disabled).
        """
        key = movement_day(day)
        previous = self._closing_at_or_before(warehouse_id, item_id, key, inclusive=False)
        if previous is not None:
            return previous
        if not self._policy.bootstrap_from_aggregate:
            return ZERO
        quantity = self._stock.get_quantity(warehouse_id, item_id)
        logger.warning(
            "ledger_opening_bootstrapped",
            extra={
                "movement_date": key.isoformat(),
                "source": "inventory_stock",
                "opening_balance": str(quantity),
            },
        )
        return quantity

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _create_day(
        self,
        warehouse_id: UUID,
        item_id: UUID,
        day: date,
        opening: Decimal,
        delta: MovementDelta,
    ) -> tuple[StockMovement, bool]:
        """Insert the day row in a SAVEPOINT; on a unique collision return the winner's row."""
        savepoint = self.session.begin_nested()
        try:
            row = StockMovement(
                warehouse_id=warehouse_id,
                item_id=item_id,
                movement_date=day,
                opening_balance=opening,
                incoming=ZERO,
                outgoing=ZERO,
                pending_outgoing=ZERO,
                incoming_gifts=ZERO,
                outgoing_gifts=ZERO,
            )
            row.apply_delta(delta)
            self.session.add(row)
            self.session.flush()
            savepoint.commit()
            return row, True
        except IntegrityError:
            savepoint.rollback()
            logger.debug(
                "movement_day_create_race_retry",
                extra={"movement_date": day.isoformat()},
            )
            return self._lock_day(warehouse_id, item_id, day), False

    def record_movement(
        self,
        warehouse_id: UUID,
        item_id: UUID,
        day: date | datetime,
        delta: MovementDelta,
    ) -> StockMovementInfo:
        """
        Apply ``delta`` to the ledger day and cascade forward.

        Preconditions:
            Caller holds an open transaction.

        Postconditions:
            The day row satisfies the closing formula and every later row
            opens at its predecessor's closing.

        Returns:
            Snapshot of the written day row.
        """
        require_open_period(self._period_gate, "record_movement")
        key = movement_day(day)

        with LogContext.bind(warehouse_id=warehouse_id, item_id=item_id):
            self._check_cascade_bound(
                warehouse_id, item_id, key, self._count_after(warehouse_id, item_id, key)
            )

            row = self._lock_day(warehouse_id, item_id, key)
            created = False
            if row is None:
                opening = self.opening_balance_for(warehouse_id, item_id, key)
                row, created = self._create_day(warehouse_id, item_id, key, opening, delta)
            if not created:
                row.apply_delta(delta)
                self.session.flush()

            logger.info(
                "movement_recorded",
                extra={
                    "movement_date": key.isoformat(),
                    "row_created": created,
                    "delta_net": str(delta.net),
                    "opening_balance": str(row.opening_balance),
                    "closing_balance": str(row.closing_balance),
                },
            )

            self.propagate_forward(warehouse_id, item_id, key)
            return row.to_dto()

    def propagate_forward(
        self,
        warehouse_id: UUID,
        item_id: UUID,
        from_day: date | datetime,
    ) -> PropagationResult:
        """
        Re-chain every row after ``from_day``.

        Each later row opens at its predecessor's closing and its closing is
        recomputed from its own stored movements.  Only changed rows are
        written.  Safe to call on its own (e.g. after a repair).
        """
        key = movement_day(from_day)
        rows = list(
            self.session.execute(
                select(StockMovement)
                .where(
                    StockMovement.warehouse_id == warehouse_id,
                    StockMovement.item_id == item_id,
                    StockMovement.movement_date > key,
                )
                .order_by(StockMovement.movement_date.asc())
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )

        start = self._closing_at_or_before(warehouse_id, item_id, key, inclusive=True)
        if not rows or start is None:
            return PropagationResult(
                warehouse_id=warehouse_id,
                item_id=item_id,
                from_date=key,
                rows_examined=len(rows),
                rows_updated=0,
                final_closing=rows[-1].closing_balance if rows else start,
            )

        self._check_cascade_bound(warehouse_id, item_id, key, len(rows))
        if len(rows) > self._policy.propagation_warn_rows:
            logger.warning(
                "propagation_large_cascade",
                extra={"from_date": key.isoformat(), "row_count": len(rows)},
            )

        plan = replay(opening=start, days=[_to_ledger_day(r) for r in rows])
        by_date = {r.movement_date: r for r in rows}
        for update in plan.updates:
            target = by_date[update.movement_date]
            target.opening_balance = update.opening_balance
            target.closing_balance = update.closing_balance
        if plan.updates:
            self.session.flush()

        logger.info(
            "propagation_completed",
            extra={
                "from_date": key.isoformat(),
                "rows_examined": len(rows),
                "rows_updated": len(plan.updates),
            },
        )
        return PropagationResult(
            warehouse_id=warehouse_id,
            item_id=item_id,
            from_date=key,
            rows_examined=len(rows),
            rows_updated=len(plan.updates),
            final_closing=plan.final_closing,
        )

    def initialize_stock_movement(
        self,
        warehouse_id: UUID,
        item_id: UUID,
        quantity: Decimal | int | str,
        day: date | datetime,
    ) -> bool:
        """
        Seed a zero-movement row (opening = closing = quantity) for ``day``.

        Returns False without changes when the pair already has a row on or
        before ``day``: such a day opens from the previous closing, never
        from a seeded quantity.  Later rows are re-chained by propagation.
        """
        key = movement_day(day)
        quantity = to_quantity(quantity)
        if self._lock_day(warehouse_id, item_id, key) is not None:
            return False
        if self._closing_at_or_before(warehouse_id, item_id, key, inclusive=False) is not None:
            logger.info(
                "movement_initialize_skipped",
                extra={
                    "warehouse_id": str(warehouse_id),
                    "item_id": str(item_id),
                    "movement_date": key.isoformat(),
                },
            )
            return False

        _, created = self._create_day(warehouse_id, item_id, key, quantity, MovementDelta())
        if created:
            logger.info(
                "movement_initialized",
                extra={
                    "warehouse_id": str(warehouse_id),
                    "item_id": str(item_id),
                    "movement_date": key.isoformat(),
                    "quantity": str(quantity),
                },
            )
            self.propagate_forward(warehouse_id, item_id, key)
        return created

    def initialize_all(self, day: date | datetime) -> tuple[StockMovementInfo, ...]:
        """Seed ``day`` from the aggregate for every pair with no ledger rows at all."""
        key = movement_day(day)
        has_rows = exists().where(
            StockMovement.warehouse_id == InventoryStock.warehouse_id,
            StockMovement.item_id == InventoryStock.item_id,
        )
        pending = self.session.execute(
            select(InventoryStock.warehouse_id, InventoryStock.item_id, InventoryStock.quantity)
            .where(~has_rows)
            .order_by(InventoryStock.warehouse_id, InventoryStock.item_id)
        ).all()

        created: list[StockMovementInfo] = []
        for warehouse_id, item_id, quantity in pending:
            if self.initialize_stock_movement(warehouse_id, item_id, quantity, key):
                row = self._lock_day(warehouse_id, item_id, key)
                created.append(row.to_dto())

        logger.info(
            "movement_bulk_initialized",
            extra={"movement_date": key.isoformat(), "rows_created": len(created)},
        )
        return tuple(created)
