"""
StockReceiptService -- bring received goods into batches, aggregate and ledger.

Responsibility:
    For each received line create a dated batch holding quantity plus
    supplier gift, record the incoming movement on the receipt day and
    increment the aggregate stock.  Used by the procurement collaborator
    when a purchase is marked received.

Invariants enforced:
    - Batch sum and aggregate move together in one transaction.
    - A receipt is atomic across its lines (one SAVEPOINT).
    - The movement is recorded before the aggregate is incremented, so a
      first-ever ledger row bootstraps from pre-receipt stock and the
      receipt is not counted twice.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import BatchInfo, MovementDelta, ReceiptLine, ReceiptResult
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.stock_batch import StockBatch
from stock_kernel.services.inventory_stock_service import InventoryStockService
from stock_kernel.services.period_gate import PeriodGate, require_open_period
from stock_kernel.services.stock_movement_service import LedgerPolicy, StockMovementService

logger = get_logger("services.stock_receipt")


class StockReceiptService:
    """Receives goods into a warehouse."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        period_gate: PeriodGate | None = None,
        policy: LedgerPolicy | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._period_gate = period_gate
        self._stock = InventoryStockService(session)
        self._movements = StockMovementService(session, policy=policy, stock_service=self._stock)

    def receive(
        self,
        warehouse_id: UUID,
        lines: Sequence[ReceiptLine],
        *,
        received_at: datetime | None = None,
        receipt_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> ReceiptResult:
        """
        Receive ``lines`` into ``warehouse_id``.

        All lines land or none do: a failing line rolls back the earlier
        ones.

        Raises:
            BooksClosedError: The period gate reports closed.
            ValueError: No lines.
        """
        if not lines:
            raise ValueError("A receipt needs at least one line")
        require_open_period(self._period_gate, "receive_stock")

        received_at = received_at or self._clock.now()
        receipt_id = receipt_id or uuid4()
        batches: list[BatchInfo] = []

        with LogContext.bind(warehouse_id=warehouse_id, actor_id=actor_id):
            savepoint = self._session.begin_nested()
            try:
                for line in lines:
                    batches.append(self._receive_line(warehouse_id, line, received_at, receipt_id))
                savepoint.commit()
            except Exception as exc:
                savepoint.rollback()
                logger.warning(
                    "receipt_rejected",
                    extra={
                        "receipt_id": str(receipt_id),
                        "error_code": getattr(exc, "code", type(exc).__name__),
                        "error": str(exc),
                    },
                )
                raise

            logger.info(
                "stock_received",
                extra={
                    "receipt_id": str(receipt_id),
                    "line_count": len(lines),
                    "received_at": received_at.isoformat(),
                },
            )

        return ReceiptResult(
            receipt_id=receipt_id,
            warehouse_id=warehouse_id,
            received_at=received_at,
            batches=tuple(batches),
        )

    def _receive_line(
        self,
        warehouse_id: UUID,
        line: ReceiptLine,
        received_at: datetime,
        receipt_id: UUID,
    ) -> BatchInfo:
        self._movements.record_movement(
            warehouse_id,
            line.item_id,
            received_at,
            MovementDelta.receipt(line.quantity, line.gift_quantity),
        )
        batch = StockBatch(
            warehouse_id=warehouse_id,
            item_id=line.item_id,
            quantity=line.total,
            received_quantity=line.total,
            received_at=received_at,
            expiry_date=line.expiry_date,
            receipt_id=receipt_id,
            notes=line.notes,
        )
        self._session.add(batch)
        self._session.flush()
        self._stock.increment(warehouse_id, line.item_id, line.total)
        return batch.to_dto()
