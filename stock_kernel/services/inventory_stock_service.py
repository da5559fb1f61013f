"""
InventoryStockService -- the cached aggregate quantity per (warehouse, item).

Responsibility:
    Locked reads and increments/decrements of ``InventoryStock`` rows.
    Callers change the aggregate in the same transaction as the matching
    batch mutation; this service never touches batches itself.

Invariants enforced:
    - Rows are read with SELECT ... FOR UPDATE before mutation.
    - The aggregate never goes negative through ``decrement``.
    - First-time row creation races are retried via SAVEPOINT.

Failure modes:
    - InsufficientStockError when a decrement exceeds the cached quantity.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from stock_kernel.db.types import ZERO
from stock_kernel.exceptions import InsufficientStockError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.stock_batch import InventoryStock
from stock_kernel.services.base import BaseService

logger = get_logger("services.inventory_stock")


class InventoryStockService(BaseService[InventoryStock]):
    """Locked access to the aggregate stock view."""

    def _select_locked(self, warehouse_id: UUID, item_id: UUID) -> InventoryStock | None:
        return self.session.execute(
            select(InventoryStock)
            .where(
                InventoryStock.warehouse_id == warehouse_id,
                InventoryStock.item_id == item_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_quantity(self, warehouse_id: UUID, item_id: UUID) -> Decimal:
        """Current cached quantity; zero when no row exists."""
        quantity = self.session.execute(
            select(InventoryStock.quantity).where(
                InventoryStock.warehouse_id == warehouse_id,
                InventoryStock.item_id == item_id,
            )
        ).scalar_one_or_none()
        return quantity if quantity is not None else ZERO

    def lock(
        self,
        warehouse_id: UUID,
        item_id: UUID,
        create: bool = False,
    ) -> InventoryStock | None:
        """Lock the row, optionally creating it at zero."""
        stock = self._select_locked(warehouse_id, item_id)
        if stock is not None or not create:
            return stock

        savepoint = self.session.begin_nested()
        try:
            stock = InventoryStock(warehouse_id=warehouse_id, item_id=item_id, quantity=ZERO)
            self.session.add(stock)
            self.session.flush()
            savepoint.commit()
            return stock
        except IntegrityError:
            savepoint.rollback()
            logger.debug(
                "inventory_stock_create_race_retry",
                extra={"warehouse_id": str(warehouse_id), "item_id": str(item_id)},
            )
            return self._select_locked(warehouse_id, item_id)

    def increment(self, warehouse_id: UUID, item_id: UUID, quantity: Decimal) -> Decimal:
        if quantity < ZERO:
            raise ValueError(f"Increment must not be negative: {quantity}")
        stock = self.lock(warehouse_id, item_id, create=True)
        stock.quantity = stock.quantity + quantity
        self.session.flush()
        logger.debug(
            "inventory_stock_incremented",
            extra={
                "warehouse_id": str(warehouse_id),
                "item_id": str(item_id),
                "quantity": str(quantity),
                "new_quantity": str(stock.quantity),
            },
        )
        return stock.quantity

    def decrement(self, warehouse_id: UUID, item_id: UUID, quantity: Decimal) -> Decimal:
        """
        Reduce the cached quantity.

        Raises:
            InsufficientStockError: If the row is missing or holds less.
        """
        if quantity < ZERO:
            raise ValueError(f"Decrement must not be negative: {quantity}")
        stock = self.lock(warehouse_id, item_id)
        available = stock.quantity if stock is not None else ZERO
        if available < quantity:
            raise InsufficientStockError(
                item_id=item_id,
                warehouse_id=warehouse_id,
                required=quantity,
                available=available,
            )
        if quantity == ZERO:
            return available
        stock.quantity = available - quantity
        self.session.flush()
        logger.debug(
            "inventory_stock_decremented",
            extra={
                "warehouse_id": str(warehouse_id),
                "item_id": str(item_id),
                "quantity": str(quantity),
                "new_quantity": str(stock.quantity),
            },
        )
        return stock.quantity

    def set_quantity(
        self,
        warehouse_id: UUID,
        item_id: UUID,
        quantity: Decimal,
    ) -> tuple[Decimal, Decimal]:
        """Overwrite the cached quantity (reconciliation only). Returns (before, after)."""
        stock = self.lock(warehouse_id, item_id, create=True)
        before = stock.quantity
        stock.quantity = quantity
        self.session.flush()
        return before, quantity
