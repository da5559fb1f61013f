"""Tests for the aggregate stock service."""

from decimal import Decimal

import pytest

from stock_kernel.exceptions import InsufficientStockError
from stock_kernel.services.inventory_stock_service import InventoryStockService


@pytest.fixture
def stock(session):
    return InventoryStockService(session)


class TestInventoryStock:

    def test_missing_row_reads_zero(self, stock, warehouse_id, item_a):
        assert stock.get_quantity(warehouse_id, item_a) == Decimal("0")
        assert stock.lock(warehouse_id, item_a) is None

    def test_increment_creates_row(self, stock, warehouse_id, item_a):
        assert stock.increment(warehouse_id, item_a, Decimal("7")) == Decimal("7")
        assert stock.increment(warehouse_id, item_a, Decimal("3")) == Decimal("10")
        assert stock.get_quantity(warehouse_id, item_a) == Decimal("10")

    def test_decrement(self, stock, warehouse_id, item_a):
        stock.increment(warehouse_id, item_a, Decimal("10"))
        assert stock.decrement(warehouse_id, item_a, Decimal("4")) == Decimal("6")

    def test_decrement_below_zero_rejected(self, stock, warehouse_id, item_a):
        stock.increment(warehouse_id, item_a, Decimal("2"))
        with pytest.raises(InsufficientStockError) as exc_info:
            stock.decrement(warehouse_id, item_a, Decimal("3"))
        assert exc_info.value.shortfall == Decimal("1")
        assert stock.get_quantity(warehouse_id, item_a) == Decimal("2")

    def test_decrement_without_row(self, stock, warehouse_id, item_a):
        with pytest.raises(InsufficientStockError):
            stock.decrement(warehouse_id, item_a, Decimal("1"))

    def test_negative_amounts_rejected(self, stock, warehouse_id, item_a):
        with pytest.raises(ValueError):
            stock.increment(warehouse_id, item_a, Decimal("-1"))
        with pytest.raises(ValueError):
            stock.decrement(warehouse_id, item_a, Decimal("-1"))

    def test_set_quantity_returns_before_and_after(self, stock, warehouse_id, item_a):
        stock.increment(warehouse_id, item_a, Decimal("5"))
        assert stock.set_quantity(warehouse_id, item_a, Decimal("9")) == (Decimal("5"), Decimal("9"))
        assert stock.get_quantity(warehouse_id, item_a) == Decimal("9")
