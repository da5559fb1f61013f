"""
Tests for BatchAllocator.

Covers FIFO consumption order, all-or-nothing shortages and validation of
caller-chosen (batch, quantity) pairs.  The allocator never touches the
aggregate stock.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from stock_kernel.exceptions import InsufficientStockError, InvalidBatchReferenceError
from stock_kernel.services.batch_allocator import BatchAllocator
from stock_kernel.services.inventory_stock_service import InventoryStockService


def _at(day: int) -> datetime:
    return datetime(2024, 1, day, tzinfo=timezone.utc)


@pytest.fixture
def allocator(session):
    return BatchAllocator(session)


class TestAllocate:

    def test_oldest_receipt_first(self, allocator, make_batch, warehouse_id, item_a):
        b1 = make_batch(warehouse_id, item_a, 60, received_at=_at(1))
        b2 = make_batch(warehouse_id, item_a, 40, received_at=_at(5))

        result = allocator.allocate(warehouse_id, item_a, 70)

        assert [(c.batch_id, c.quantity) for c in result.consumptions] == [
            (b1.id, Decimal("60")),
            (b2.id, Decimal("10")),
        ]
        assert result.total == Decimal("70")
        assert b1.quantity == Decimal("0")
        assert b2.quantity == Decimal("30")

    def test_earliest_expiry_beats_earlier_receipt(self, allocator, make_batch, warehouse_id, item_a):
        undated = make_batch(warehouse_id, item_a, 10, received_at=_at(1))
        expiring = make_batch(warehouse_id, item_a, 10, received_at=_at(9), expiry_date=date(2024, 6, 1))

        result = allocator.allocate(warehouse_id, item_a, 5)

        assert result.consumptions[0].batch_id == expiring.id
        assert undated.quantity == Decimal("10")

    def test_shortage_changes_nothing(self, session, allocator, make_batch, warehouse_id, item_a, captured_logs):
        batch = make_batch(warehouse_id, item_a, 8)

        with pytest.raises(InsufficientStockError) as exc_info:
            allocator.allocate(warehouse_id, item_a, 10)

        assert exc_info.value.available == Decimal("8")
        assert exc_info.value.shortfall == Decimal("2")
        session.refresh(batch)
        assert batch.quantity == Decimal("8")
        assert any(r["message"] == "fifo_allocation_short" for r in captured_logs())

    def test_exhausted_batches_are_ignored(self, allocator, make_batch, warehouse_id, item_a):
        make_batch(warehouse_id, item_a, 0, received_at=_at(1))
        live = make_batch(warehouse_id, item_a, 5, received_at=_at(2))

        result = allocator.allocate(warehouse_id, item_a, 5)

        assert [c.batch_id for c in result.consumptions] == [live.id]

    def test_zero_requirement_is_noop(self, allocator, warehouse_id, item_a):
        result = allocator.allocate(warehouse_id, item_a, 0)
        assert result.consumptions == ()

    def test_negative_requirement(self, allocator, warehouse_id, item_a):
        with pytest.raises(ValueError):
            allocator.allocate(warehouse_id, item_a, -1)

    def test_aggregate_untouched(self, session, allocator, make_batch, warehouse_id, item_a):
        make_batch(warehouse_id, item_a, 20)
        allocator.allocate(warehouse_id, item_a, 5)
        assert InventoryStockService(session).get_quantity(warehouse_id, item_a) == Decimal("20")


class TestConsumeBatch:

    def test_consumes_named_batch(self, allocator, make_batch, warehouse_id, item_a):
        make_batch(warehouse_id, item_a, 10, received_at=_at(1))
        later = make_batch(warehouse_id, item_a, 10, received_at=_at(2))

        consumption = allocator.consume_batch(warehouse_id, item_a, later.id, 4)

        assert consumption.remaining_after == Decimal("6")
        assert later.quantity == Decimal("6")

    def test_more_than_batch_holds(self, allocator, make_batch, warehouse_id, item_a):
        batch = make_batch(warehouse_id, item_a, 3)
        with pytest.raises(InvalidBatchReferenceError) as exc_info:
            allocator.consume_batch(warehouse_id, item_a, batch.id, 5)
        assert "holds" in exc_info.value.reason

    def test_batch_of_other_item(self, allocator, make_batch, warehouse_id, item_a, item_b, captured_logs):
        batch = make_batch(warehouse_id, item_b, 3)
        with pytest.raises(InvalidBatchReferenceError):
            allocator.consume_batch(warehouse_id, item_a, batch.id, 1)
        assert any(r["message"] == "manual_batch_rejected" for r in captured_logs())

    def test_unknown_batch(self, allocator, warehouse_id, item_a):
        with pytest.raises(InvalidBatchReferenceError):
            allocator.consume_batch(warehouse_id, item_a, uuid4(), 1)

    def test_non_positive_quantity(self, allocator, make_batch, warehouse_id, item_a):
        batch = make_batch(warehouse_id, item_a, 3)
        with pytest.raises(ValueError):
            allocator.consume_batch(warehouse_id, item_a, batch.id, 0)
