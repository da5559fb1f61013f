"""
Tests for the read-only selectors.

- MovementSelector: stored rows only, ascending; period balances.
- BatchSelector: FIFO order of available batches, totals, known pairs.
- DeliverySelector: history and batch trail after a settlement.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from stock_kernel.domain.dtos import MovementDelta
from stock_kernel.selectors.batch_selector import BatchSelector
from stock_kernel.selectors.delivery_selector import DeliverySelector
from stock_kernel.selectors.movement_selector import MovementSelector
from stock_kernel.services.period_gate import StaticPeriodGate
from stock_kernel.services.stock_movement_service import LedgerPolicy, StockMovementService
from stock_services import DeliverySettlementOrchestrator


@pytest.fixture
def ledger(session, warehouse_id, item_a):
    """Rows on Jan 2, Jan 5 and Jan 9 only."""
    recorder = StockMovementService(session, policy=LedgerPolicy(bootstrap_from_aggregate=False))
    recorder.record_movement(warehouse_id, item_a, date(2024, 1, 2), MovementDelta.receipt("50", "5"))
    recorder.record_movement(warehouse_id, item_a, date(2024, 1, 5), MovementDelta.issue("20"))
    recorder.record_movement(warehouse_id, item_a, date(2024, 1, 9), MovementDelta.issue("10", "2"))
    return recorder


class TestMovementSelector:

    def test_range_returns_stored_days_only(self, session, ledger, warehouse_id, item_a):
        rows = MovementSelector(session).get_stock_movements(
            warehouse_id, item_a, date(2024, 1, 1), date(2024, 1, 6),
        )
        assert [r.movement_date for r in rows] == [date(2024, 1, 2), date(2024, 1, 5)]

    def test_range_accepts_timestamps(self, session, ledger, warehouse_id, item_a):
        rows = MovementSelector(session).get_stock_movements(
            warehouse_id, item_a,
            datetime(2024, 1, 5, 8, tzinfo=timezone.utc),
            datetime(2024, 1, 9, 8, tzinfo=timezone.utc),
        )
        assert len(rows) == 2

    def test_latest_closing(self, session, ledger, warehouse_id, item_a):
        selector = MovementSelector(session)
        assert selector.latest_closing(warehouse_id, item_a) == Decimal("23")
        assert selector.latest_closing(warehouse_id, item_a, as_of=date(2024, 1, 6)) == Decimal("35")
        assert selector.latest_closing(warehouse_id, item_a, as_of=date(2024, 1, 1)) is None

    def test_period_balances_inside_window(self, session, ledger, warehouse_id, item_a):
        balances = MovementSelector(session).period_balances(
            warehouse_id, item_a, date(2024, 1, 3), date(2024, 1, 31),
        )
        assert balances.opening_balance == Decimal("55")
        assert balances.closing_balance == Decimal("23")
        assert balances.total_incoming == Decimal("0")
        assert balances.total_outgoing == Decimal("32")

    def test_period_balances_empty_window(self, session, ledger, warehouse_id, item_a):
        balances = MovementSelector(session).period_balances(
            warehouse_id, item_a, date(2024, 1, 6), date(2024, 1, 8),
        )
        assert balances.opening_balance == Decimal("35")
        assert balances.closing_balance == Decimal("35")

    def test_tracked_pairs(self, session, ledger, warehouse_id, item_a):
        assert MovementSelector(session).tracked_pairs() == [(warehouse_id, item_a)]


class TestBatchSelector:

    def test_available_in_consumption_order(self, session, make_batch, warehouse_id, item_a):
        old = make_batch(warehouse_id, item_a, 5, received_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        dated = make_batch(
            warehouse_id, item_a, 5,
            received_at=datetime(2024, 1, 3, tzinfo=timezone.utc),
            expiry_date=date(2024, 12, 31),
        )
        make_batch(warehouse_id, item_a, 0)

        selector = BatchSelector(session)

        assert [b.batch_id for b in selector.available_batches(warehouse_id, item_a)] == [dated.id, old.id]
        assert len(selector.list_batches(warehouse_id, item_a, include_empty=True)) == 3
        assert selector.batch_total(warehouse_id, item_a) == Decimal("10")
        assert selector.get_batch(old.id).quantity == Decimal("5")

    def test_stock_pairs_union(self, session, make_batch, make_stock, warehouse_id, item_a, item_b):
        make_batch(warehouse_id, item_a, 1)
        make_stock(warehouse_id, item_b, 2)

        pairs = BatchSelector(session).stock_pairs()

        assert sorted(pairs) == sorted([(warehouse_id, item_a), (warehouse_id, item_b)])


class TestDeliverySelector:

    def test_history_and_trail(
        self, session, make_batch, make_invoice, warehouse_id, item_a, test_actor_id,
    ):
        make_batch(warehouse_id, item_a, 4, received_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        make_batch(warehouse_id, item_a, 10, received_at=datetime(2024, 1, 2, tzinfo=timezone.utc))
        invoice = make_invoice(warehouse_id, [(item_a, 6)])
        result = DeliverySettlementOrchestrator(
            session, period_gate=StaticPeriodGate(),
        ).settle_full(invoice.id, actor_id=test_actor_id)

        selector = DeliverySelector(session)
        (summary,) = selector.deliveries_for_invoice(invoice.id)
        (line,) = selector.delivered_lines(invoice.id)
        trail = selector.batch_trail(result.delivery_id)

        assert summary.delivery_id == result.delivery_id
        assert summary.item_count == 1
        assert line.quantity == Decimal("6")
        assert sorted(t.quantity for t in trail) == [Decimal("2"), Decimal("4")]
