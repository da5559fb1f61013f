"""
Tests for DeliverySettlementOrchestrator.

Covers:
- Full settlement across batches in FIFO order
- Same-item and distinct-item gifts
- Preconditions: invoice, books open, payment, already settled
- All-or-nothing rollback on shortage
- Manual settlement, partial then complete
- Manual validation errors
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from stock_kernel.domain.dtos import (
    BatchAllocationRequest,
    DeliveryStatus,
    GiftSpec,
    ManualDeliveryLine,
    SettlementMode,
)
from stock_kernel.exceptions import (
    AlreadySettledError,
    BooksClosedError,
    InsufficientStockError,
    InvalidBatchReferenceError,
    InvoiceLineNotFoundError,
    InvoiceNotFoundError,
    OverDeliveryError,
    PaymentNotConfirmedError,
)
from stock_kernel.selectors.batch_selector import BatchSelector
from stock_kernel.selectors.delivery_selector import DeliverySelector
from stock_kernel.services.inventory_stock_service import InventoryStockService
from stock_kernel.services.period_gate import StaticPeriodGate
from stock_services.delivery_settlement import (
    DeliverySettlementOrchestrator,
    advisory_lock_key,
)

JAN_1 = datetime(2024, 1, 1, tzinfo=timezone.utc)
FEB_1 = datetime(2024, 2, 1, tzinfo=timezone.utc)


@pytest.fixture
def period_gate():
    return StaticPeriodGate(is_open=True)


@pytest.fixture
def orchestrator(session, deterministic_clock, period_gate):
    return DeliverySettlementOrchestrator(
        session, deterministic_clock, period_gate=period_gate,
    )


def _qty(session, warehouse_id, item_id):
    return InventoryStockService(session).get_quantity(warehouse_id, item_id)


def _manual(item_id=None, invoice_item_id=None, allocations=(), gifts=()):
    return ManualDeliveryLine(
        invoice_item_id=invoice_item_id,
        item_id=item_id,
        allocations=tuple(BatchAllocationRequest(b, Decimal(q)) for b, q in allocations),
        gift_allocations=tuple(BatchAllocationRequest(b, Decimal(q)) for b, q in gifts),
    )


class TestFullSettlement:

    def test_spans_batches_fifo(
        self, session, orchestrator, make_batch, make_invoice, warehouse_id, item_a, test_actor_id,
    ):
        b1 = make_batch(warehouse_id, item_a, 60, received_at=JAN_1)
        b2 = make_batch(warehouse_id, item_a, 40, received_at=FEB_1)
        invoice = make_invoice(warehouse_id, [(item_a, 70)])

        result = orchestrator.settle_full(invoice.id, actor_id=test_actor_id)

        assert result.status == DeliveryStatus.DELIVERED
        assert result.mode == SettlementMode.FULL
        assert BatchSelector(session).get_batch(b1.id).quantity == Decimal("0")
        assert BatchSelector(session).get_batch(b2.id).quantity == Decimal("30")
        assert _qty(session, warehouse_id, item_a) == Decimal("30")

        (line,) = result.lines
        assert line.quantity == Decimal("70")
        assert result.consumed_by_item == {item_a: Decimal("70")}

        deliveries = DeliverySelector(session).deliveries_for_invoice(invoice.id)
        assert len(deliveries) == 1
        assert deliveries[0].item_count == 1
        trail = DeliverySelector(session).batch_trail(result.delivery_id)
        assert sorted((t.batch_id, t.quantity) for t in trail) == sorted(
            [(b1.id, Decimal("60")), (b2.id, Decimal("10"))]
        )

        session.refresh(invoice)
        assert invoice.status == DeliveryStatus.DELIVERED

    def test_expiry_order_beats_receipt_order(
        self, session, orchestrator, make_batch, make_invoice, warehouse_id, item_a, test_actor_id,
    ):
        # The batch expiring first was received last.
        b1 = make_batch(warehouse_id, item_a, 60, received_at=FEB_1, expiry_date=date(2024, 1, 10))
        b2 = make_batch(warehouse_id, item_a, 40, received_at=JAN_1, expiry_date=date(2024, 2, 10))
        assert _qty(session, warehouse_id, item_a) == Decimal("100")
        invoice = make_invoice(warehouse_id, [(item_a, 70)])

        result = orchestrator.settle_full(invoice.id, actor_id=test_actor_id)

        assert BatchSelector(session).get_batch(b1.id).quantity == Decimal("0")
        assert BatchSelector(session).get_batch(b2.id).quantity == Decimal("30")
        assert _qty(session, warehouse_id, item_a) == Decimal("30")

        selector = DeliverySelector(session)
        assert len(selector.deliveries_for_invoice(invoice.id)) == 1
        (line,) = selector.delivered_lines(invoice.id)
        assert line.quantity == Decimal("70")
        trail = selector.batch_trail(result.delivery_id)
        assert sorted((t.batch_id, t.quantity) for t in trail) == sorted(
            [(b1.id, Decimal("60")), (b2.id, Decimal("10"))]
        )

    def test_earliest_expiry_consumed_first(
        self, session, orchestrator, make_batch, make_invoice, warehouse_id, item_a, test_actor_id,
    ):
        old = make_batch(warehouse_id, item_a, 10, received_at=JAN_1)
        expiring = make_batch(warehouse_id, item_a, 10, received_at=FEB_1, expiry_date=date(2024, 4, 1))
        invoice = make_invoice(warehouse_id, [(item_a, 5)])

        orchestrator.settle_full(invoice.id, actor_id=test_actor_id)

        assert BatchSelector(session).get_batch(expiring.id).quantity == Decimal("5")
        assert BatchSelector(session).get_batch(old.id).quantity == Decimal("10")

    def test_distinct_item_gift(
        self, session, orchestrator, make_batch, make_invoice,
        warehouse_id, item_a, item_b, test_actor_id,
    ):
        make_batch(warehouse_id, item_a, 20)
        make_batch(warehouse_id, item_b, 10)
        invoice = make_invoice(
            warehouse_id, [(item_a, 10, GiftSpec.distinct_item(item_b, 5))],
        )

        result = orchestrator.settle_full(invoice.id, actor_id=test_actor_id)

        assert _qty(session, warehouse_id, item_a) == Decimal("10")
        assert _qty(session, warehouse_id, item_b) == Decimal("5")
        (line,) = result.lines
        assert line.quantity == Decimal("10")
        assert line.gift_item_id == item_b
        assert line.gift_quantity == Decimal("5")
        assert line.gift_qty == Decimal("0")

    def test_same_item_gift_drawn_from_main_batches(
        self, session, orchestrator, make_batch, make_invoice, warehouse_id, item_a, test_actor_id,
    ):
        make_batch(warehouse_id, item_a, 20)
        invoice = make_invoice(warehouse_id, [(item_a, 10, GiftSpec.same_item(2))])

        result = orchestrator.settle_full(invoice.id, actor_id=test_actor_id)

        assert _qty(session, warehouse_id, item_a) == Decimal("8")
        (line,) = result.lines
        assert line.quantity == Decimal("10")
        assert line.gift_qty == Decimal("2")
        assert line.gift_item_id is None

    def test_one_decrement_per_item_across_lines(
        self, session, orchestrator, make_batch, make_invoice, warehouse_id, item_a, test_actor_id,
    ):
        make_batch(warehouse_id, item_a, 10)
        invoice = make_invoice(warehouse_id, [(item_a, 4), (item_a, 6)])

        result = orchestrator.settle_full(invoice.id, actor_id=test_actor_id)

        assert len(result.lines) == 2
        assert result.consumed_by_item == {item_a: Decimal("10")}
        assert _qty(session, warehouse_id, item_a) == Decimal("0")

    def test_combined_need_checked_against_aggregate(
        self, session, orchestrator, make_batch, make_invoice, warehouse_id, item_a, test_actor_id,
    ):
        make_batch(warehouse_id, item_a, 10)
        invoice = make_invoice(warehouse_id, [(item_a, 6), (item_a, 6)])

        with pytest.raises(InsufficientStockError) as exc_info:
            orchestrator.settle_full(invoice.id, actor_id=test_actor_id)

        assert exc_info.value.required == Decimal("6")
        assert exc_info.value.available == Decimal("4")
        session.expire_all()
        assert _qty(session, warehouse_id, item_a) == Decimal("10")

    def test_logs_completion(
        self, orchestrator, make_batch, make_invoice, warehouse_id, item_a, test_actor_id, captured_logs,
    ):
        make_batch(warehouse_id, item_a, 5)
        invoice = make_invoice(warehouse_id, [(item_a, 5)])

        orchestrator.settle_full(invoice.id, actor_id=test_actor_id)

        records = [r for r in captured_logs() if r["message"] == "settlement_completed"]
        assert len(records) == 1
        assert records[0]["invoice_id"] == str(invoice.id)
        assert records[0]["status"] == "delivered"


class TestPreconditions:

    def test_unknown_invoice(self, orchestrator, test_actor_id):
        with pytest.raises(InvoiceNotFoundError):
            orchestrator.settle_full(uuid4(), actor_id=test_actor_id)

    def test_payment_not_confirmed(
        self, session, orchestrator, make_batch, make_invoice, warehouse_id, item_a, test_actor_id,
    ):
        make_batch(warehouse_id, item_a, 10)
        invoice = make_invoice(warehouse_id, [(item_a, 5)], paid=False)

        with pytest.raises(PaymentNotConfirmedError):
            orchestrator.settle_full(invoice.id, actor_id=test_actor_id)
        session.expire_all()
        assert _qty(session, warehouse_id, item_a) == Decimal("10")

    def test_books_closed(
        self, orchestrator, period_gate, make_batch, make_invoice, warehouse_id, item_a, test_actor_id,
    ):
        make_batch(warehouse_id, item_a, 10)
        invoice = make_invoice(warehouse_id, [(item_a, 5)])
        period_gate.close()

        with pytest.raises(BooksClosedError):
            orchestrator.settle_full(invoice.id, actor_id=test_actor_id)

    def test_second_settlement_rejected(
        self, session, orchestrator, make_batch, make_invoice, warehouse_id, item_a, test_actor_id,
        captured_logs,
    ):
        make_batch(warehouse_id, item_a, 100)
        invoice = make_invoice(warehouse_id, [(item_a, 70)])
        orchestrator.settle_full(invoice.id, actor_id=test_actor_id)

        with pytest.raises(AlreadySettledError):
            orchestrator.settle_full(invoice.id, actor_id=test_actor_id)

        assert _qty(session, warehouse_id, item_a) == Decimal("30")
        assert len(DeliverySelector(session).deliveries_for_invoice(invoice.id)) == 1
        rejected = [r for r in captured_logs() if r["message"] == "settlement_rejected"]
        assert rejected[-1]["error_code"] == AlreadySettledError.code

    def test_manual_requires_lines(self, orchestrator, test_actor_id):
        with pytest.raises(ValueError):
            orchestrator.settle_delivery(uuid4(), SettlementMode.MANUAL, [], actor_id=test_actor_id)


class TestAtomicity:

    def test_shortage_on_second_line_rolls_back_everything(
        self, session, orchestrator, make_batch, make_invoice,
        warehouse_id, item_a, item_b, test_actor_id,
    ):
        batch_a = make_batch(warehouse_id, item_a, 20)
        make_batch(warehouse_id, item_b, 3)
        invoice = make_invoice(warehouse_id, [(item_a, 10), (item_b, 5)])

        with pytest.raises(InsufficientStockError) as exc_info:
            orchestrator.settle_full(invoice.id, actor_id=test_actor_id)

        assert exc_info.value.item_id == item_b
        assert exc_info.value.shortfall == Decimal("2")

        session.expire_all()
        assert BatchSelector(session).get_batch(batch_a.id).quantity == Decimal("20")
        assert _qty(session, warehouse_id, item_a) == Decimal("20")
        assert _qty(session, warehouse_id, item_b) == Decimal("3")
        assert DeliverySelector(session).deliveries_for_invoice(invoice.id) == []
        assert invoice.status == DeliveryStatus.NOT_DELIVERED

    def test_aggregate_lower_than_batches(
        self, session, orchestrator, make_batch, make_stock, make_invoice,
        warehouse_id, item_a, test_actor_id,
    ):
        make_batch(warehouse_id, item_a, 50, sync_aggregate=False)
        make_stock(warehouse_id, item_a, 30)
        invoice = make_invoice(warehouse_id, [(item_a, 40)])

        with pytest.raises(InsufficientStockError) as exc_info:
            orchestrator.settle_full(invoice.id, actor_id=test_actor_id)
        assert exc_info.value.available == Decimal("30")


class TestManualSettlement:

    def test_partial_then_delivered(
        self, session, orchestrator, make_batch, make_invoice, warehouse_id, item_a, test_actor_id,
    ):
        b1 = make_batch(warehouse_id, item_a, 60, received_at=JAN_1)
        b2 = make_batch(warehouse_id, item_a, 40, received_at=FEB_1)
        invoice = make_invoice(warehouse_id, [(item_a, 70)])

        first = orchestrator.settle_manual(
            invoice.id, [_manual(item_id=item_a, allocations=[(b2.id, "30")])],
            actor_id=test_actor_id,
        )
        assert first.status == DeliveryStatus.PARTIAL
        assert BatchSelector(session).get_batch(b2.id).quantity == Decimal("10")
        assert _qty(session, warehouse_id, item_a) == Decimal("70")

        owed = orchestrator.get_owed(invoice.id)
        assert owed[0].owed_main == Decimal("40")

        second = orchestrator.settle_manual(
            invoice.id, [_manual(item_id=item_a, allocations=[(b1.id, "40")])],
            actor_id=test_actor_id,
        )
        assert second.status == DeliveryStatus.DELIVERED
        assert _qty(session, warehouse_id, item_a) == Decimal("30")
        assert len(DeliverySelector(session).deliveries_for_invoice(invoice.id)) == 2

    def test_full_after_manual_delivers_remainder_fifo(
        self, session, orchestrator, make_batch, make_invoice, warehouse_id, item_a, test_actor_id,
    ):
        b1 = make_batch(warehouse_id, item_a, 60, received_at=JAN_1)
        b2 = make_batch(warehouse_id, item_a, 40, received_at=FEB_1)
        invoice = make_invoice(warehouse_id, [(item_a, 70)])

        orchestrator.settle_manual(
            invoice.id, [_manual(item_id=item_a, allocations=[(b2.id, "30")])],
            actor_id=test_actor_id,
        )
        result = orchestrator.settle_full(invoice.id, actor_id=test_actor_id)

        assert result.status == DeliveryStatus.DELIVERED
        assert result.lines[0].quantity == Decimal("40")
        assert BatchSelector(session).get_batch(b1.id).quantity == Decimal("20")

    def test_instructions_for_same_line_are_combined(
        self, session, orchestrator, make_batch, make_invoice, warehouse_id, item_a, test_actor_id,
    ):
        b1 = make_batch(warehouse_id, item_a, 5, received_at=JAN_1)
        b2 = make_batch(warehouse_id, item_a, 5, received_at=FEB_1)
        invoice = make_invoice(warehouse_id, [(item_a, 8)])
        line_id = invoice.lines[0].id

        result = orchestrator.settle_manual(
            invoice.id,
            [
                _manual(invoice_item_id=line_id, allocations=[(b1.id, "5")]),
                _manual(invoice_item_id=line_id, allocations=[(b2.id, "3")]),
            ],
            actor_id=test_actor_id,
        )

        assert result.status == DeliveryStatus.DELIVERED
        (line,) = result.lines
        assert line.quantity == Decimal("8")
        assert len(line.consumptions) == 2

    def test_distinct_gift_from_chosen_batch(
        self, session, orchestrator, make_batch, make_invoice,
        warehouse_id, item_a, item_b, test_actor_id,
    ):
        batch_a = make_batch(warehouse_id, item_a, 10)
        batch_b = make_batch(warehouse_id, item_b, 10)
        invoice = make_invoice(warehouse_id, [(item_a, 4, GiftSpec.distinct_item(item_b, 2))])

        result = orchestrator.settle_manual(
            invoice.id,
            [_manual(item_id=item_a, allocations=[(batch_a.id, "4")], gifts=[(batch_b.id, "2")])],
            actor_id=test_actor_id,
        )

        assert result.status == DeliveryStatus.DELIVERED
        assert _qty(session, warehouse_id, item_b) == Decimal("8")
        assert result.lines[0].gift_quantity == Decimal("2")

    def test_over_delivery_rejected(
        self, session, orchestrator, make_batch, make_invoice, warehouse_id, item_a, test_actor_id,
    ):
        batch = make_batch(warehouse_id, item_a, 100)
        invoice = make_invoice(warehouse_id, [(item_a, 70)])

        with pytest.raises(OverDeliveryError) as exc_info:
            orchestrator.settle_manual(
                invoice.id, [_manual(item_id=item_a, allocations=[(batch.id, "80")])],
                actor_id=test_actor_id,
            )
        assert exc_info.value.owed == Decimal("70")
        session.expire_all()
        assert BatchSelector(session).get_batch(batch.id).quantity == Decimal("100")

    def test_gift_allocation_on_line_without_distinct_gift(
        self, orchestrator, make_batch, make_invoice, warehouse_id, item_a, test_actor_id,
    ):
        batch = make_batch(warehouse_id, item_a, 10)
        invoice = make_invoice(warehouse_id, [(item_a, 5)])

        with pytest.raises(OverDeliveryError):
            orchestrator.settle_manual(
                invoice.id, [_manual(item_id=item_a, gifts=[(batch.id, "1")])],
                actor_id=test_actor_id,
            )

    def test_batch_of_other_item_rejected(
        self, session, orchestrator, make_batch, make_invoice,
        warehouse_id, item_a, item_b, test_actor_id,
    ):
        make_batch(warehouse_id, item_a, 10)
        wrong = make_batch(warehouse_id, item_b, 10)
        invoice = make_invoice(warehouse_id, [(item_a, 5)])

        with pytest.raises(InvalidBatchReferenceError):
            orchestrator.settle_manual(
                invoice.id, [_manual(item_id=item_a, allocations=[(wrong.id, "5")])],
                actor_id=test_actor_id,
            )
        session.expire_all()
        assert _qty(session, warehouse_id, item_b) == Decimal("10")

    def test_unknown_line_rejected(
        self, orchestrator, make_batch, make_invoice, warehouse_id, item_a, item_b, test_actor_id,
    ):
        batch = make_batch(warehouse_id, item_b, 10)
        invoice = make_invoice(warehouse_id, [(item_a, 5)])

        with pytest.raises(InvoiceLineNotFoundError):
            orchestrator.settle_manual(
                invoice.id, [_manual(item_id=item_b, allocations=[(batch.id, "5")])],
                actor_id=test_actor_id,
            )


class TestLocking:

    def test_advisory_strategy_falls_back_to_row_lock_off_postgres(
        self, session, deterministic_clock, make_batch, make_invoice,
        warehouse_id, item_a, test_actor_id,
    ):
        make_batch(warehouse_id, item_a, 5)
        invoice = make_invoice(warehouse_id, [(item_a, 5)])
        orchestrator = DeliverySettlementOrchestrator(
            session, deterministic_clock, lock_strategy="advisory",
        )

        result = orchestrator.settle_full(invoice.id, actor_id=test_actor_id)
        assert result.status == DeliveryStatus.DELIVERED

    def test_advisory_key_is_stable_signed_64_bit(self):
        invoice_id = uuid4()
        key = advisory_lock_key(invoice_id)
        assert key == advisory_lock_key(invoice_id)
        assert -(2 ** 63) <= key < 2 ** 63
